from enum import Enum


class ModuleKey(str, Enum):
    DASHBOARD = "DASHBOARD"
    WAREHOUSES = "WAREHOUSES"
    PRODUCTS = "PRODUCTS"
    ORDERS = "ORDERS"
    INVENTORY = "INVENTORY"
    ANALYTICS = "ANALYTICS"
    CONTROL = "CONTROL"


MODULE_DEFINITIONS: list[tuple[ModuleKey, str]] = [
    (ModuleKey.DASHBOARD, "Dashboard"),
    (ModuleKey.WAREHOUSES, "Warehouses"),
    (ModuleKey.PRODUCTS, "Products"),
    (ModuleKey.ORDERS, "Orders"),
    (ModuleKey.INVENTORY, "Inventory"),
    (ModuleKey.ANALYTICS, "Analytics"),
    (ModuleKey.CONTROL, "Control"),
]

MODULE_KEYS: list[str] = [module_key.value for module_key, _ in MODULE_DEFINITIONS]
