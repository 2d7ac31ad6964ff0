from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from depot.inventory.domain import StockStatus, UtilizationStatus


class WarehouseOverview(BaseModel):
    id: int
    name: str
    city: Optional[str] = None
    state: Optional[str] = None
    total_cylinders: int
    capacity_cylinders: int
    utilization_percentage: int
    status: UtilizationStatus

    model_config = ConfigDict(from_attributes=True)


class WarehouseQuantities(BaseModel):
    warehouse_name: str
    qty_full: int
    qty_empty: int
    qty_reserved: int


class StockLevel(BaseModel):
    product_id: int
    product_sku: str
    product_name: str
    warehouses: Dict[int, WarehouseQuantities]
    total_full: int
    total_empty: int
    total_reserved: int
    total_available: int
    stock_status: StockStatus


class Movement(BaseModel):
    id: int
    timestamp: datetime
    product_name: str
    product_sku: str
    warehouse_name: str
    movement_type: str
    quantity: int
    reason: Optional[str] = None
    reference: Optional[str] = None
    actor: Optional[str] = None


class InventoryDashboardResponse(BaseModel):
    warehouses: List[WarehouseOverview]
    stock_levels: List[StockLevel]
    movements: List[Movement]


class LowStockItem(BaseModel):
    product_id: int
    name: str
    sku: str
    warehouse_id: int
    warehouse_name: str
    current_stock: int
    threshold: int
    status: StockStatus
    urgency: str
