from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .db import Base

PRODUCT_STATUSES = ("active", "end_of_sale", "obsolete")
BALANCE_DIMENSIONS = ("full", "empty", "reserved")
ORDER_STATUSES = ("draft", "confirmed", "scheduled", "en_route", "delivered", "invoiced", "cancelled")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(200), nullable=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, default="staff")
    is_admin = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    module_access = relationship("UserModuleAccess", back_populates="user", cascade="all, delete-orphan")


class Module(Base):
    __tablename__ = "modules"

    id = Column(Integer, primary_key=True)
    key = Column(String(50), unique=True, nullable=False)
    name = Column(String(100), nullable=False)


class UserModuleAccess(Base):
    __tablename__ = "user_module_access"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    module_id = Column(Integer, ForeignKey("modules.id", ondelete="CASCADE"), nullable=False)

    user = relationship("User", back_populates="module_access")
    module = relationship("Module")

    __table_args__ = (
        UniqueConstraint("user_id", "module_id", name="uq_user_module_access"),
    )


class Warehouse(Base):
    __tablename__ = "warehouses"

    id = Column(Integer, primary_key=True)
    name = Column(String(80), unique=True, nullable=False)
    capacity_cylinders = Column(Integer, nullable=True)
    address_line1 = Column(String(200), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    postal_code = Column(String(20), nullable=True)
    country = Column(String(2), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    balances = relationship("InventoryBalance", back_populates="warehouse")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    sku = Column(String(40), unique=True, nullable=False)
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=True)
    capacity_kg = Column(Numeric(6, 2), nullable=True)
    tare_weight_kg = Column(Numeric(6, 2), nullable=True)
    valve_type = Column(String(20), nullable=True)
    status = Column(Enum(*PRODUCT_STATUSES, name="product_status"), nullable=False, default="active")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    balances = relationship("InventoryBalance", back_populates="product")


class InventoryBalance(Base):
    __tablename__ = "inventory_balance"

    id = Column(Integer, primary_key=True)
    warehouse_id = Column(Integer, ForeignKey("warehouses.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    qty_full = Column(Integer, nullable=False, default=0)
    qty_empty = Column(Integer, nullable=False, default=0)
    qty_reserved = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    warehouse = relationship("Warehouse", back_populates="balances")
    product = relationship("Product", back_populates="balances")

    __table_args__ = (
        UniqueConstraint("warehouse_id", "product_id", name="uq_inventory_balance_warehouse_product"),
        CheckConstraint("qty_full >= 0", name="ck_inventory_balance_qty_full_non_negative"),
        CheckConstraint("qty_empty >= 0", name="ck_inventory_balance_qty_empty_non_negative"),
        CheckConstraint("qty_reserved >= 0", name="ck_inventory_balance_qty_reserved_non_negative"),
        CheckConstraint("qty_reserved <= qty_full", name="ck_inventory_balance_reserved_within_full"),
    )

    @property
    def qty_available(self):
        return (self.qty_full or 0) - (self.qty_reserved or 0)


class InventoryAdjustment(Base):
    __tablename__ = "inventory_adjustments"

    id = Column(Integer, primary_key=True)
    warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    dimension = Column(Enum(*BALANCE_DIMENSIONS, name="inventory_dimension"), nullable=False)
    requested_delta = Column(Integer, nullable=False)
    applied_delta = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=False)
    actor = Column(String(255), nullable=False)
    correlation_id = Column(String(32), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    warehouse = relationship("Warehouse")
    product = relationship("Product")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    customer_name = Column(String(200), nullable=True)
    order_date = Column(Date, nullable=False)
    delivery_date = Column(Date, nullable=True)
    status = Column(Enum(*ORDER_STATUSES, name="order_status"), nullable=False, default="draft")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    lines = relationship("OrderLine", back_populates="order", cascade="all, delete-orphan")


class OrderLine(Base):
    __tablename__ = "order_lines"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False, default=0)

    order = relationship("Order", back_populates="lines")
    product = relationship("Product")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
    )
