from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from depot.inventory.domain import Dimension, StockStatus


class BalanceResponse(BaseModel):
    warehouse_id: int
    product_id: int
    qty_full: int
    qty_empty: int
    qty_reserved: int
    qty_available: int
    status: StockStatus
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ProductBalanceRow(BaseModel):
    warehouse_id: int
    warehouse_name: str
    city: Optional[str] = None
    qty_full: int
    qty_empty: int
    qty_reserved: int
    qty_available: int
    status: StockStatus
    updated_at: Optional[datetime] = None


class ProductBalancesResponse(BaseModel):
    product_id: int
    sku: str
    name: str
    balances: List[ProductBalanceRow]


class AdjustmentCreate(BaseModel):
    warehouse_id: int
    product_id: int
    dimension: Dimension = Dimension.FULL
    delta: int = Field(..., description="Signed, non-zero change to apply.")
    reason: str = Field(..., min_length=1, max_length=255)


class AdjustmentRecordResponse(BaseModel):
    id: Optional[int] = None
    warehouse_id: int
    product_id: int
    dimension: Dimension
    requested_delta: int
    applied_delta: int
    clamped: bool
    reason: str
    actor: str
    correlation_id: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AdjustmentResponse(BaseModel):
    balance: BalanceResponse
    previous: BalanceResponse
    record: AdjustmentRecordResponse
    status: StockStatus


class SetBalancePayload(BaseModel):
    qty_full: int
    qty_empty: int
    qty_reserved: int = 0
    reason: str = Field(default="manual-edit", min_length=1, max_length=255)


class SetBalanceResponse(BaseModel):
    balance: BalanceResponse
    records: List[AdjustmentRecordResponse]
    warnings: List[str]
    status: StockStatus


class TransferCreate(BaseModel):
    from_warehouse_id: int
    to_warehouse_id: int
    product_id: int
    quantity: int = Field(..., description="Full units to move; must be at least 1.")
    notes: Optional[str] = Field(default=None, max_length=200)


class TransferResponse(BaseModel):
    correlation_id: str
    quantity: int
    source: BalanceResponse
    destination: BalanceResponse
    debit: AdjustmentRecordResponse
    credit: AdjustmentRecordResponse


class ClassificationResponse(BaseModel):
    qty_full: int
    qty_reserved: int
    qty_available: int
    status: StockStatus


class StockAlertResponse(BaseModel):
    product_id: int
    warehouse_id: int
    status: StockStatus
    available: int
    message: str
    occurred_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SeedProgressStep(BaseModel):
    step: str
    progress: int
    total: int


class SeedResponse(BaseModel):
    warehouse_id: int
    product_ids: dict[str, int]
    modules_created: int
    admin_created: bool
    balances_written: int
    steps: List[SeedProgressStep]
