from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional


class Dimension(str, Enum):
    FULL = "full"
    EMPTY = "empty"
    RESERVED = "reserved"


class StockStatus(str, Enum):
    GOOD = "good"
    LOW = "low"
    OUT = "out"


class UtilizationStatus(str, Enum):
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Quantities:
    full: int = 0
    empty: int = 0
    reserved: int = 0

    def get(self, dimension: Dimension) -> int:
        return getattr(self, Dimension(dimension).value)

    def with_value(self, dimension: Dimension, value: int) -> Quantities:
        return replace(self, **{Dimension(dimension).value: value})

    def violations(self) -> list[str]:
        errors = []
        if self.full < 0:
            errors.append("Full quantity cannot be negative")
        if self.empty < 0:
            errors.append("Empty quantity cannot be negative")
        if self.reserved < 0:
            errors.append("Reserved quantity cannot be negative")
        if self.reserved > self.full:
            errors.append("Reserved quantity cannot exceed full quantity")
        return errors


@dataclass(frozen=True)
class Balance:
    warehouse_id: int
    product_id: int
    qty_full: int = 0
    qty_empty: int = 0
    qty_reserved: int = 0
    updated_at: Optional[datetime] = None

    @classmethod
    def empty_for(cls, warehouse_id: int, product_id: int) -> Balance:
        return cls(warehouse_id=warehouse_id, product_id=product_id)

    @property
    def key(self) -> tuple[int, int]:
        return (self.warehouse_id, self.product_id)

    @property
    def available(self) -> int:
        return self.qty_full - self.qty_reserved

    @property
    def quantities(self) -> Quantities:
        return Quantities(full=self.qty_full, empty=self.qty_empty, reserved=self.qty_reserved)

    def with_quantities(self, quantities: Quantities, updated_at: datetime) -> Balance:
        return replace(
            self,
            qty_full=quantities.full,
            qty_empty=quantities.empty,
            qty_reserved=quantities.reserved,
            updated_at=updated_at,
        )


@dataclass(frozen=True)
class BalanceWrite:
    """Result of one store write: the balance before (None if the row was created) and after."""

    before: Optional[Balance]
    after: Balance


@dataclass(frozen=True)
class AdjustmentRecord:
    warehouse_id: int
    product_id: int
    dimension: Dimension
    requested_delta: int
    applied_delta: int
    reason: str
    actor: str
    correlation_id: Optional[str] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def clamped(self) -> bool:
        return self.requested_delta != self.applied_delta


@dataclass(frozen=True)
class AdjustmentOutcome:
    balance: Balance
    previous: Balance
    record: AdjustmentRecord
    status: StockStatus


@dataclass(frozen=True)
class TransferResult:
    correlation_id: str
    quantity: int
    source: Balance
    destination: Balance
    debit: AdjustmentRecord
    credit: AdjustmentRecord
