from decimal import Decimal
from typing import Optional

from depot.inventory.domain import Balance, StockStatus, UtilizationStatus
from depot.utils.rounding import round_half_up

LOW_STOCK_THRESHOLD = 10

UTILIZATION_CRITICAL_PCT = 90
UTILIZATION_WARNING_PCT = 75
DEFAULT_WAREHOUSE_CAPACITY = 1000


def classify_available(available: int) -> StockStatus:
    if available <= 0:
        return StockStatus.OUT
    if available < LOW_STOCK_THRESHOLD:
        return StockStatus.LOW
    return StockStatus.GOOD


def classify(balance: Balance) -> StockStatus:
    """Stock health of one balance, from its available (full - reserved) quantity only."""
    return classify_available(balance.qty_full - balance.qty_reserved)


def classify_utilization(total_cylinders: int, capacity: Optional[int]) -> tuple[int, UtilizationStatus]:
    """Warehouse fill ratio as a whole percentage, plus its status.

    A warehouse without a rated capacity is measured against
    DEFAULT_WAREHOUSE_CAPACITY. Capacity is advisory, so the percentage may
    exceed 100.
    """
    effective_capacity = capacity or DEFAULT_WAREHOUSE_CAPACITY
    utilization = Decimal(total_cylinders) * 100 / Decimal(effective_capacity)
    percentage = int(round_half_up(utilization, places=0))

    # Thresholds apply to the exact ratio; only the reported figure is rounded.
    if utilization > UTILIZATION_CRITICAL_PCT:
        return percentage, UtilizationStatus.CRITICAL
    if utilization > UTILIZATION_WARNING_PCT:
        return percentage, UtilizationStatus.WARNING
    return percentage, UtilizationStatus.GOOD
