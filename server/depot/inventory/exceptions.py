"""Typed errors raised by the inventory core.

Every error carries a machine-readable ``code``, a ``retryable`` flag and a
``details`` dict, so callers and the HTTP layer branch on type and data rather
than on message text.

    InventoryError
    +-- ValidationError            bad input, rejected before any write
    +-- AuthorizationError         no actor, or actor lacks the inventory module
    +-- NotFoundError              unknown warehouse / product at the API edge
    +-- InsufficientStockError     decrement/transfer/reservation beyond a bound
    +-- ConsistencyViolationError  transfer credit leg failed (retryable)
    +-- TransientIOError           backend unreachable or timed out (retryable)
"""

from typing import Any, Optional


class InventoryError(Exception):
    code = "INVENTORY_ERROR"
    retryable = False

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(InventoryError):
    code = "VALIDATION_ERROR"


class AuthorizationError(InventoryError):
    code = "UNAUTHORIZED_ACTOR"


class NotFoundError(InventoryError):
    code = "NOT_FOUND"


class InsufficientStockError(InventoryError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, message: str, *, bound: str, requested: int, available: int):
        shortfall = requested - available
        super().__init__(
            message,
            {"bound": bound, "requested": requested, "available": available, "shortfall": shortfall},
        )
        self.bound = bound
        self.requested = requested
        self.available = available
        self.shortfall = shortfall


class ConsistencyViolationError(InventoryError):
    code = "CONSISTENCY_VIOLATION"
    retryable = True

    def __init__(self, message: str, *, correlation_id: str, compensated: bool, cause: Optional[str] = None):
        super().__init__(
            message,
            {"correlation_id": correlation_id, "compensated": compensated, "cause": cause},
        )
        self.correlation_id = correlation_id
        self.compensated = compensated


class TransientIOError(InventoryError):
    code = "TRANSIENT_IO"
    retryable = True
