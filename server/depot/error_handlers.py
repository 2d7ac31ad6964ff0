import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from depot.inventory.exceptions import (
    AuthorizationError,
    ConsistencyViolationError,
    InsufficientStockError,
    InventoryError,
    NotFoundError,
    TransientIOError,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = (
    (ValidationError, 400),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (InsufficientStockError, 409),
    (ConsistencyViolationError, 503),
    (TransientIOError, 503),
)


def status_for(exc: InventoryError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def inventory_exception_handler(request: Request, exc: InventoryError):
    status_code = status_for(exc)
    if isinstance(exc, ConsistencyViolationError):
        logger.error(
            "Consistency violation: correlation_id=%s compensated=%s path=%s",
            exc.correlation_id,
            exc.compensated,
            request.url.path,
        )
    elif status_code >= 500:
        logger.warning("Inventory request failed: code=%s path=%s message=%s", exc.code, request.url.path, exc.message)

    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "message": exc.message,
            "error_code": exc.code,
            "details": exc.details,
        },
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(InventoryError, inventory_exception_handler)
