from fastapi import APIRouter, Request

from depot.config import APP_ENV

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
def health(request: Request):
    runtime = getattr(request.app.state, "inventory", None)
    return {
        "status": "ok",
        "environment": APP_ENV,
        "balance_store": runtime.backend if runtime else None,
    }
