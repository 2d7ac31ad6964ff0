import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import APP_ENV, BALANCE_STORE_BACKEND, CORS_ORIGINS
from .db import SessionLocal
from .error_handlers import register_exception_handlers
from .inventory.runtime import build_runtime
from .logging_config import setup_logging
from .routers import analytics, dashboard, health, inventory

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests install their own runtime before startup.
    if getattr(app.state, "inventory", None) is None:
        app.state.inventory = build_runtime(SessionLocal, BALANCE_STORE_BACKEND)
    logger.info("Starting LPG Depot API: env=%s backend=%s", APP_ENV, app.state.inventory.backend)
    yield
    logger.info("Shutting down LPG Depot API")
    app.state.inventory.close()
    app.state.inventory = None


app = FastAPI(title="LPG Depot API", lifespan=lifespan)

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(inventory.router)
app.include_router(dashboard.router)
app.include_router(analytics.router)


@app.get("/")
def root():
    return {"status": "ok"}
