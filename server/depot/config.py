import os

from dotenv import load_dotenv

load_dotenv()

# =====================================================
# APPLICATION
# =====================================================
APP_ENV = os.getenv("APP_ENV", "development")
if APP_ENV not in {"development", "test", "staging", "production"}:
    raise ValueError("APP_ENV must be development | test | staging | production")

IS_PRODUCTION = APP_ENV == "production"

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if origin.strip()
]

# =====================================================
# DATABASE
# =====================================================
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+pysqlite:///./depot.db")
if IS_PRODUCTION and DATABASE_URL.startswith("sqlite"):
    raise ValueError("SQLite is NOT allowed in production")

DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", 10))
# Postgres statement_timeout; a query running longer is cancelled and surfaces as TransientIOError.
DB_STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", 5000))

# =====================================================
# INVENTORY
# =====================================================
BALANCE_STORE_BACKEND = os.getenv("BALANCE_STORE_BACKEND", "sql")
if BALANCE_STORE_BACKEND not in {"sql", "memory"}:
    raise ValueError("BALANCE_STORE_BACKEND must be sql | memory")

TRANSFER_LOCK_TIMEOUT_SECONDS = float(os.getenv("TRANSFER_LOCK_TIMEOUT_SECONDS", 5))
NOTIFIER_WORKERS = int(os.getenv("NOTIFIER_WORKERS", 2))
STOCK_ALERT_FEED_SIZE = int(os.getenv("STOCK_ALERT_FEED_SIZE", 100))

# =====================================================
# JWT / AUTH
# =====================================================
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "depot-dev-secret")
if IS_PRODUCTION and JWT_SECRET_KEY == "depot-dev-secret":
    raise ValueError("JWT_SECRET_KEY must be set in production")

JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 12))

SEED_ADMIN_EMAIL = os.getenv("SEED_ADMIN_EMAIL", "admin@depot.local")
SEED_ADMIN_PASSWORD = os.getenv("SEED_ADMIN_PASSWORD", "change-me")
