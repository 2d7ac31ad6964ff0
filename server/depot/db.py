from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from depot.config import DATABASE_URL, DB_POOL_TIMEOUT, DB_STATEMENT_TIMEOUT_MS

Base = declarative_base()

connect_args = {}
pool_args = {}

if DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False, "timeout": DB_POOL_TIMEOUT}
else:
    connect_args = {
        "connect_timeout": DB_POOL_TIMEOUT,
        "options": f"-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}",
    }
    pool_args = {
        "pool_timeout": DB_POOL_TIMEOUT,
        "pool_pre_ping": True,
    }

engine = create_engine(DATABASE_URL, connect_args=connect_args, **pool_args)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@event.listens_for(engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, _):
    if engine.dialect.name != "sqlite":
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
