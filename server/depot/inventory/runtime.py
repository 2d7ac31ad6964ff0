"""Composition of the inventory core for one application instance.

The backend (SQL or in-memory) is chosen here, from configuration, and never
inside the services. Route handlers reach the pieces through the FastAPI
dependencies at the bottom of this module.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session, sessionmaker

from depot.config import (
    BALANCE_STORE_BACKEND,
    NOTIFIER_WORKERS,
    STOCK_ALERT_FEED_SIZE,
    TRANSFER_LOCK_TIMEOUT_SECONDS,
)
from depot.db import get_db
from depot.inventory.changes import ChangeBus, install_orm_change_stream
from depot.inventory.domain import Balance
from depot.inventory.locks import PairLockRegistry
from depot.inventory.notifier import ChangeNotifier, StockAlertFeed
from depot.inventory.store import BalanceStore, InMemoryBalanceStore, SqlBalanceStore

logger = logging.getLogger(__name__)


@dataclass
class InventoryRuntime:
    backend: str
    bus: ChangeBus
    notifier: ChangeNotifier
    alerts: StockAlertFeed
    locks: PairLockRegistry
    memory_store: Optional[InMemoryBalanceStore] = None
    _teardown: list[Callable[[], None]] = field(default_factory=list)

    def store_for(self, db: Session) -> BalanceStore:
        if self.memory_store is not None:
            return self.memory_store
        return SqlBalanceStore(db)

    def close(self) -> None:
        for teardown in reversed(self._teardown):
            teardown()
        self._teardown = []
        self.notifier.close()
        self.bus.shutdown(wait=True)


def build_runtime(
    session_factory: sessionmaker,
    backend: str = BALANCE_STORE_BACKEND,
    *,
    workers: int = NOTIFIER_WORKERS,
    lock_timeout_seconds: float = TRANSFER_LOCK_TIMEOUT_SECONDS,
    alert_feed_size: int = STOCK_ALERT_FEED_SIZE,
) -> InventoryRuntime:
    """Wire bus, store, notifier and alert feed.

    ``workers=0`` delivers change events inline on the committing thread,
    which keeps tests deterministic.
    """
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="depot-notify") if workers > 0 else None
    bus = ChangeBus(executor=executor)
    teardown = []
    memory_store = None

    if backend == "memory":
        memory_store = InMemoryBalanceStore(bus=bus)
        reader = memory_store.get
    elif backend == "sql":
        teardown.append(install_orm_change_stream(bus, session_factory))

        def reader(warehouse_id: int, product_id: int) -> Optional[Balance]:
            with session_factory() as db:
                return SqlBalanceStore(db).get(warehouse_id, product_id)

    else:
        raise ValueError(f"Unknown balance store backend '{backend}'")

    notifier = ChangeNotifier(bus, reader)
    alerts = StockAlertFeed(notifier, maxlen=alert_feed_size)
    logger.info("Inventory runtime ready: backend=%s notifier_workers=%s", backend, workers)
    return InventoryRuntime(
        backend=backend,
        bus=bus,
        notifier=notifier,
        alerts=alerts,
        locks=PairLockRegistry(lock_timeout_seconds),
        memory_store=memory_store,
        _teardown=teardown,
    )


def get_runtime(request: Request) -> InventoryRuntime:
    return request.app.state.inventory


def get_balance_store(
    runtime: InventoryRuntime = Depends(get_runtime),
    db: Session = Depends(get_db),
) -> BalanceStore:
    return runtime.store_for(db)
