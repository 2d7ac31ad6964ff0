from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from depot.inventory.changes import (
    ACTION_DELETE,
    TOPIC_BALANCES,
    TOPIC_PRODUCTS,
    TOPIC_WAREHOUSES,
    ChangeBus,
    ChangeEvent,
)
from depot.inventory.classifier import classify, classify_available
from depot.inventory.domain import Balance, StockStatus

logger = logging.getLogger(__name__)

ALERT_STATUSES = (StockStatus.LOW, StockStatus.OUT)

BalanceReader = Callable[[int, int], Optional[Balance]]


@dataclass(frozen=True)
class StockLevelChanged:
    product_id: int
    warehouse_id: int
    status: StockStatus
    available: int
    occurred_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def message(self) -> str:
        if self.status == StockStatus.OUT:
            return "Product is now out of stock!"
        return f"Low stock alert: Only {self.available} units remaining"


class ChangeNotifier:
    """Turns raw change signals into refresh signals and stock-level crossings.

    Every signal on the balance, warehouse or product topics produces a refresh
    for refresh listeners. Balance signals are re-read through ``reader`` and
    classified; a StockLevelChanged event goes out only when a balance moves
    into ``low`` or ``out`` from a different status, so repeated, duplicated or
    reordered signals for the same state stay silent.
    """

    def __init__(self, bus: ChangeBus, reader: BalanceReader):
        self._reader = reader
        self._lock = threading.Lock()
        self._last_status: dict[tuple[int, int], StockStatus] = {}
        self._refresh_listeners: list[Callable[[str], None]] = []
        self._stock_listeners: list[Callable[[StockLevelChanged], None]] = []
        self._unsubscribers = [
            bus.subscribe(TOPIC_BALANCES, self._on_balance_change),
            bus.subscribe(TOPIC_WAREHOUSES, self._on_catalog_change),
            bus.subscribe(TOPIC_PRODUCTS, self._on_catalog_change),
        ]

    def on_refresh(self, callback: Callable[[str], None]) -> None:
        self._refresh_listeners.append(callback)

    def on_stock_level_change(self, callback: Callable[[StockLevelChanged], None]) -> None:
        self._stock_listeners.append(callback)

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _on_catalog_change(self, change: ChangeEvent) -> None:
        logger.debug("Catalog changed: topic=%s key=%s", change.topic, change.key)
        self._emit_refresh(change.topic)

    def _on_balance_change(self, change: ChangeEvent) -> None:
        warehouse_id, product_id = change.key
        crossing = None

        # The re-read belongs inside the lock: last status must match the newest read.
        with self._lock:
            current = None if change.action == ACTION_DELETE else self._reader(warehouse_id, product_id)
            previous_status = self._last_status.get(change.key)
            if previous_status is None:
                previous_status = self._seed_status(change)

            if current is None:
                self._last_status.pop(change.key, None)
            else:
                status = classify(current)
                self._last_status[change.key] = status
                if status in ALERT_STATUSES and status != previous_status:
                    crossing = StockLevelChanged(
                        product_id=product_id,
                        warehouse_id=warehouse_id,
                        status=status,
                        available=current.available,
                    )

        if crossing is not None:
            logger.info(
                "Stock level changed: product_id=%s warehouse_id=%s status=%s available=%s",
                crossing.product_id,
                crossing.warehouse_id,
                crossing.status.value,
                crossing.available,
            )
            for listener in list(self._stock_listeners):
                listener(crossing)

        self._emit_refresh(change.topic)

    @staticmethod
    def _seed_status(change: ChangeEvent) -> StockStatus:
        # First sight of a key: a freshly created row counts as previously empty.
        if change.previous is None:
            return StockStatus.OUT
        return classify_available(change.previous.full - change.previous.reserved)

    def _emit_refresh(self, topic: str) -> None:
        for listener in list(self._refresh_listeners):
            listener(topic)


class StockAlertFeed:
    """Bounded, newest-last buffer of stock-level crossings for polling clients."""

    def __init__(self, notifier: ChangeNotifier, maxlen: int = 100):
        self._lock = threading.Lock()
        self._alerts: deque[StockLevelChanged] = deque(maxlen=maxlen)
        notifier.on_stock_level_change(self._append)

    def _append(self, alert: StockLevelChanged) -> None:
        with self._lock:
            self._alerts.append(alert)

    def snapshot(self, product_id: Optional[int] = None) -> list[StockLevelChanged]:
        with self._lock:
            alerts = list(self._alerts)
        if product_id is not None:
            alerts = [alert for alert in alerts if alert.product_id == product_id]
        return alerts
