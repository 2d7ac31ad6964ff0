"""In-process publish/subscribe for entity changes.

Topics are keyed by table name. Publishers fire and forget: delivery happens
after the write is committed, optionally on an executor, and a failing
subscriber is logged without affecting the publisher or other subscribers.
Delivery is at-least-once, so subscribers must re-derive state from the
store instead of trusting event payloads.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import event, inspect

from depot.inventory.domain import Quantities
from depot.models import InventoryBalance, Product, Warehouse

logger = logging.getLogger(__name__)

TOPIC_BALANCES = "inventory_balance"
TOPIC_WAREHOUSES = "warehouses"
TOPIC_PRODUCTS = "products"

ACTION_INSERT = "insert"
ACTION_UPDATE = "update"
ACTION_DELETE = "delete"

_PENDING_KEY = "depot.pending_changes"


@dataclass(frozen=True)
class ChangeEvent:
    topic: str
    action: str
    key: tuple
    previous: Optional[Quantities] = None
    source: str = "orm"
    occurred_at: datetime = field(default_factory=datetime.utcnow)


Subscriber = Callable[[ChangeEvent], None]


class ChangeBus:
    def __init__(self, executor: Optional[Executor] = None):
        self._executor = executor
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)

    def subscribe(self, topic: str, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers[topic].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers[topic]:
                    self._subscribers[topic].remove(callback)

        return unsubscribe

    def publish(self, change: ChangeEvent) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(change.topic, ()))
        for callback in callbacks:
            if self._executor is not None:
                self._executor.submit(self._deliver, callback, change)
            else:
                self._deliver(callback, change)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)

    @staticmethod
    def _deliver(callback: Subscriber, change: ChangeEvent) -> None:
        try:
            callback(change)
        except Exception:
            logger.exception("Change subscriber failed: topic=%s key=%s", change.topic, change.key)


def _previous_quantities(instance: InventoryBalance) -> Quantities:
    state = inspect(instance)

    def _before(attr_name: str) -> int:
        history = state.attrs[attr_name].history
        if history.deleted:
            return history.deleted[0] or 0
        if history.unchanged:
            return history.unchanged[0] or 0
        return getattr(instance, attr_name) or 0

    return Quantities(full=_before("qty_full"), empty=_before("qty_empty"), reserved=_before("qty_reserved"))


def _event_for(instance, action: str) -> Optional[ChangeEvent]:
    if isinstance(instance, InventoryBalance):
        previous = None if action == ACTION_INSERT else _previous_quantities(instance)
        return ChangeEvent(
            topic=TOPIC_BALANCES,
            action=action,
            key=(instance.warehouse_id, instance.product_id),
            previous=previous,
        )
    if isinstance(instance, Warehouse):
        return ChangeEvent(topic=TOPIC_WAREHOUSES, action=action, key=(instance.id,))
    if isinstance(instance, Product):
        return ChangeEvent(topic=TOPIC_PRODUCTS, action=action, key=(instance.id,))
    return None


def install_orm_change_stream(bus: ChangeBus, target) -> Callable[[], None]:
    """Publish committed balance/warehouse/product row changes made through ``target``.

    ``target`` is a sessionmaker (or Session class). Changes collected during
    flushes are published only once the transaction commits and are dropped on
    rollback. Returns a function that removes the listeners.
    """

    def collect(session, flush_context) -> None:
        pending = session.info.setdefault(_PENDING_KEY, [])
        for action, instances in (
            (ACTION_INSERT, session.new),
            (ACTION_UPDATE, session.dirty),
            (ACTION_DELETE, session.deleted),
        ):
            for instance in instances:
                if action == ACTION_UPDATE and not session.is_modified(instance, include_collections=False):
                    continue
                change = _event_for(instance, action)
                if change is not None:
                    pending.append(change)

    def publish(session) -> None:
        for change in session.info.pop(_PENDING_KEY, []):
            bus.publish(change)

    def discard(session) -> None:
        session.info.pop(_PENDING_KEY, None)

    event.listen(target, "after_flush", collect)
    event.listen(target, "after_commit", publish)
    event.listen(target, "after_rollback", discard)

    def remove() -> None:
        event.remove(target, "after_flush", collect)
        event.remove(target, "after_commit", publish)
        event.remove(target, "after_rollback", discard)

    return remove
