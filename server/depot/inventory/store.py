"""Balance Store: the only write path for inventory balances.

``upsert`` is a single read-modify-write step. When given a callable it runs
that callable against the current balance while holding the row (SQL) or the
store lock (memory), so two concurrent adjustments can never lose an update.
The audit log is kept by the same store, so a balance write and its audit row
commit together.

Two implementations share this interface and are picked when the application
is composed (``depot.inventory.runtime``):

* ``SqlBalanceStore`` wraps a SQLAlchemy session; changes reach subscribers
  through the ORM change stream installed on the session factory.
* ``InMemoryBalanceStore`` keeps fixtures in process and publishes its own
  change events.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from depot.inventory.changes import ACTION_INSERT, ACTION_UPDATE, TOPIC_BALANCES, ChangeBus, ChangeEvent
from depot.inventory.domain import AdjustmentRecord, Balance, BalanceWrite, Dimension, Quantities
from depot.inventory.exceptions import InventoryError, TransientIOError, ValidationError
from depot.models import InventoryAdjustment, InventoryBalance

logger = logging.getLogger(__name__)

QuantityUpdate = Union[Quantities, Callable[[Balance], Quantities]]
Clock = Callable[[], datetime]


def _resolve(current: Balance, quantities: QuantityUpdate) -> Quantities:
    new_quantities = quantities(current) if callable(quantities) else quantities
    errors = new_quantities.violations()
    if errors:
        raise ValidationError("; ".join(errors), {"errors": errors})
    return new_quantities


class BalanceStore(ABC):
    supports_transactions = False

    @abstractmethod
    def get(self, warehouse_id: int, product_id: int) -> Optional[Balance]:
        ...

    @abstractmethod
    def read_many(self, product_id: int) -> list[Balance]:
        """All balances of a product, ordered by warehouse id."""

    @abstractmethod
    def read_all(self) -> list[Balance]:
        """Every balance, ordered by (product id, warehouse id)."""

    @abstractmethod
    def upsert(
        self,
        warehouse_id: int,
        product_id: int,
        quantities: QuantityUpdate,
        *,
        at: Optional[datetime] = None,
    ) -> BalanceWrite:
        ...

    @abstractmethod
    def append_adjustment(self, record: AdjustmentRecord) -> AdjustmentRecord:
        ...

    @abstractmethod
    def list_adjustments(
        self,
        *,
        product_id: Optional[int] = None,
        warehouse_id: Optional[int] = None,
        correlation_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[AdjustmentRecord]:
        """Audit rows, newest first."""

    @abstractmethod
    def atomic(self):
        """Context manager grouping writes into one unit of work."""


class InMemoryBalanceStore(BalanceStore):
    supports_transactions = False

    def __init__(self, bus: Optional[ChangeBus] = None, clock: Optional[Clock] = None):
        self._bus = bus
        self._clock = clock or datetime.utcnow
        self._lock = threading.RLock()
        self._depth = 0
        self._balances: dict[tuple[int, int], Balance] = {}
        self._adjustments: list[AdjustmentRecord] = []
        self._pending: list[ChangeEvent] = []

    @contextmanager
    def atomic(self) -> Iterator[InMemoryBalanceStore]:
        pending: list[ChangeEvent] = []
        try:
            with self._lock:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                    if self._depth == 0:
                        pending, self._pending = self._pending, []
        finally:
            # Writes are never undone here, so subscribers hear about them
            # even when the unit fails, but only once the lock is released.
            for change in pending:
                self._bus.publish(change)

    def get(self, warehouse_id: int, product_id: int) -> Optional[Balance]:
        with self._lock:
            return self._balances.get((warehouse_id, product_id))

    def read_many(self, product_id: int) -> list[Balance]:
        with self._lock:
            rows = [balance for balance in self._balances.values() if balance.product_id == product_id]
        return sorted(rows, key=lambda balance: balance.warehouse_id)

    def read_all(self) -> list[Balance]:
        with self._lock:
            rows = list(self._balances.values())
        return sorted(rows, key=lambda balance: (balance.product_id, balance.warehouse_id))

    def upsert(self, warehouse_id, product_id, quantities, *, at=None) -> BalanceWrite:
        with self.atomic():
            key = (warehouse_id, product_id)
            before = self._balances.get(key)
            current = before or Balance.empty_for(warehouse_id, product_id)
            new_quantities = _resolve(current, quantities)
            after = current.with_quantities(new_quantities, at or self._clock())
            self._balances[key] = after
            if self._bus is not None:
                self._pending.append(
                    ChangeEvent(
                        topic=TOPIC_BALANCES,
                        action=ACTION_INSERT if before is None else ACTION_UPDATE,
                        key=key,
                        previous=before.quantities if before else None,
                        source="memory",
                    )
                )
            return BalanceWrite(before=before, after=after)

    def append_adjustment(self, record: AdjustmentRecord) -> AdjustmentRecord:
        with self._lock:
            stored = AdjustmentRecord(
                id=len(self._adjustments) + 1,
                warehouse_id=record.warehouse_id,
                product_id=record.product_id,
                dimension=record.dimension,
                requested_delta=record.requested_delta,
                applied_delta=record.applied_delta,
                reason=record.reason,
                actor=record.actor,
                correlation_id=record.correlation_id,
                created_at=record.created_at or self._clock(),
            )
            self._adjustments.append(stored)
            return stored

    def list_adjustments(self, *, product_id=None, warehouse_id=None, correlation_id=None, limit=50):
        with self._lock:
            rows = list(reversed(self._adjustments))
        if product_id is not None:
            rows = [row for row in rows if row.product_id == product_id]
        if warehouse_id is not None:
            rows = [row for row in rows if row.warehouse_id == warehouse_id]
        if correlation_id is not None:
            rows = [row for row in rows if row.correlation_id == correlation_id]
        return rows[:limit]


def _to_balance(row: InventoryBalance) -> Balance:
    return Balance(
        warehouse_id=row.warehouse_id,
        product_id=row.product_id,
        qty_full=row.qty_full,
        qty_empty=row.qty_empty,
        qty_reserved=row.qty_reserved,
        updated_at=row.updated_at,
    )


def _to_record(row: InventoryAdjustment) -> AdjustmentRecord:
    return AdjustmentRecord(
        id=row.id,
        warehouse_id=row.warehouse_id,
        product_id=row.product_id,
        dimension=Dimension(row.dimension),
        requested_delta=row.requested_delta,
        applied_delta=row.applied_delta,
        reason=row.reason,
        actor=row.actor,
        correlation_id=row.correlation_id,
        created_at=row.created_at,
    )


@contextmanager
def _backend_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except InventoryError:
        raise
    except IntegrityError as exc:
        logger.warning("Inventory write conflict during %s: %s", operation, exc)
        raise TransientIOError(
            f"Concurrent inventory update detected during {operation}; retry the request.",
            {"operation": operation},
        ) from exc
    except SQLAlchemyError as exc:
        logger.error("Inventory backend failure during %s: %s", operation, exc)
        raise TransientIOError(
            f"Inventory backend unavailable during {operation}; retry the request.",
            {"operation": operation},
        ) from exc


class SqlBalanceStore(BalanceStore):
    supports_transactions = True

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self._clock = clock or datetime.utcnow
        self._depth = 0

    @contextmanager
    def atomic(self) -> Iterator[SqlBalanceStore]:
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                self.db.rollback()
            raise
        self._depth -= 1
        if self._depth == 0:
            with _backend_errors("commit"):
                try:
                    self.db.commit()
                except SQLAlchemyError:
                    self.db.rollback()
                    raise

    def _query_balance(self, warehouse_id: int, product_id: int):
        return self.db.query(InventoryBalance).filter(
            InventoryBalance.warehouse_id == warehouse_id,
            InventoryBalance.product_id == product_id,
        )

    def get(self, warehouse_id: int, product_id: int) -> Optional[Balance]:
        with _backend_errors("get"):
            row = self._query_balance(warehouse_id, product_id).first()
            return _to_balance(row) if row else None

    def read_many(self, product_id: int) -> list[Balance]:
        with _backend_errors("read_many"):
            rows = (
                self.db.query(InventoryBalance)
                .filter(InventoryBalance.product_id == product_id)
                .order_by(InventoryBalance.warehouse_id.asc())
                .all()
            )
            return [_to_balance(row) for row in rows]

    def read_all(self) -> list[Balance]:
        with _backend_errors("read_all"):
            rows = (
                self.db.query(InventoryBalance)
                .order_by(InventoryBalance.product_id.asc(), InventoryBalance.warehouse_id.asc())
                .all()
            )
            return [_to_balance(row) for row in rows]

    def upsert(self, warehouse_id, product_id, quantities, *, at=None) -> BalanceWrite:
        with self.atomic(), _backend_errors("upsert"):
            row = self._query_balance(warehouse_id, product_id).with_for_update().first()
            before = _to_balance(row) if row else None
            current = before or Balance.empty_for(warehouse_id, product_id)
            new_quantities = _resolve(current, quantities)

            if row is None:
                row = InventoryBalance(warehouse_id=warehouse_id, product_id=product_id)
                self.db.add(row)
            row.qty_full = new_quantities.full
            row.qty_empty = new_quantities.empty
            row.qty_reserved = new_quantities.reserved
            row.updated_at = at or self._clock()
            self.db.flush()
            return BalanceWrite(before=before, after=_to_balance(row))

    def append_adjustment(self, record: AdjustmentRecord) -> AdjustmentRecord:
        with self.atomic(), _backend_errors("append_adjustment"):
            row = InventoryAdjustment(
                warehouse_id=record.warehouse_id,
                product_id=record.product_id,
                dimension=Dimension(record.dimension).value,
                requested_delta=record.requested_delta,
                applied_delta=record.applied_delta,
                reason=record.reason,
                actor=record.actor,
                correlation_id=record.correlation_id,
                created_at=record.created_at or self._clock(),
            )
            self.db.add(row)
            self.db.flush()
            return _to_record(row)

    def list_adjustments(self, *, product_id=None, warehouse_id=None, correlation_id=None, limit=50):
        with _backend_errors("list_adjustments"):
            query = self.db.query(InventoryAdjustment)
            if product_id is not None:
                query = query.filter(InventoryAdjustment.product_id == product_id)
            if warehouse_id is not None:
                query = query.filter(InventoryAdjustment.warehouse_id == warehouse_id)
            if correlation_id is not None:
                query = query.filter(InventoryAdjustment.correlation_id == correlation_id)
            rows = (
                query.order_by(InventoryAdjustment.created_at.desc(), InventoryAdjustment.id.desc())
                .limit(limit)
                .all()
            )
            return [_to_record(row) for row in rows]
