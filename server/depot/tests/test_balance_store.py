from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from depot.db import Base
from depot.inventory.changes import ChangeBus, TOPIC_BALANCES
from depot.inventory.domain import AdjustmentRecord, Dimension, Quantities
from depot.inventory.exceptions import TransientIOError, ValidationError
from depot.inventory.store import InMemoryBalanceStore, SqlBalanceStore
from depot.models import InventoryBalance


def create_session():
    engine = create_engine("sqlite+pysqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        yield InMemoryBalanceStore()
        return
    db = create_session()
    try:
        yield SqlBalanceStore(db)
    finally:
        db.close()


def test_upsert_creates_row_lazily_and_stamps_updated_at(store):
    at = datetime(2025, 6, 10, 12, 0, 0)

    assert store.get(1, 1) is None
    write = store.upsert(1, 1, Quantities(full=10, empty=5, reserved=2), at=at)

    assert write.before is None
    assert write.after.quantities == Quantities(full=10, empty=5, reserved=2)
    assert write.after.available == 8
    assert store.get(1, 1).updated_at == at


def test_upsert_callable_sees_current_balance(store):
    store.upsert(1, 1, Quantities(full=4))

    write = store.upsert(1, 1, lambda current: current.quantities.with_value(Dimension.FULL, current.qty_full + 3))

    assert write.before.qty_full == 4
    assert write.after.qty_full == 7


def test_upsert_callable_receives_zero_balance_for_missing_row(store):
    seen = []

    def compute(current):
        seen.append(current.quantities)
        return Quantities(full=1)

    store.upsert(2, 3, compute)

    assert seen == [Quantities()]


def test_upsert_rejects_invariant_breaking_triple(store):
    store.upsert(1, 1, Quantities(full=5))

    with pytest.raises(ValidationError) as excinfo:
        store.upsert(1, 1, Quantities(full=2, reserved=3))

    assert "Reserved quantity cannot exceed full quantity" in excinfo.value.details["errors"]
    assert store.get(1, 1).qty_full == 5


def test_callable_rejection_writes_nothing(store):
    store.upsert(1, 1, Quantities(full=5))

    def reject(current):
        raise ValidationError("nope")

    with pytest.raises(ValidationError):
        store.upsert(1, 1, reject)

    assert store.get(1, 1).qty_full == 5


def test_read_many_orders_by_warehouse_and_read_all_by_product(store):
    store.upsert(3, 1, Quantities(full=3))
    store.upsert(1, 1, Quantities(full=1))
    store.upsert(2, 2, Quantities(full=2))
    store.upsert(2, 1, Quantities(full=2))

    assert [balance.warehouse_id for balance in store.read_many(1)] == [1, 2, 3]
    assert [balance.key for balance in store.read_all()] == [(1, 1), (2, 1), (3, 1), (2, 2)]


def test_adjustment_log_filters_newest_first(store):
    for delta, correlation_id in ((1, None), (2, "abc"), (3, "abc")):
        store.append_adjustment(
            AdjustmentRecord(
                warehouse_id=1,
                product_id=1,
                dimension=Dimension.FULL,
                requested_delta=delta,
                applied_delta=delta,
                reason="count",
                actor="tester",
                correlation_id=correlation_id,
                created_at=datetime(2025, 6, 10, 12, 0, delta),
            )
        )

    assert [record.requested_delta for record in store.list_adjustments()] == [3, 2, 1]
    assert [record.requested_delta for record in store.list_adjustments(correlation_id="abc")] == [3, 2]
    assert [record.requested_delta for record in store.list_adjustments(limit=1)] == [3]
    assert store.list_adjustments(product_id=99) == []


def test_sql_atomic_rolls_back_every_write_in_the_unit():
    db = create_session()
    store = SqlBalanceStore(db)
    store.upsert(1, 1, Quantities(full=10))

    with pytest.raises(RuntimeError):
        with store.atomic():
            store.upsert(1, 1, Quantities(full=4))
            store.upsert(2, 1, Quantities(full=6))
            raise RuntimeError("credit failed")

    assert store.get(1, 1).qty_full == 10
    assert store.get(2, 1) is None
    db.close()


def test_sql_backend_failure_maps_to_transient_error(monkeypatch):
    db = create_session()
    store = SqlBalanceStore(db)

    def unavailable(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "query", unavailable)

    with pytest.raises(TransientIOError) as excinfo:
        store.get(1, 1)

    assert excinfo.value.retryable is True
    assert excinfo.value.details == {"operation": "get"}
    db.close()


def test_sql_store_writes_pass_check_constraints():
    db = create_session()
    SqlBalanceStore(db).upsert(1, 1, Quantities(full=3, empty=2, reserved=3))

    row = db.query(InventoryBalance).one()
    assert (row.qty_full, row.qty_empty, row.qty_reserved, row.qty_available) == (3, 2, 3, 0)
    db.close()


def test_memory_store_publishes_after_the_unit_of_work():
    bus = ChangeBus()
    store = InMemoryBalanceStore(bus=bus)
    received = []
    bus.subscribe(TOPIC_BALANCES, lambda change: received.append((change.action, change.key, change.previous)))

    with store.atomic():
        store.upsert(1, 1, Quantities(full=10))
        store.upsert(1, 1, Quantities(full=4))
        assert received == []

    assert received == [
        ("insert", (1, 1), None),
        ("update", (1, 1), Quantities(full=10)),
    ]
