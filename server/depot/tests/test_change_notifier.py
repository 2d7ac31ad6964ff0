import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from depot.auth import AuthContext
from depot.db import Base
from depot.inventory.changes import (
    TOPIC_BALANCES,
    TOPIC_WAREHOUSES,
    ChangeBus,
    ChangeEvent,
    install_orm_change_stream,
)
from depot.inventory.domain import Balance, Quantities, StockStatus
from depot.inventory.notifier import ChangeNotifier, StockAlertFeed
from depot.inventory.service import adjust
from depot.inventory.store import InMemoryBalanceStore, SqlBalanceStore
from depot.models import InventoryBalance, Warehouse

CLERK = AuthContext(actor="clerk@depot.local", modules=frozenset({"INVENTORY"}))


def _make_session_local():
    engine = create_engine("sqlite+pysqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False), engine


def _sql_reader(session_local):
    def reader(warehouse_id, product_id):
        with session_local() as db:
            return SqlBalanceStore(db).get(warehouse_id, product_id)

    return reader


def test_crossing_into_low_emits_exactly_once():
    bus = ChangeBus()
    store = InMemoryBalanceStore(bus=bus)
    notifier = ChangeNotifier(bus, store.get)
    events = []
    notifier.on_stock_level_change(events.append)

    store.upsert(1, 1, Quantities(full=12))
    adjust(store, CLERK, warehouse_id=1, product_id=1, dimension="full", delta=-9, reason="sale")
    assert [(event.status, event.available) for event in events] == [(StockStatus.LOW, 3)]

    adjust(store, CLERK, warehouse_id=1, product_id=1, dimension="full", delta=-1, reason="sale")
    assert len(events) == 1
    assert events[0].message == "Low stock alert: Only 3 units remaining"


def test_crossing_into_out_follows_low_and_recovery_resets():
    bus = ChangeBus()
    store = InMemoryBalanceStore(bus=bus)
    notifier = ChangeNotifier(bus, store.get)
    events = []
    notifier.on_stock_level_change(events.append)

    store.upsert(1, 1, Quantities(full=12))
    adjust(store, CLERK, warehouse_id=1, product_id=1, dimension="full", delta=-5, reason="sale")
    adjust(store, CLERK, warehouse_id=1, product_id=1, dimension="full", delta=-7, reason="sale")
    adjust(store, CLERK, warehouse_id=1, product_id=1, dimension="full", delta=20, reason="delivery")
    adjust(store, CLERK, warehouse_id=1, product_id=1, dimension="reserved", delta=15, reason="order")

    assert [event.status for event in events] == [StockStatus.LOW, StockStatus.OUT, StockStatus.LOW]
    assert events[1].message == "Product is now out of stock!"


def test_duplicate_signals_do_not_repeat_crossing_events():
    bus = ChangeBus()
    store = InMemoryBalanceStore()
    store.upsert(1, 1, Quantities(full=4))
    notifier = ChangeNotifier(bus, store.get)
    events = []
    refreshes = []
    notifier.on_stock_level_change(events.append)
    notifier.on_refresh(refreshes.append)

    change = ChangeEvent(topic=TOPIC_BALANCES, action="update", key=(1, 1), previous=Quantities(full=20))
    bus.publish(change)
    bus.publish(change)
    bus.publish(change)

    assert len(events) == 1
    assert refreshes == [TOPIC_BALANCES] * 3


def test_notifier_rereads_store_instead_of_trusting_payload():
    bus = ChangeBus()
    store = InMemoryBalanceStore()
    store.upsert(1, 1, Quantities(full=50))
    notifier = ChangeNotifier(bus, store.get)
    events = []
    notifier.on_stock_level_change(events.append)

    bus.publish(ChangeEvent(topic=TOPIC_BALANCES, action="update", key=(1, 1), previous=Quantities(full=60)))

    assert events == []


def test_catalog_changes_only_refresh():
    bus = ChangeBus()
    notifier = ChangeNotifier(bus, lambda warehouse_id, product_id: None)
    refreshes = []
    notifier.on_refresh(refreshes.append)

    bus.publish(ChangeEvent(topic=TOPIC_WAREHOUSES, action="insert", key=(3,)))
    notifier.close()
    bus.publish(ChangeEvent(topic=TOPIC_WAREHOUSES, action="update", key=(3,)))

    assert refreshes == [TOPIC_WAREHOUSES]


def test_failing_subscriber_does_not_block_others_or_publisher():
    bus = ChangeBus()
    received = []

    def broken(change):
        raise RuntimeError("listener bug")

    bus.subscribe(TOPIC_BALANCES, broken)
    bus.subscribe(TOPIC_BALANCES, received.append)

    bus.publish(ChangeEvent(topic=TOPIC_BALANCES, action="insert", key=(1, 1)))

    assert len(received) == 1


def test_executor_delivery_is_fire_and_forget():
    bus = ChangeBus(executor=ThreadPoolExecutor(max_workers=1))
    received = []
    bus.subscribe(TOPIC_BALANCES, received.append)

    bus.publish(ChangeEvent(topic=TOPIC_BALANCES, action="insert", key=(1, 1)))
    bus.shutdown(wait=True)

    assert [change.key for change in received] == [(1, 1)]


def test_slow_reread_cannot_overwrite_a_newer_status():
    bus = ChangeBus()
    levels = {"full": 50}
    first_read = threading.Event()
    release = threading.Event()

    def reader(warehouse_id, product_id):
        balance = Balance(warehouse_id=warehouse_id, product_id=product_id, qty_full=levels["full"])
        if threading.current_thread().name == "slow-reader" and not first_read.is_set():
            first_read.set()
            release.wait(5)
        return balance

    notifier = ChangeNotifier(bus, reader)
    alerts = []
    notifier.on_stock_level_change(alerts.append)

    def signal():
        bus.publish(ChangeEvent(topic=TOPIC_BALANCES, action="update", key=(1, 1), previous=Quantities(full=50)))

    bus.publish(ChangeEvent(topic=TOPIC_BALANCES, action="insert", key=(1, 1)))
    assert alerts == []

    levels["full"] = 3
    slow = threading.Thread(target=signal, name="slow-reader")
    slow.start()
    assert first_read.wait(5)

    levels["full"] = 50
    fresh = threading.Thread(target=signal, name="fresh-reader")
    fresh.start()
    time.sleep(0.1)
    release.set()
    slow.join(5)
    fresh.join(5)

    # The newest read saw 50, so dropping to 3 again is a new crossing.
    levels["full"] = 3
    signal()

    assert [alert.status for alert in alerts] == [StockStatus.LOW, StockStatus.LOW]


def test_orm_writes_outside_services_reach_subscribers():
    TestingSessionLocal, engine = _make_session_local()
    bus = ChangeBus()
    remove = install_orm_change_stream(bus, TestingSessionLocal)
    notifier = ChangeNotifier(bus, _sql_reader(TestingSessionLocal))
    feed = StockAlertFeed(notifier, maxlen=5)
    topics = []
    notifier.on_refresh(topics.append)

    try:
        with TestingSessionLocal() as db:
            db.add(Warehouse(name="North Yard", capacity_cylinders=200))
            db.add(InventoryBalance(warehouse_id=1, product_id=1, qty_full=30, qty_empty=0, qty_reserved=0, updated_at=datetime.utcnow()))
            db.commit()

        with TestingSessionLocal() as db:
            row = db.query(InventoryBalance).one()
            row.qty_full = 5
            db.commit()

        with TestingSessionLocal() as db:
            row = db.query(InventoryBalance).one()
            row.qty_full = 0
            db.rollback()

        alerts = feed.snapshot()
        assert [(alert.warehouse_id, alert.product_id, alert.status) for alert in alerts] == [(1, 1, StockStatus.LOW)]
        assert sorted(topics) == sorted([TOPIC_WAREHOUSES, TOPIC_BALANCES, TOPIC_BALANCES])
    finally:
        remove()
        notifier.close()
        Base.metadata.drop_all(engine)


def test_orm_change_stream_carries_previous_quantities():
    TestingSessionLocal, engine = _make_session_local()
    bus = ChangeBus()
    remove = install_orm_change_stream(bus, TestingSessionLocal)
    received = []
    bus.subscribe(TOPIC_BALANCES, received.append)

    try:
        with TestingSessionLocal() as db:
            store = SqlBalanceStore(db)
            store.upsert(1, 1, Quantities(full=8, empty=1))
            store.upsert(1, 1, Quantities(full=2, empty=1))

        assert [(change.action, change.previous) for change in received] == [
            ("insert", None),
            ("update", Quantities(full=8, empty=1, reserved=0)),
        ]
    finally:
        remove()
        Base.metadata.drop_all(engine)


def test_alert_feed_is_bounded_and_filterable():
    bus = ChangeBus()
    store = InMemoryBalanceStore(bus=bus)
    notifier = ChangeNotifier(bus, store.get)
    feed = StockAlertFeed(notifier, maxlen=2)

    for product_id in (1, 2, 3):
        store.upsert(1, product_id, Quantities(full=2))

    assert [alert.product_id for alert in feed.snapshot()] == [2, 3]
    assert [alert.product_id for alert in feed.snapshot(product_id=3)] == [3]
