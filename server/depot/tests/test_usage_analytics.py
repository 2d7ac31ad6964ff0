from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from depot.analytics import usage
from depot.db import Base
from depot.models import Order, OrderLine, Product


def _make_session_local():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(engine)
    return TestingSessionLocal, engine


def _product(db, sku="CYL-20KG-STD"):
    product = Product(sku=sku, name=f"{sku} cylinder", status="active")
    db.add(product)
    db.flush()
    return product


def _order(db, product, quantity, order_date, status="delivered", delivery_date=None):
    order = Order(customer_name="Kamau Hardware", order_date=order_date, delivery_date=delivery_date, status=status)
    order.lines.append(OrderLine(product_id=product.id, quantity=quantity, unit_price=Decimal("25.00")))
    db.add(order)
    db.flush()
    return order


def test_delivered_orders_drive_total_average_and_trend():
    TestingSessionLocal, engine = _make_session_local()

    with TestingSessionLocal() as db:
        product = _product(db)
        _order(db, product, 2, date(2025, 6, 2))
        _order(db, product, 3, date(2025, 6, 5))
        _order(db, product, 1, date(2025, 6, 10))
        db.commit()

        result = usage.analyze(db, product.id, date(2025, 6, 15))

    assert result.total_delivered_this_month == 6
    assert result.average_daily_usage == Decimal("0.40")
    assert [(point.date, point.quantity) for point in result.trend] == [
        (date(2025, 6, 2), 2),
        (date(2025, 6, 5), 3),
        (date(2025, 6, 10), 1),
    ]

    Base.metadata.drop_all(engine)


def test_average_rounds_half_up_over_elapsed_days():
    TestingSessionLocal, engine = _make_session_local()

    with TestingSessionLocal() as db:
        product = _product(db)
        _order(db, product, 5, date(2025, 3, 1))
        _order(db, product, 5, date(2025, 3, 3))
        db.commit()

        # 10 / 8 = 1.25 exactly; 10 / 3 = 3.333...
        assert usage.analyze(db, product.id, date(2025, 3, 8)).average_daily_usage == Decimal("1.25")
        assert usage.analyze(db, product.id, date(2025, 3, 3)).average_daily_usage == Decimal("3.33")
        assert usage.analyze(db, product.id, date(2025, 3, 16)).average_daily_usage == Decimal("0.63")

    Base.metadata.drop_all(engine)


def test_other_statuses_products_and_months_are_excluded():
    TestingSessionLocal, engine = _make_session_local()

    with TestingSessionLocal() as db:
        product = _product(db)
        other = _product(db, sku="CYL-50KG-STD")
        _order(db, product, 4, date(2025, 6, 3))
        _order(db, product, 9, date(2025, 6, 4), status="confirmed")
        _order(db, product, 7, date(2025, 6, 4), status="cancelled")
        _order(db, other, 11, date(2025, 6, 4))
        _order(db, product, 6, date(2025, 5, 28))
        _order(db, product, 8, date(2025, 4, 1))
        _order(db, product, 12, date(2025, 6, 20))
        db.commit()

        result = usage.analyze(db, product.id, date(2025, 6, 10))

    assert result.total_delivered_this_month == 16
    # The trend covers the trailing 30 days, so late May counts there but not in the month total.
    assert [(point.date, point.quantity) for point in result.trend] == [
        (date(2025, 5, 28), 6),
        (date(2025, 6, 3), 4),
    ]

    Base.metadata.drop_all(engine)


def test_trend_is_dated_by_delivery_date_when_present():
    TestingSessionLocal, engine = _make_session_local()

    with TestingSessionLocal() as db:
        product = _product(db)
        _order(db, product, 3, date(2025, 6, 1), delivery_date=date(2025, 6, 4))
        _order(db, product, 2, date(2025, 6, 4))
        db.commit()

        result = usage.analyze(db, product.id, date(2025, 6, 5))

    assert [(point.date, point.quantity) for point in result.trend] == [(date(2025, 6, 4), 5)]
    assert result.total_delivered_this_month == 5

    Base.metadata.drop_all(engine)


def test_product_without_orders_gets_zeroed_result():
    TestingSessionLocal, engine = _make_session_local()

    with TestingSessionLocal() as db:
        product = _product(db)
        db.commit()
        result = usage.analyze(db, product.id, date(2025, 6, 5))

    assert result.total_delivered_this_month == 0
    assert result.average_daily_usage == Decimal("0.00")
    assert result.trend == []

    Base.metadata.drop_all(engine)


def test_backend_failure_returns_zeroed_result(monkeypatch):
    TestingSessionLocal, engine = _make_session_local()

    with TestingSessionLocal() as db:
        product = _product(db)
        _order(db, product, 3, date(2025, 6, 2))
        db.commit()

        def boom(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(db, "query", boom)
        result = usage.analyze(db, product.id, date(2025, 6, 5))

    assert result.product_id == product.id
    assert result.total_delivered_this_month == 0
    assert result.average_daily_usage == Decimal("0.00")
    assert result.trend == []

    Base.metadata.drop_all(engine)
