"""Delivered-volume statistics for a product, computed from order history.

Analytics is advisory: a failed read is logged and answered with a zeroed
result so the rest of the dashboard keeps rendering.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import List

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from depot.analytics.schemas import UsageAnalytics, UsageTrendPoint
from depot.models import Order, OrderLine
from depot.utils.rounding import round_half_up

logger = logging.getLogger(__name__)

DELIVERED_STATUS = "delivered"
TREND_WINDOW_DAYS = 30


def _month_start(d: date) -> date:
    return date(d.year, d.month, 1)


def _next_month_start(d: date) -> date:
    m = d.month
    y = d.year + m // 12
    return date(y, m % 12 + 1, 1)


def _delivered_this_month(db: Session, product_id: int, as_of: date) -> int:
    total = (
        db.query(func.coalesce(func.sum(OrderLine.quantity), 0))
        .join(Order, Order.id == OrderLine.order_id)
        .filter(OrderLine.product_id == product_id)
        .filter(Order.status == DELIVERED_STATUS)
        .filter(Order.order_date >= _month_start(as_of), Order.order_date < _next_month_start(as_of))
        .scalar()
    )
    return int(total or 0)


def _usage_trend(db: Session, product_id: int, as_of: date) -> List[UsageTrendPoint]:
    delivered_on = func.coalesce(Order.delivery_date, Order.order_date)
    window_start = as_of - timedelta(days=TREND_WINDOW_DAYS)
    rows = (
        db.query(delivered_on.label("delivered_on"), func.sum(OrderLine.quantity))
        .join(Order, Order.id == OrderLine.order_id)
        .filter(OrderLine.product_id == product_id)
        .filter(Order.status == DELIVERED_STATUS)
        .filter(delivered_on >= window_start, delivered_on <= as_of)
        .group_by(delivered_on)
        .order_by(delivered_on)
        .all()
    )
    points = []
    for delivered, quantity in rows:
        if isinstance(delivered, str):
            delivered = date.fromisoformat(delivered[:10])
        points.append(UsageTrendPoint(date=delivered, quantity=int(quantity or 0)))
    return sorted(points, key=lambda point: point.date)


def analyze(db: Session, product_id: int, as_of: date) -> UsageAnalytics:
    try:
        total = _delivered_this_month(db, product_id, as_of)
        trend = _usage_trend(db, product_id, as_of)
    except SQLAlchemyError:
        logger.exception("Usage analytics failed: product_id=%s as_of=%s", product_id, as_of)
        return UsageAnalytics(product_id=product_id, as_of=as_of)

    # as_of.day is the number of days elapsed in the month, never zero.
    average = round_half_up(Decimal(total) / Decimal(as_of.day))
    logger.debug(
        "Usage analytics: product_id=%s as_of=%s total=%s average=%s trend_points=%s",
        product_id,
        as_of,
        total,
        average,
        len(trend),
    )
    return UsageAnalytics(
        product_id=product_id,
        as_of=as_of,
        total_delivered_this_month=total,
        average_daily_usage=average,
        trend=trend,
    )
