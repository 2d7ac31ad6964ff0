from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from depot.inventory.classifier import LOW_STOCK_THRESHOLD, classify, classify_available, classify_utilization
from depot.inventory.domain import Balance, StockStatus
from depot.inventory.exceptions import NotFoundError
from depot.inventory.service import REASON_TRANSFER_COMPENSATION, REASON_TRANSFER_IN, REASON_TRANSFER_OUT
from depot.inventory.store import BalanceStore, SqlBalanceStore
from depot.models import Product, Warehouse

logger = logging.getLogger(__name__)

MOVEMENT_TRANSFER_IN = "transfer_in"
MOVEMENT_TRANSFER_OUT = "transfer_out"
MOVEMENT_ADJUSTMENT = "adjustment"


def _store(db: Session, store: Optional[BalanceStore]) -> BalanceStore:
    return store if store is not None else SqlBalanceStore(db)


def _warehouses_by_id(db: Session) -> Dict[int, Warehouse]:
    return {warehouse.id: warehouse for warehouse in db.query(Warehouse).order_by(Warehouse.id.asc()).all()}


def get_product_balances(db: Session, product_id: int, store: Optional[BalanceStore] = None) -> dict:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})

    warehouses = _warehouses_by_id(db)
    rows = []
    for balance in _store(db, store).read_many(product_id):
        warehouse = warehouses.get(balance.warehouse_id)
        rows.append(
            {
                "warehouse_id": balance.warehouse_id,
                "warehouse_name": warehouse.name if warehouse else f"Warehouse #{balance.warehouse_id}",
                "city": warehouse.city if warehouse else None,
                "qty_full": balance.qty_full,
                "qty_empty": balance.qty_empty,
                "qty_reserved": balance.qty_reserved,
                "qty_available": balance.available,
                "status": classify(balance),
                "updated_at": balance.updated_at,
            }
        )
    return {"product_id": product.id, "sku": product.sku, "name": product.name, "balances": rows}


def get_stock_levels(db: Session, store: Optional[BalanceStore] = None) -> List[dict]:
    """Per active product: quantities in each warehouse plus totals and aggregate status."""
    products = db.query(Product).filter(Product.status == "active").order_by(Product.sku.asc()).all()
    warehouses = _warehouses_by_id(db)
    balances_by_product: Dict[int, List[Balance]] = defaultdict(list)
    for balance in _store(db, store).read_all():
        balances_by_product[balance.product_id].append(balance)

    levels = []
    for product in products:
        per_warehouse = {}
        total_full = total_empty = total_reserved = 0
        for balance in balances_by_product.get(product.id, []):
            warehouse = warehouses.get(balance.warehouse_id)
            per_warehouse[balance.warehouse_id] = {
                "warehouse_name": warehouse.name if warehouse else "Unknown",
                "qty_full": balance.qty_full,
                "qty_empty": balance.qty_empty,
                "qty_reserved": balance.qty_reserved,
            }
            total_full += balance.qty_full
            total_empty += balance.qty_empty
            total_reserved += balance.qty_reserved

        total_available = total_full - total_reserved
        levels.append(
            {
                "product_id": product.id,
                "product_sku": product.sku,
                "product_name": product.name,
                "warehouses": per_warehouse,
                "total_full": total_full,
                "total_empty": total_empty,
                "total_reserved": total_reserved,
                "total_available": total_available,
                "stock_status": classify_available(total_available),
            }
        )
    return levels


def get_warehouse_overview(db: Session, store: Optional[BalanceStore] = None) -> List[dict]:
    totals: Dict[int, int] = defaultdict(int)
    for balance in _store(db, store).read_all():
        totals[balance.warehouse_id] += balance.qty_full + balance.qty_empty

    overview = []
    for warehouse in _warehouses_by_id(db).values():
        total_cylinders = totals.get(warehouse.id, 0)
        percentage, status = classify_utilization(total_cylinders, warehouse.capacity_cylinders)
        overview.append(
            {
                "id": warehouse.id,
                "name": warehouse.name,
                "city": warehouse.city,
                "state": warehouse.state,
                "total_cylinders": total_cylinders,
                "capacity_cylinders": warehouse.capacity_cylinders or 1000,
                "utilization_percentage": percentage,
                "status": status,
            }
        )
    return overview


def _movement_type(reason: str) -> str:
    if reason.startswith(REASON_TRANSFER_OUT):
        return MOVEMENT_TRANSFER_OUT
    if reason.startswith(REASON_TRANSFER_IN) or reason.startswith(REASON_TRANSFER_COMPENSATION):
        return MOVEMENT_TRANSFER_IN
    return MOVEMENT_ADJUSTMENT


def get_recent_movements(db: Session, limit: int = 20, store: Optional[BalanceStore] = None) -> List[dict]:
    if limit <= 0:
        raise ValueError("Limit must be greater than zero.")

    records = _store(db, store).list_adjustments(limit=limit)
    warehouses = _warehouses_by_id(db)
    product_ids = {record.product_id for record in records}
    products = {
        product.id: product
        for product in (db.query(Product).filter(Product.id.in_(product_ids)).all() if product_ids else [])
    }

    movements = []
    for record in records:
        product = products.get(record.product_id)
        warehouse = warehouses.get(record.warehouse_id)
        movements.append(
            {
                "id": record.id,
                "timestamp": record.created_at,
                "product_name": product.name if product else "Unknown",
                "product_sku": product.sku if product else "Unknown",
                "warehouse_name": warehouse.name if warehouse else "Unknown",
                "movement_type": _movement_type(record.reason),
                "quantity": record.applied_delta,
                "reason": record.reason,
                "reference": record.correlation_id,
                "actor": record.actor,
            }
        )
    return movements


def get_low_stock_alerts(db: Session, store: Optional[BalanceStore] = None) -> List[dict]:
    warehouses = _warehouses_by_id(db)
    products = {product.id: product for product in db.query(Product).all()}

    alerts = []
    for balance in _store(db, store).read_all():
        status = classify(balance)
        if status == StockStatus.GOOD:
            continue
        product = products.get(balance.product_id)
        warehouse = warehouses.get(balance.warehouse_id)
        alerts.append(
            {
                "product_id": balance.product_id,
                "name": product.name if product else "Unknown",
                "sku": product.sku if product else "Unknown",
                "warehouse_id": balance.warehouse_id,
                "warehouse_name": warehouse.name if warehouse else "Unknown",
                "current_stock": balance.available,
                "threshold": LOW_STOCK_THRESHOLD,
                "status": status,
                "urgency": "critical" if status == StockStatus.OUT else "warning",
            }
        )
    logger.debug("Low stock scan: balances_flagged=%s", len(alerts))
    return alerts
