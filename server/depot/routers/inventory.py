from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from depot.auth import AuthContext, get_auth_context, require_admin, require_module
from depot.dashboard.service import get_product_balances
from depot.db import get_db
from depot.inventory import schemas
from depot.inventory.classifier import classify, classify_available
from depot.inventory.domain import Balance, Quantities
from depot.inventory.exceptions import NotFoundError
from depot.inventory.runtime import InventoryRuntime, get_balance_store, get_runtime
from depot.inventory.service import adjust, set_balance, transfer
from depot.inventory.store import BalanceStore
from depot.models import Product, Warehouse
from depot.module_keys import ModuleKey
from depot.seed import seed_demo_data


router = APIRouter(prefix="/api/inventory", tags=["inventory"], dependencies=[Depends(require_module(ModuleKey.INVENTORY.value))])


def _require_warehouse(db: Session, warehouse_id: int) -> Warehouse:
    warehouse = db.query(Warehouse).filter(Warehouse.id == warehouse_id).first()
    if not warehouse:
        raise NotFoundError(f"Warehouse {warehouse_id} not found", {"warehouse_id": warehouse_id})
    return warehouse


def _require_product(db: Session, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})
    return product


def _balance_response(balance: Balance) -> schemas.BalanceResponse:
    return schemas.BalanceResponse(
        warehouse_id=balance.warehouse_id,
        product_id=balance.product_id,
        qty_full=balance.qty_full,
        qty_empty=balance.qty_empty,
        qty_reserved=balance.qty_reserved,
        qty_available=balance.available,
        status=classify(balance),
        updated_at=balance.updated_at,
    )


@router.get("/products/{product_id}/balances", response_model=schemas.ProductBalancesResponse)
def list_product_balances(
    product_id: int,
    db: Session = Depends(get_db),
    store: BalanceStore = Depends(get_balance_store),
):
    return get_product_balances(db, product_id, store=store)


@router.get("/balances/{warehouse_id}/{product_id}", response_model=schemas.BalanceResponse)
def get_balance(
    warehouse_id: int,
    product_id: int,
    db: Session = Depends(get_db),
    store: BalanceStore = Depends(get_balance_store),
):
    _require_warehouse(db, warehouse_id)
    _require_product(db, product_id)
    balance = store.get(warehouse_id, product_id) or Balance.empty_for(warehouse_id, product_id)
    return _balance_response(balance)


@router.put("/balances/{warehouse_id}/{product_id}", response_model=schemas.SetBalanceResponse)
def put_balance(
    warehouse_id: int,
    product_id: int,
    payload: schemas.SetBalancePayload,
    db: Session = Depends(get_db),
    store: BalanceStore = Depends(get_balance_store),
    ctx: AuthContext = Depends(get_auth_context),
):
    _require_warehouse(db, warehouse_id)
    _require_product(db, product_id)
    outcome = set_balance(
        store,
        ctx,
        warehouse_id=warehouse_id,
        product_id=product_id,
        quantities=Quantities(full=payload.qty_full, empty=payload.qty_empty, reserved=payload.qty_reserved),
        reason=payload.reason,
    )
    return schemas.SetBalanceResponse(
        balance=_balance_response(outcome.balance),
        records=[schemas.AdjustmentRecordResponse.model_validate(record) for record in outcome.records],
        warnings=outcome.warnings,
        status=outcome.status,
    )


@router.post("/adjustments", response_model=schemas.AdjustmentResponse, status_code=status.HTTP_201_CREATED)
def create_adjustment(
    payload: schemas.AdjustmentCreate,
    db: Session = Depends(get_db),
    store: BalanceStore = Depends(get_balance_store),
    ctx: AuthContext = Depends(get_auth_context),
):
    _require_warehouse(db, payload.warehouse_id)
    _require_product(db, payload.product_id)
    outcome = adjust(
        store,
        ctx,
        warehouse_id=payload.warehouse_id,
        product_id=payload.product_id,
        dimension=payload.dimension,
        delta=payload.delta,
        reason=payload.reason,
    )
    return schemas.AdjustmentResponse(
        balance=_balance_response(outcome.balance),
        previous=_balance_response(outcome.previous),
        record=schemas.AdjustmentRecordResponse.model_validate(outcome.record),
        status=outcome.status,
    )


@router.get("/adjustments", response_model=List[schemas.AdjustmentRecordResponse])
def list_adjustments(
    product_id: Optional[int] = Query(None),
    warehouse_id: Optional[int] = Query(None),
    correlation_id: Optional[str] = Query(None, max_length=32),
    limit: int = Query(50, ge=1, le=500),
    store: BalanceStore = Depends(get_balance_store),
):
    records = store.list_adjustments(
        product_id=product_id,
        warehouse_id=warehouse_id,
        correlation_id=correlation_id,
        limit=limit,
    )
    return [schemas.AdjustmentRecordResponse.model_validate(record) for record in records]


@router.post("/transfers", response_model=schemas.TransferResponse, status_code=status.HTTP_201_CREATED)
def create_transfer(
    payload: schemas.TransferCreate,
    db: Session = Depends(get_db),
    store: BalanceStore = Depends(get_balance_store),
    runtime: InventoryRuntime = Depends(get_runtime),
    ctx: AuthContext = Depends(get_auth_context),
):
    _require_warehouse(db, payload.from_warehouse_id)
    _require_warehouse(db, payload.to_warehouse_id)
    _require_product(db, payload.product_id)
    result = transfer(
        store,
        ctx,
        from_warehouse_id=payload.from_warehouse_id,
        to_warehouse_id=payload.to_warehouse_id,
        product_id=payload.product_id,
        quantity=payload.quantity,
        notes=payload.notes,
        locks=runtime.locks,
    )
    return schemas.TransferResponse(
        correlation_id=result.correlation_id,
        quantity=result.quantity,
        source=_balance_response(result.source),
        destination=_balance_response(result.destination),
        debit=schemas.AdjustmentRecordResponse.model_validate(result.debit),
        credit=schemas.AdjustmentRecordResponse.model_validate(result.credit),
    )


@router.get("/classify", response_model=schemas.ClassificationResponse)
def classify_quantities(
    qty_full: int = Query(..., ge=0),
    qty_reserved: int = Query(0, ge=0),
):
    available = qty_full - qty_reserved
    return schemas.ClassificationResponse(
        qty_full=qty_full,
        qty_reserved=qty_reserved,
        qty_available=available,
        status=classify_available(available),
    )


@router.get("/alerts", response_model=List[schemas.StockAlertResponse])
def list_stock_alerts(
    product_id: Optional[int] = Query(None),
    runtime: InventoryRuntime = Depends(get_runtime),
):
    return [
        schemas.StockAlertResponse(
            product_id=alert.product_id,
            warehouse_id=alert.warehouse_id,
            status=alert.status,
            available=alert.available,
            message=alert.message,
            occurred_at=alert.occurred_at,
        )
        for alert in reversed(runtime.alerts.snapshot(product_id))
    ]


@router.post("/seed", response_model=schemas.SeedResponse, dependencies=[Depends(require_admin)])
def seed_inventory(
    db: Session = Depends(get_db),
    store: BalanceStore = Depends(get_balance_store),
    ctx: AuthContext = Depends(get_auth_context),
):
    return seed_demo_data(db, ctx, store=store)
