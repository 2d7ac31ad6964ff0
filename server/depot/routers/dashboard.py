from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from depot.auth import require_module
from depot.dashboard.schemas import InventoryDashboardResponse, LowStockItem
from depot.dashboard.service import (
    get_low_stock_alerts,
    get_recent_movements,
    get_stock_levels,
    get_warehouse_overview,
)
from depot.db import get_db
from depot.inventory.runtime import get_balance_store
from depot.inventory.store import BalanceStore
from depot.module_keys import ModuleKey

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"], dependencies=[Depends(require_module(ModuleKey.DASHBOARD.value))])


@router.get("/inventory", response_model=InventoryDashboardResponse)
def inventory_dashboard(
    movements: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    store: BalanceStore = Depends(get_balance_store),
):
    return {
        "warehouses": get_warehouse_overview(db, store=store),
        "stock_levels": get_stock_levels(db, store=store),
        "movements": get_recent_movements(db, limit=movements, store=store),
    }


@router.get("/low-stock", response_model=List[LowStockItem])
def low_stock(
    db: Session = Depends(get_db),
    store: BalanceStore = Depends(get_balance_store),
):
    return get_low_stock_alerts(db, store=store)
