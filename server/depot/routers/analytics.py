"""Analytics API endpoints."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from depot.analytics.schemas import UsageAnalytics
from depot.analytics.usage import analyze
from depot.auth import require_module
from depot.db import get_db
from depot.inventory.exceptions import NotFoundError
from depot.models import Product
from depot.module_keys import ModuleKey

router = APIRouter(prefix="/api/analytics", tags=["analytics"], dependencies=[Depends(require_module(ModuleKey.ANALYTICS.value))])


@router.get("/products/{product_id}/usage", response_model=UsageAnalytics)
def product_usage(
    product_id: int,
    as_of: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    if not db.query(Product.id).filter(Product.id == product_id).first():
        raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})
    return analyze(db, product_id, as_of or date.today())
