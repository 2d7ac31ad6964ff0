"""Pydantic schemas for analytics API responses."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class UsageTrendPoint(BaseModel):
    date: date
    quantity: int


class UsageAnalytics(BaseModel):
    product_id: int
    as_of: date
    total_delivered_this_month: int = 0
    average_daily_usage: Decimal = Decimal("0.00")
    trend: List[UsageTrendPoint] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)
