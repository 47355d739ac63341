"""Schemas for cost trend endpoints."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field


class CostTrendRequest(BaseModel):
    """Request to compare spend between two consecutive periods."""

    environment_id: str
    organization_id: str
    period_days: int = Field(default=30, ge=1, le=365)
    group_by: str = Field(default="resource_group", pattern=r"^(resource_group|resource_type|subscription)$")
    end_date: date | None = None


class CostTrendItem(BaseModel):
    key: str
    current_cost: float
    previous_cost: float
    change: float
    change_percentage: float | None = None


class CostTrendResponse(BaseModel):
    environment_id: str
    group_by: str
    access_mode: str
    current_period_start: date
    current_period_end: date
    previous_period_start: date
    previous_period_end: date
    current_total: float
    previous_total: float
    change_percentage: float | None = None
    currency: str = "USD"
    items: list[CostTrendItem] = Field(default_factory=list)
