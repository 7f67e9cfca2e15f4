"""Pydantic response models for the API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_tasks: int
    tasks_by_status: dict[str, int]
    total_reviews: int


class FeePolicyResponse(BaseModel):
    """Response model for the current fee policy."""

    model_config = ConfigDict(extra="forbid")
    policy_id: str | None
    platform_fee_percentage: float
    commission_percentage: float
    trust_and_support_fee: float
    updated_by: str | None
    created_at: str | None
    is_default: bool
