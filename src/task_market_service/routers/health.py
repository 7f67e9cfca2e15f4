"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from task_market_service.core.state import get_app_state
from task_market_service.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return statistics."""
    state = get_app_state()
    total_tasks = 0
    tasks_by_status: dict[str, int] = {}
    total_reviews = 0
    if state.task_lifecycle is not None:
        stats = state.task_lifecycle.get_stats()
        total_tasks = stats["total_tasks"]
        tasks_by_status = stats["tasks_by_status"]
    if state.review_aggregator is not None:
        total_reviews = state.review_aggregator.get_stats()["total_reviews"]
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_tasks=total_tasks,
        tasks_by_status=tasks_by_status,
        total_reviews=total_reviews,
    )
