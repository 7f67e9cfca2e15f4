"""Review submission and rating endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.auth import require_actor
from task_market_service.core.exceptions import ValidationError
from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import parse_json_body

if TYPE_CHECKING:
    from task_market_service.services.review_aggregator import ReviewAggregator

router = APIRouter()


def _review_aggregator() -> ReviewAggregator:
    state = get_app_state()
    if state.review_aggregator is None:
        msg = "ReviewAggregator not initialized"
        raise RuntimeError(msg)
    return state.review_aggregator


@router.post("/reviews", status_code=201)
async def submit_review(request: Request) -> JSONResponse:
    """Review the tasker who completed one of the caller's tasks."""
    actor = await require_actor(request)
    data = parse_json_body(await request.body())
    result = _review_aggregator().submit_review(actor, data)
    return JSONResponse(status_code=201, content=result)


@router.get("/reviews/mine")
async def my_reviews(request: Request) -> dict[str, Any]:
    """Reviews the caller has written."""
    actor = await require_actor(request)
    return {"reviews": _review_aggregator().my_reviews(actor)}


@router.get("/reviews/received")
async def received_reviews(request: Request) -> dict[str, Any]:
    """Reviews the caller has received."""
    actor = await require_actor(request)
    return {"reviews": _review_aggregator().received_reviews(actor)}


@router.get("/reviews/check")
async def check_review(request: Request) -> dict[str, Any]:
    """Whether the caller already reviewed a task."""
    actor = await require_actor(request)
    task_id = request.query_params.get("task_id")
    if not task_id:
        raise ValidationError("Missing required query parameter: task_id", {"field": "task_id"})
    return _review_aggregator().check_review(actor, task_id)


@router.get("/reviews/tasker/{tasker_id}")
async def tasker_reviews(tasker_id: str) -> dict[str, Any]:
    """Public list of a tasker's reviews, newest first."""
    return {"reviews": _review_aggregator().reviews_for_tasker(tasker_id)}


@router.get("/reviews/stats/{tasker_id}")
async def tasker_stats(tasker_id: str) -> dict[str, Any]:
    """Public rating statistics for a tasker."""
    return _review_aggregator().stats_for_tasker(tasker_id)


@router.get("/reviews/{review_id}")
async def get_review(review_id: str, request: Request) -> dict[str, Any]:
    """Get a single review."""
    actor = await require_actor(request)
    return _review_aggregator().get_review(actor, review_id)
