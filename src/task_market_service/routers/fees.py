"""Fee policy endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request

from task_market_service.core.auth import require_actor
from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import parse_json_body
from task_market_service.schemas import FeePolicyResponse

if TYPE_CHECKING:
    from task_market_service.services.fee_policy import FeePolicyService

router = APIRouter()


def _fee_service() -> FeePolicyService:
    state = get_app_state()
    if state.fee_service is None:
        msg = "FeePolicyService not initialized"
        raise RuntimeError(msg)
    return state.fee_service


@router.get("/fees", response_model=FeePolicyResponse)
async def get_fees(request: Request) -> dict[str, Any]:
    """Current fee policy, or the configured default if none was stored."""
    await require_actor(request)
    return _fee_service().get_policy()


@router.get("/fees/history")
async def fee_history(request: Request) -> dict[str, Any]:
    """Every stored fee policy, newest first. Administrators only."""
    actor = await require_actor(request)
    return {"policies": _fee_service().policy_history(actor)}


@router.put("/fees", response_model=FeePolicyResponse)
async def update_fees(request: Request) -> dict[str, Any]:
    """Store a new fee policy. Administrators only."""
    actor = await require_actor(request)
    data = parse_json_body(await request.body())
    return _fee_service().update_policy(actor, data)
