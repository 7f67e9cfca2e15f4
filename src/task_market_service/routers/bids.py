"""Bid placement, listing, acceptance and rejection endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.auth import require_actor
from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import parse_json_body, parse_optional_json_body

if TYPE_CHECKING:
    from task_market_service.services.bid_ledger import BidLedger

router = APIRouter()


def _bid_ledger() -> BidLedger:
    state = get_app_state()
    if state.bid_ledger is None:
        msg = "BidLedger not initialized"
        raise RuntimeError(msg)
    return state.bid_ledger


# ---------------------------------------------------------------------------
# Collection routes (MUST be before /bids/{bid_id})
# ---------------------------------------------------------------------------


@router.post("/bids", status_code=201)
async def place_bid(request: Request) -> JSONResponse:
    """Place a bid on an open task."""
    actor = await require_actor(request)
    data = parse_json_body(await request.body())
    result = _bid_ledger().place_bid(actor, data)
    return JSONResponse(status_code=201, content=result)


@router.get("/bids/mine")
async def list_my_bids(request: Request) -> dict[str, Any]:
    """The caller's own bids, each with a task summary."""
    actor = await require_actor(request)
    bids = _bid_ledger().list_bids_for_tasker(
        actor,
        status=request.query_params.get("status"),
        task_status=request.query_params.get("task_status"),
    )
    return {"bids": bids}


@router.get("/bids/task/{task_id}")
async def list_task_bids(task_id: str, request: Request) -> dict[str, Any]:
    """Bids on a task, cheapest first."""
    actor = await require_actor(request)
    return {"bids": _bid_ledger().list_bids_for_task(actor, task_id)}


# ---------------------------------------------------------------------------
# Single bid routes
# ---------------------------------------------------------------------------


@router.get("/bids/{bid_id}")
async def get_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Get a bid."""
    actor = await require_actor(request)
    return _bid_ledger().get_bid(actor, bid_id)


@router.put("/bids/{bid_id}")
async def update_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Edit a pending bid."""
    actor = await require_actor(request)
    data = parse_json_body(await request.body())
    return _bid_ledger().update_bid(actor, bid_id, data)


@router.delete("/bids/{bid_id}")
async def delete_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Remove a pending bid."""
    actor = await require_actor(request)
    return _bid_ledger().delete_bid(actor, bid_id)


@router.put("/bids/{bid_id}/accept")
async def accept_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Accept a bid and assign its task."""
    actor = await require_actor(request)
    return _bid_ledger().accept_bid(actor, bid_id)


@router.put("/bids/{bid_id}/reject")
async def reject_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Reject a pending bid."""
    actor = await require_actor(request)
    data = parse_optional_json_body(await request.body())
    return _bid_ledger().reject_bid(actor, bid_id, data)


@router.put("/bids/{bid_id}/cancel")
async def cancel_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Withdraw a pending bid."""
    actor = await require_actor(request)
    return _bid_ledger().cancel_bid(actor, bid_id)
