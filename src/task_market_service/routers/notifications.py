"""Notification inbox and device token endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.auth import require_actor
from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import parse_json_body, parse_page

if TYPE_CHECKING:
    from task_market_service.services.notifier import Notifier

router = APIRouter()


def _notifier() -> Notifier:
    state = get_app_state()
    if state.notifier is None:
        msg = "Notifier not initialized"
        raise RuntimeError(msg)
    return state.notifier


@router.get("/notifications")
async def list_notifications(request: Request) -> dict[str, Any]:
    """The caller's notifications, newest first."""
    actor = await require_actor(request)
    page = parse_page(request.query_params.get("page"))
    return _notifier().list_notifications(actor, page)


@router.put("/notifications/read-all")
async def mark_all_read(request: Request) -> dict[str, Any]:
    """Mark every notification of the caller as read."""
    actor = await require_actor(request)
    return _notifier().mark_all_read(actor)


@router.put("/notifications/{notification_id}/read")
async def mark_read(notification_id: str, request: Request) -> dict[str, Any]:
    """Mark one notification as read."""
    actor = await require_actor(request)
    return _notifier().mark_read(actor, notification_id)


@router.delete("/notifications/{notification_id}")
async def delete_notification(notification_id: str, request: Request) -> dict[str, Any]:
    """Delete one notification."""
    actor = await require_actor(request)
    return _notifier().delete_notification(actor, notification_id)


@router.post("/notifications/devices", status_code=201)
async def register_device(request: Request) -> JSONResponse:
    """Register a push device token for the caller."""
    actor = await require_actor(request)
    data = parse_json_body(await request.body())
    result = _notifier().register_device_token(actor, data)
    return JSONResponse(status_code=201, content=result)


@router.delete("/notifications/devices/{device_token}")
async def remove_device(device_token: str, request: Request) -> dict[str, Any]:
    """Remove one of the caller's push device tokens."""
    actor = await require_actor(request)
    return _notifier().remove_device_token(actor, device_token)
