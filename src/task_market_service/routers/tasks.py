"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.auth import optional_actor, require_actor
from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import parse_json_body, parse_optional_json_body, parse_page

if TYPE_CHECKING:
    from task_market_service.services.task_lifecycle import TaskLifecycle

router = APIRouter()


def _task_lifecycle() -> TaskLifecycle:
    state = get_app_state()
    if state.task_lifecycle is None:
        msg = "TaskLifecycle not initialized"
        raise RuntimeError(msg)
    return state.task_lifecycle


# ---------------------------------------------------------------------------
# Collection routes (MUST be before /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Post a new task."""
    actor = await require_actor(request)
    data = parse_json_body(await request.body())
    result = await _task_lifecycle().create_task(actor, data)
    return JSONResponse(status_code=201, content=result)


@router.get("/tasks")
async def list_tasks(request: Request) -> dict[str, Any]:
    """Search tasks. Authentication is optional."""
    actor = await optional_actor(request)
    page = parse_page(request.query_params.get("page"))
    return _task_lifecycle().get_tasks(actor, dict(request.query_params), page)


@router.get("/tasks/mine")
async def list_my_tasks(request: Request) -> dict[str, Any]:
    """Tasks the caller posted or is assigned to."""
    actor = await require_actor(request)
    tasks = _task_lifecycle().list_user_tasks(actor, request.query_params.get("status"))
    return {"tasks": tasks}


@router.get("/tasks/addresses")
async def list_addresses(request: Request) -> dict[str, Any]:
    """Addresses the caller has used before."""
    actor = await require_actor(request)
    return {"addresses": _task_lifecycle().list_addresses(actor)}


# ---------------------------------------------------------------------------
# Single task routes
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}")
async def get_task(task_id: str, request: Request) -> dict[str, Any]:
    """Get a task with the bids the caller may see."""
    actor = await require_actor(request)
    return _task_lifecycle().get_task(actor, task_id)


@router.put("/tasks/{task_id}")
async def update_task(task_id: str, request: Request) -> dict[str, Any]:
    """Edit a task."""
    actor = await require_actor(request)
    data = parse_json_body(await request.body())
    return await _task_lifecycle().update_task(actor, task_id, data)


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: str, request: Request) -> dict[str, Any]:
    """Delete a task and its bids."""
    actor = await require_actor(request)
    return _task_lifecycle().delete_task(actor, task_id)


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


@router.put("/tasks/{task_id}/assign")
async def assign_task(task_id: str, request: Request) -> dict[str, Any]:
    """Assign a task to a tasker."""
    actor = await require_actor(request)
    data = parse_json_body(await request.body())
    return _task_lifecycle().assign_task(actor, task_id, data)


@router.put("/tasks/{task_id}/status")
async def update_status(task_id: str, request: Request) -> dict[str, Any]:
    """Move a task to a new status."""
    actor = await require_actor(request)
    data = parse_json_body(await request.body())
    return _task_lifecycle().update_status(actor, task_id, data)


@router.put("/tasks/{task_id}/start")
async def start_task(task_id: str, request: Request) -> dict[str, Any]:
    """Start work on an assigned task."""
    actor = await require_actor(request)
    return _task_lifecycle().start_task(actor, task_id)


@router.put("/tasks/{task_id}/request-completion")
async def request_completion(task_id: str, request: Request) -> dict[str, Any]:
    """Ask the customer to confirm completion."""
    actor = await require_actor(request)
    data = parse_optional_json_body(await request.body())
    return _task_lifecycle().request_completion(actor, task_id, data)


@router.put("/tasks/{task_id}/confirm-completion")
async def confirm_completion(task_id: str, request: Request) -> dict[str, Any]:
    """Confirm completion and close the task."""
    actor = await require_actor(request)
    data = parse_optional_json_body(await request.body())
    return _task_lifecycle().confirm_completion(actor, task_id, data)


@router.put("/tasks/{task_id}/reject-completion")
async def reject_completion(task_id: str, request: Request) -> dict[str, Any]:
    """Send a completion request back to the tasker."""
    actor = await require_actor(request)
    data = parse_optional_json_body(await request.body())
    return _task_lifecycle().reject_completion(actor, task_id, data)


@router.put("/tasks/{task_id}/cancel")
async def cancel_task(task_id: str, request: Request) -> dict[str, Any]:
    """Cancel a task."""
    actor = await require_actor(request)
    return _task_lifecycle().cancel_task(actor, task_id)


@router.put("/tasks/{task_id}/tasker-feedback")
async def tasker_feedback(task_id: str, request: Request) -> dict[str, Any]:
    """Leave tasker feedback on a completed task."""
    actor = await require_actor(request)
    data = parse_json_body(await request.body())
    return _task_lifecycle().add_tasker_feedback(actor, task_id, data)
