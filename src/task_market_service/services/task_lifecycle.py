"""
Task lifecycle: creation, editing, search and every status transition.

Each command resolves the task, checks one capability, consults the
transition table and writes through a status-guarded update. Notifications
go to the counterpart of the actor once the write has committed.
"""

from __future__ import annotations

import math
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, cast

from task_market_service.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from task_market_service.logging import get_logger
from task_market_service.services.fee_policy import compute_fees
from task_market_service.services.geo import is_valid_coordinate
from task_market_service.services.permissions import (
    TaskAction,
    can_act_on_task,
    require_role,
    require_task_capability,
)
from task_market_service.services.task_store import StaleStatusError
from task_market_service.services.transitions import (
    TaskEvent,
    TaskStatus,
    event_for,
    is_valid_status,
    next_status,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from task_market_service.clients.category_client import CategoryClient
    from task_market_service.services.bid_ledger import BidLedger
    from task_market_service.services.fee_policy import FeePolicy, FeePolicyService
    from task_market_service.services.notifier import Notifier
    from task_market_service.services.permissions import Actor
    from task_market_service.services.task_store import TaskStore

_MAX_TITLE_LENGTH = 200
_MAX_TEXT_LENGTH = 5000
_MAX_IMAGES = 20


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _is_number(value: object) -> bool:
    """Check if value is a finite int or float (not bool)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _require_text(data: Mapping[str, Any], field: str, max_length: int = _MAX_TEXT_LENGTH) -> str:
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Field '{field}' must be a non-empty string", {"field": field})
    if len(value) > max_length:
        raise ValidationError(f"Field '{field}' must be at most {max_length} characters", {"field": field})
    return value.strip()


def _optional_text(data: Mapping[str, Any], field: str, max_length: int = _MAX_TEXT_LENGTH) -> str | None:
    value = data.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Field '{field}' must be a string", {"field": field})
    if len(value) > max_length:
        raise ValidationError(f"Field '{field}' must be at most {max_length} characters", {"field": field})
    return value.strip() or None


def _require_budget(value: object) -> float:
    if not _is_number(value) or cast("float", value) < 0:
        raise ValidationError("Budget must be a non-negative number", {"field": "budget"})
    return float(cast("float", value))


def _require_duration(value: object) -> float:
    if not _is_number(value) or cast("float", value) <= 0:
        raise ValidationError("Duration must be a positive number of hours", {"field": "duration"})
    return float(cast("float", value))


def _require_date(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Field 'date_required' must be an ISO 8601 date", {"field": "date_required"})
    try:
        datetime.fromisoformat(value.strip())
    except ValueError as exc:
        raise ValidationError(
            "Field 'date_required' must be an ISO 8601 date",
            {"field": "date_required"},
        ) from exc
    return value.strip()


def _require_bool(value: object, field: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"Field '{field}' must be a boolean", {"field": field})
    return value


def _image_list(value: object, field: str) -> list[str]:
    if not isinstance(value, list) or any(not isinstance(item, str) or not item for item in value):
        raise ValidationError(f"Field '{field}' must be a list of non-empty strings", {"field": field})
    return list(value)


def _parse_coordinate(value: object) -> float | None:
    if _is_number(value):
        return float(cast("float", value))
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _coordinates(data: Mapping[str, Any]) -> tuple[float | None, float | None]:
    """Keep a latitude/longitude pair only when both parse and lie in range."""
    latitude = _parse_coordinate(data.get("latitude"))
    longitude = _parse_coordinate(data.get("longitude"))
    if latitude is None or longitude is None or not is_valid_coordinate(latitude, longitude):
        return None, None
    return latitude, longitude


def _query_number(params: Mapping[str, str], name: str) -> float | None:
    raw = params.get(name)
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValidationError(f"Query parameter '{name}' must be a number", {"field": name}) from exc
    if not math.isfinite(value):
        raise ValidationError(f"Query parameter '{name}' must be a number", {"field": name})
    return value


def _query_bool(params: Mapping[str, str], name: str) -> bool | None:
    raw = params.get(name)
    if raw is None or raw == "":
        return None
    lowered = raw.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ValidationError(f"Query parameter '{name}' must be true or false", {"field": name})


def _parse_statuses(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    statuses = [value.strip() for value in raw.split(",") if value.strip()]
    for value in statuses:
        if not is_valid_status(value):
            raise ValidationError(f"Unknown task status: {value}", {"field": "status"})
    return statuses


def _fee_columns(budget: float, policy: FeePolicy) -> dict[str, Any]:
    """Fee snapshot columns, including the cent-rounded budget."""
    fees = compute_fees(budget, policy)
    return {
        "platform_fee_rate": float(policy.platform_fee_rate),
        "commission_rate": float(policy.commission_rate),
        **fees.to_dict(),
    }


class TaskLifecycle:
    """
    Owns every task mutation and the task read views.

    Bid acceptance is delegated to the BidLedger so assignment through a
    bid and direct bid acceptance share one transaction.
    """

    def __init__(
        self,
        store: TaskStore,
        bid_ledger: BidLedger,
        notifier: Notifier,
        fee_service: FeePolicyService,
        category_client: CategoryClient | None,
        page_size: int,
    ) -> None:
        self._store = store
        self._bid_ledger = bid_ledger
        self._notifier = notifier
        self._fee_service = fee_service
        self._category_client = category_client
        self._page_size = page_size
        self._logger = get_logger(__name__)

    def set_category_client(self, category_client: CategoryClient) -> None:
        self._category_client = category_client

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _get_task_or_raise(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError("TASK_NOT_FOUND", "Task not found")
        return task

    async def _validate_category(self, category_id: str, subcategory_id: str | None) -> None:
        """
        Check the category exists and the subcategory belongs to it.

        Raises:
            ValidationError: INVALID_CATEGORY if either check fails.
            ServiceError: CATEGORY_SERVICE_UNAVAILABLE if the category service is unreachable.
        """
        if self._category_client is None:
            msg = "CategoryClient not initialized"
            raise RuntimeError(msg)

        if not await self._category_client.category_exists(category_id):
            raise ValidationError(
                "Category not found",
                {"category_id": category_id},
                error="INVALID_CATEGORY",
            )
        if subcategory_id is not None and not await self._category_client.is_subcategory_of(
            subcategory_id, category_id
        ):
            raise ValidationError(
                "Subcategory does not belong to the selected category",
                {"category_id": category_id, "subcategory_id": subcategory_id},
                error="INVALID_CATEGORY",
            )

    def _annotate_for_tasker(self, actor: Actor | None, tasks: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if actor is None or not actor.is_tasker:
            return tasks
        own_bids = self._store.get_tasker_bids_for_tasks(actor.id, [task["task_id"] for task in tasks])
        annotated: list[dict[str, Any]] = []
        for task in tasks:
            user_bid = own_bids.get(task["task_id"])
            annotated.append({**task, "has_user_bid": user_bid is not None, "user_bid": user_bid})
        return annotated

    def _guarded_update(self, task: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
        if self._store.update_task(task["task_id"], updates, expected_status=task["status"]) == 0:
            raise InvalidStateError(
                "Task status changed, please retry",
                {"task_id": task["task_id"], "expected_status": task["status"]},
            )
        return self._get_task_or_raise(task["task_id"])

    @staticmethod
    def _stale(task: dict[str, Any], exc: StaleStatusError) -> InvalidStateError:
        return InvalidStateError(
            "Task status changed, please retry",
            {"task_id": task["task_id"], "expected_status": task["status"], "entity": exc.entity},
        )

    # ------------------------------------------------------------------
    # Creation and editing
    # ------------------------------------------------------------------

    async def create_task(self, actor: Actor, data: dict[str, Any]) -> dict[str, Any]:
        """
        Post a new open task with its fee snapshot.

        Error precedence:
        1. FORBIDDEN: actor is not a customer
        2. INVALID_PAYLOAD: missing or malformed field
        3. INVALID_CATEGORY: unknown category, or subcategory outside it
        4. CATEGORY_SERVICE_UNAVAILABLE: category service unreachable
        """
        require_role(actor, {"customer"}, "Only customers can create tasks")

        title = _require_text(data, "title", _MAX_TITLE_LENGTH)
        description = _require_text(data, "description")
        category_id = _require_text(data, "category_id", _MAX_TITLE_LENGTH)
        subcategory_id = _optional_text(data, "subcategory_id", _MAX_TITLE_LENGTH)
        address = _require_text(data, "address", _MAX_TITLE_LENGTH)
        date_required = _require_date(data.get("date_required"))
        time_required = _require_text(data, "time_required", _MAX_TITLE_LENGTH)
        duration = _require_duration(data.get("duration"))
        budget = _require_budget(data.get("budget"))
        is_urgent = _require_bool(data.get("is_urgent", False), "is_urgent")
        images = _image_list(data.get("images", []), "images")
        if len(images) > _MAX_IMAGES:
            raise ValidationError(f"At most {_MAX_IMAGES} images are allowed", {"field": "images"})
        latitude, longitude = _coordinates(data)

        await self._validate_category(category_id, subcategory_id)
        fee_columns = _fee_columns(budget, self._fee_service.current_policy())

        now = _now_iso()
        task: dict[str, Any] = {
            "task_id": f"t-{uuid.uuid4()}",
            "customer_id": actor.id,
            "customer_name": actor.name,
            "title": title,
            "description": description,
            "category_id": category_id,
            "subcategory_id": subcategory_id,
            "address": address,
            "latitude": latitude,
            "longitude": longitude,
            "date_required": date_required,
            "time_required": time_required,
            "duration": duration,
            "is_urgent": is_urgent,
            "images": images,
            "status": TaskStatus.OPEN.value,
            "assigned_to": None,
            **fee_columns,
            "started_at": None,
            "completion_requested_at": None,
            "completion_requested_by": None,
            "completion_note": None,
            "completed_at": None,
            "customer_feedback": None,
            "tasker_feedback": None,
            "cancelled_at": None,
            "created_at": now,
            "updated_at": now,
        }
        self._store.insert_task(task)

        self._logger.info(
            "Task created",
            extra={"task_id": task["task_id"], "customer_id": actor.id, "budget": task["budget"]},
        )
        return task

    async def update_task(self, actor: Actor, task_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Edit an open task's details.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: actor is neither the customer nor admin
        3. INVALID_STATUS: task no longer open (admins may edit any status)
        4. INVALID_PAYLOAD: nothing to update or malformed field
        5. INVALID_CATEGORY
        """
        task = self._get_task_or_raise(task_id)
        require_task_capability(actor, task, TaskAction.EDIT, "Not authorized to update this task")
        if task["status"] != TaskStatus.OPEN and not actor.is_admin:
            raise InvalidStateError(
                "Task can only be edited while it is open",
                {"task_id": task_id, "current_status": task["status"]},
            )

        updates: dict[str, Any] = {}
        if "title" in data:
            updates["title"] = _require_text(data, "title", _MAX_TITLE_LENGTH)
        if "description" in data:
            updates["description"] = _require_text(data, "description")
        if "category_id" in data:
            updates["category_id"] = _require_text(data, "category_id", _MAX_TITLE_LENGTH)
        if "subcategory_id" in data:
            updates["subcategory_id"] = _optional_text(data, "subcategory_id", _MAX_TITLE_LENGTH)
        if "address" in data:
            updates["address"] = _require_text(data, "address", _MAX_TITLE_LENGTH)
        if "date_required" in data:
            updates["date_required"] = _require_date(data["date_required"])
        if "time_required" in data:
            updates["time_required"] = _require_text(data, "time_required", _MAX_TITLE_LENGTH)
        if "duration" in data:
            updates["duration"] = _require_duration(data["duration"])
        if "is_urgent" in data:
            updates["is_urgent"] = _require_bool(data["is_urgent"], "is_urgent")
        if "latitude" in data or "longitude" in data:
            coordinates = {"latitude": task["latitude"], "longitude": task["longitude"]}
            coordinates.update({key: data[key] for key in ("latitude", "longitude") if key in data})
            updates["latitude"], updates["longitude"] = _coordinates(coordinates)
        if "budget" in data:
            updates.update(_fee_columns(_require_budget(data["budget"]), self._fee_service.current_policy()))
        if "existing_images" in data or "new_images" in data:
            images = (
                _image_list(data["existing_images"], "existing_images")
                if "existing_images" in data
                else list(task["images"])
            )
            if "new_images" in data:
                images.extend(_image_list(data["new_images"], "new_images"))
            if len(images) > _MAX_IMAGES:
                raise ValidationError(f"At most {_MAX_IMAGES} images are allowed", {"field": "images"})
            updates["images"] = images

        if len(updates) == 0:
            raise ValidationError("No updatable fields provided", {})

        if "category_id" in updates or "subcategory_id" in updates:
            await self._validate_category(
                updates.get("category_id", task["category_id"]),
                updates["subcategory_id"] if "subcategory_id" in updates else task["subcategory_id"],
            )

        updates["updated_at"] = _now_iso()
        updated = self._guarded_update(task, updates)
        self._logger.info(
            "Task updated",
            extra={"task_id": task_id, "actor_id": actor.id, "fields": sorted(updates)},
        )
        return updated

    def delete_task(self, actor: Actor, task_id: str) -> dict[str, Any]:
        """Delete a task and its bids. Open tasks only, unless the actor is admin."""
        task = self._get_task_or_raise(task_id)
        require_task_capability(actor, task, TaskAction.DELETE, "Not authorized to delete this task")
        if task["status"] != TaskStatus.OPEN and not actor.is_admin:
            raise InvalidStateError(
                "Only open tasks can be deleted",
                {"task_id": task_id, "current_status": task["status"]},
            )

        if self._store.delete_task(task_id, expected_status=task["status"]) == 0:
            raise InvalidStateError(
                "Task status changed, please retry",
                {"task_id": task_id, "expected_status": task["status"]},
            )

        self._logger.info("Task deleted", extra={"task_id": task_id, "actor_id": actor.id})
        return {"message": "Task removed"}

    # ------------------------------------------------------------------
    # Assignment and status transitions
    # ------------------------------------------------------------------

    def assign_task(self, actor: Actor, task_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Assign an open task to a tasker.

        With a bid_id, or when the tasker has a pending bid on the task, the
        bid is accepted atomically. Otherwise the task is assigned directly
        and every pending bid is rejected.
        """
        task = self._get_task_or_raise(task_id)
        require_task_capability(actor, task, TaskAction.ASSIGN, "Not authorized to assign this task")

        tasker_id = data.get("tasker_id")
        if not isinstance(tasker_id, str) or not tasker_id:
            raise ValidationError("Missing required field: tasker_id", {"field": "tasker_id"})
        bid_id = data.get("bid_id")
        if bid_id is not None and (not isinstance(bid_id, str) or not bid_id):
            raise ValidationError("Field 'bid_id' must be a non-empty string", {"field": "bid_id"})
        if tasker_id == task["customer_id"]:
            raise ValidationError("Cannot assign a task to its own customer", {"tasker_id": tasker_id})

        if task["status"] in (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETION_REQUESTED):
            raise InvalidStateError(
                "Task has already been assigned",
                {"task_id": task_id, "current_status": task["status"]},
            )
        next_status(task["status"], TaskEvent.ASSIGN)

        if bid_id is not None:
            bid = self._store.get_bid(bid_id)
            if bid is None:
                raise NotFoundError("BID_NOT_FOUND", "Bid not found")
            if bid["task_id"] != task_id or bid["tasker_id"] != tasker_id:
                raise ValidationError(
                    "Bid does not belong to this task and tasker",
                    {"bid_id": bid_id, "task_id": task_id, "tasker_id": tasker_id},
                )
        else:
            bid = self._store.find_bid(task_id, tasker_id)
            if bid is not None and bid["status"] != "pending":
                bid = None

        if bid is not None:
            result = self._bid_ledger.accept_for_task(actor, task, bid)
            return cast("dict[str, Any]", result["task"])

        try:
            self._store.assign_task(task_id, tasker_id, _now_iso())
        except StaleStatusError as exc:
            raise InvalidStateError("Task has already been assigned", {"task_id": task_id}) from exc

        self._logger.info(
            "Task assigned",
            extra={"task_id": task_id, "tasker_id": tasker_id, "actor_id": actor.id},
        )
        self._notifier.emit(
            "task_assigned",
            tasker_id,
            actor.id,
            "Task Assigned",
            f'You have been assigned to the task "{task["title"]}"',
            task_id=task_id,
            data={"task_title": task["title"], "customer_name": task["customer_name"]},
        )
        return self._get_task_or_raise(task_id)

    def update_status(self, actor: Actor, task_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Move a task to the requested status through the matching command.

        Assignment needs a tasker and goes through assign_task instead.
        """
        target = data.get("status")
        if not is_valid_status(target):
            raise ValidationError("Field 'status' must be a valid task status", {"field": "status"})
        target_status = cast("str", target)

        task = self._get_task_or_raise(task_id)
        event = event_for(task["status"], target_status)
        if event is None:
            raise InvalidStateError(
                f"Cannot move a task from '{task['status']}' to '{target_status}'",
                {"current_status": task["status"], "attempted_status": target_status},
            )

        if event == TaskEvent.ASSIGN:
            raise ValidationError("Use the assign endpoint to assign a task", {"field": "status"})
        if event == TaskEvent.START:
            return self.start_task(actor, task_id)
        if event == TaskEvent.REQUEST_COMPLETION:
            return self.request_completion(actor, task_id, data)
        if event == TaskEvent.CONFIRM_COMPLETION:
            return self.confirm_completion(actor, task_id, data)
        if event == TaskEvent.REJECT_COMPLETION:
            return self.reject_completion(actor, task_id, data)
        return self.cancel_task(actor, task_id)

    def start_task(self, actor: Actor, task_id: str) -> dict[str, Any]:
        """Start work on an assigned task."""
        task = self._get_task_or_raise(task_id)
        require_task_capability(actor, task, TaskAction.START, "Only the assigned tasker can start this task")
        next_status(task["status"], TaskEvent.START)

        try:
            self._store.start_task(task_id, _now_iso())
        except StaleStatusError as exc:
            raise self._stale(task, exc) from exc

        self._logger.info("Task started", extra={"task_id": task_id, "actor_id": actor.id})
        self._notifier.emit(
            "task_started",
            task["customer_id"],
            actor.id,
            "Task Started",
            f'Work has started on your task "{task["title"]}"',
            task_id=task_id,
            data={"task_title": task["title"]},
        )
        return self._get_task_or_raise(task_id)

    def request_completion(self, actor: Actor, task_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Ask the customer to confirm the work is done."""
        task = self._get_task_or_raise(task_id)
        require_task_capability(
            actor,
            task,
            TaskAction.REQUEST_COMPLETION,
            "Only the assigned tasker can request completion",
        )
        target = next_status(task["status"], TaskEvent.REQUEST_COMPLETION)
        note = _optional_text(data, "completion_note")

        now = _now_iso()
        updated = self._guarded_update(
            task,
            {
                "status": target.value,
                "completion_requested_at": now,
                "completion_requested_by": actor.id,
                "completion_note": note,
                "updated_at": now,
            },
        )

        self._logger.info("Task completion requested", extra={"task_id": task_id, "actor_id": actor.id})
        self._notifier.emit(
            "completion_requested",
            task["customer_id"],
            actor.id,
            "Task Completion Requested",
            f'{actor.name} has requested to mark task "{task["title"]}" as completed.',
            task_id=task_id,
            data={"task_title": task["title"], "tasker_name": actor.name, "note": note or ""},
        )
        return updated

    def confirm_completion(self, actor: Actor, task_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Confirm a completion request and close the task."""
        task = self._get_task_or_raise(task_id)
        require_task_capability(
            actor,
            task,
            TaskAction.CONFIRM_COMPLETION,
            "Not authorized to confirm completion of this task",
        )
        next_status(task["status"], TaskEvent.CONFIRM_COMPLETION)
        feedback = _optional_text(data, "customer_feedback")

        try:
            self._store.confirm_completion(task_id, task["assigned_to"], feedback, _now_iso())
        except StaleStatusError as exc:
            raise self._stale(task, exc) from exc

        self._logger.info(
            "Task completed",
            extra={"task_id": task_id, "tasker_id": task["assigned_to"], "actor_id": actor.id},
        )
        self._notifier.emit(
            "completion_confirmed",
            task["assigned_to"],
            actor.id,
            "Task Completion Confirmed",
            f'The customer has confirmed completion of task "{task["title"]}".',
            task_id=task_id,
            data={"task_title": task["title"], "customer_name": task["customer_name"]},
        )
        return self._get_task_or_raise(task_id)

    def reject_completion(self, actor: Actor, task_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Send a completion request back to the tasker."""
        task = self._get_task_or_raise(task_id)
        require_task_capability(
            actor,
            task,
            TaskAction.REJECT_COMPLETION,
            "Not authorized to reject completion of this task",
        )
        target = next_status(task["status"], TaskEvent.REJECT_COMPLETION)
        reason = _optional_text(data, "rejection_reason")

        updated = self._guarded_update(
            task,
            {
                "status": target.value,
                "completion_requested_at": None,
                "completion_requested_by": None,
                "completion_note": None,
                "updated_at": _now_iso(),
            },
        )

        self._logger.info("Task completion rejected", extra={"task_id": task_id, "actor_id": actor.id})
        message = f'The customer has rejected the completion request for task "{task["title"]}".'
        if reason:
            message += f" Reason: {reason}"
        self._notifier.emit(
            "completion_rejected",
            task["assigned_to"],
            actor.id,
            "Task Completion Rejected",
            message,
            task_id=task_id,
            data={"task_title": task["title"], "reason": reason or ""},
        )
        return updated

    def cancel_task(self, actor: Actor, task_id: str) -> dict[str, Any]:
        """Cancel a task that has not reached completion."""
        task = self._get_task_or_raise(task_id)
        require_task_capability(actor, task, TaskAction.CANCEL, "Not authorized to cancel this task")
        next_status(task["status"], TaskEvent.CANCEL)

        try:
            self._store.cancel_task(task_id, task["status"], _now_iso())
        except StaleStatusError as exc:
            raise self._stale(task, exc) from exc

        self._logger.info(
            "Task cancelled",
            extra={"task_id": task_id, "previous_status": task["status"], "actor_id": actor.id},
        )
        if task["assigned_to"] is not None:
            self._notifier.emit(
                "task_cancelled",
                task["assigned_to"],
                actor.id,
                "Task Cancelled",
                f'The task "{task["title"]}" has been cancelled.',
                task_id=task_id,
                data={"task_title": task["title"]},
            )
        return self._get_task_or_raise(task_id)

    def add_tasker_feedback(self, actor: Actor, task_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Let the assigned tasker leave feedback on a completed task."""
        task = self._get_task_or_raise(task_id)
        require_task_capability(
            actor,
            task,
            TaskAction.TASKER_FEEDBACK,
            "Only the assigned tasker can leave feedback on this task",
        )
        if task["status"] != TaskStatus.COMPLETED:
            raise InvalidStateError(
                "Feedback can only be added to completed tasks",
                {"task_id": task_id, "current_status": task["status"]},
            )
        feedback = _require_text(data, "tasker_feedback")
        return self._guarded_update(task, {"tasker_feedback": feedback, "updated_at": _now_iso()})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_task(self, actor: Actor, task_id: str) -> dict[str, Any]:
        """
        Fetch a task with the bids the actor may see.

        Taskers also get has_user_bid and user_bid.
        """
        task = self._get_task_or_raise(task_id)
        view = dict(task)
        if can_act_on_task(actor, task, TaskAction.VIEW_BIDS):
            view["bids"] = self._bid_ledger.bids_for_task_view(actor, task)
        return self._annotate_for_tasker(actor, [view])[0]

    def get_tasks(self, actor: Actor | None, params: Mapping[str, str], page: int = 1) -> dict[str, Any]:
        """
        Search tasks, urgent first then newest first, one page at a time.

        Args:
            params: Raw query parameters (keyword, category, subcategory,
                status, is_urgent, min_budget, max_budget, location,
                latitude, longitude, distance)
            page: 1-based page number
        """
        if page < 1:
            raise ValidationError("Page must be a positive integer", {"field": "page"})

        status = params.get("status") or None
        if status is not None and not is_valid_status(status):
            raise ValidationError(f"Unknown task status: {status}", {"field": "status"})

        near: tuple[float, float, float] | None = None
        latitude = _query_number(params, "latitude")
        longitude = _query_number(params, "longitude")
        distance = _query_number(params, "distance")
        if latitude is not None and longitude is not None and distance is not None:
            if not is_valid_coordinate(latitude, longitude):
                raise ValidationError("Coordinates are out of range", {"field": "latitude"})
            if distance < 0:
                raise ValidationError("Distance must be non-negative", {"field": "distance"})
            near = (latitude, longitude, distance)

        tasks, total = self._store.search_tasks(
            keyword=params.get("keyword") or None,
            category_id=params.get("category") or None,
            subcategory_id=params.get("subcategory") or None,
            status=status,
            is_urgent=_query_bool(params, "is_urgent"),
            min_budget=_query_number(params, "min_budget"),
            max_budget=_query_number(params, "max_budget"),
            location=params.get("location") or None,
            near=near,
            limit=self._page_size,
            offset=(page - 1) * self._page_size,
        )
        return {
            "tasks": self._annotate_for_tasker(actor, tasks),
            "page": page,
            "pages": math.ceil(total / self._page_size),
            "count": total,
        }

    def list_user_tasks(self, actor: Actor, status: str | None = None) -> list[dict[str, Any]]:
        """Tasks the actor posted (customer), is assigned to (tasker), or all tasks (admin)."""
        statuses = _parse_statuses(status)
        if actor.is_admin:
            return self._store.list_tasks(statuses=statuses)
        if actor.is_customer:
            return self._store.list_tasks(customer_id=actor.id, statuses=statuses)
        if actor.is_tasker:
            return self._store.list_tasks(assigned_to=actor.id, statuses=statuses)
        raise ForbiddenError("Not authorized to list tasks", {"role": actor.role})

    def list_addresses(self, actor: Actor) -> list[str]:
        """Addresses the actor has posted tasks at, most recent first."""
        return self._store.list_addresses(actor.id)

    def get_stats(self) -> dict[str, Any]:
        """Task counts for the health endpoint."""
        return {
            "total_tasks": self._store.count_tasks(),
            "tasks_by_status": self._store.count_tasks_by_status(),
        }

    def close(self) -> None:
        """Close the underlying store."""
        self._store.close()
