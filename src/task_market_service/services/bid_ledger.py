"""Bid placement, editing, acceptance and listing."""

from __future__ import annotations

import math
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, cast

from task_market_service.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from task_market_service.logging import get_logger
from task_market_service.services.permissions import (
    TaskAction,
    can_act_on_task,
    require_role,
    require_task_capability,
)
from task_market_service.services.task_store import DuplicateBidError, StaleStatusError
from task_market_service.services.transitions import (
    TaskEvent,
    TaskStatus,
    is_valid_status,
    next_status,
)

if TYPE_CHECKING:
    from task_market_service.services.notifier import Notifier
    from task_market_service.services.permissions import Actor
    from task_market_service.services.task_store import TaskStore

BID_STATUSES: frozenset[str] = frozenset(
    {"pending", "accepted", "rejected", "in-progress", "completed", "cancelled"}
)

_MAX_MESSAGE_LENGTH = 2000
_MAX_REASON_LENGTH = 1000


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _is_number(value: object) -> bool:
    """Check if value is a finite int or float (not bool)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _validate_amount(value: object) -> float:
    if not _is_number(value) or cast("float", value) < 0:
        raise ValidationError("Bid amount must be a non-negative number", {"field": "amount"})
    return float(cast("float", value))


def _validate_message(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Bid message must be a non-empty string", {"field": "message"})
    if len(value) > _MAX_MESSAGE_LENGTH:
        raise ValidationError(
            f"Bid message must be at most {_MAX_MESSAGE_LENGTH} characters",
            {"field": "message"},
        )
    return value


def _validate_estimated_duration(value: object) -> float | None:
    if value is None:
        return None
    if not _is_number(value) or cast("float", value) <= 0:
        raise ValidationError(
            "Estimated duration must be a positive number",
            {"field": "estimated_duration"},
        )
    return float(cast("float", value))


def _format_amount(amount: float) -> str:
    return f"{amount:g}"


class BidLedger:
    """
    Owns every bid mutation.

    Acceptance runs as one storage transaction that re-checks the task is
    still open, accepts the bid, assigns the task and rejects every other
    live bid on it.
    """

    def __init__(self, store: TaskStore, notifier: Notifier) -> None:
        self._store = store
        self._notifier = notifier
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _get_bid_or_raise(self, bid_id: str) -> dict[str, Any]:
        bid = self._store.get_bid(bid_id)
        if bid is None:
            raise NotFoundError("BID_NOT_FOUND", "Bid not found")
        return bid

    def _get_task_or_raise(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError("TASK_NOT_FOUND", "Task not found")
        return task

    def _get_bid_and_task(self, bid_id: str) -> tuple[dict[str, Any], dict[str, Any]]:
        bid = self._get_bid_or_raise(bid_id)
        return bid, self._get_task_or_raise(bid["task_id"])

    @staticmethod
    def _require_bid_owner(actor: Actor, bid: dict[str, Any], verb: str) -> None:
        if bid["tasker_id"] != actor.id and not actor.is_admin:
            raise ForbiddenError(f"Not authorized to {verb} this bid", {"bid_id": bid["bid_id"]})

    @staticmethod
    def _require_pending(bid: dict[str, Any], verb: str) -> None:
        if bid["status"] != "pending":
            raise InvalidStateError(
                f"Bid cannot be {verb} once it is {bid['status']}",
                {"bid_id": bid["bid_id"], "current_status": bid["status"]},
            )

    @staticmethod
    def _bid_view(bid: dict[str, Any], *, include_contact: bool) -> dict[str, Any]:
        view = dict(bid)
        if not include_contact:
            view.pop("tasker_email", None)
        return view

    @staticmethod
    def _task_summary(task: dict[str, Any]) -> dict[str, Any]:
        return {
            "task_id": task["task_id"],
            "title": task["title"],
            "description": task["description"],
            "budget": task["budget"],
            "status": task["status"],
            "date_required": task["date_required"],
            "assigned_to": task["assigned_to"],
            "category_id": task["category_id"],
            "address": task["address"],
            "customer_id": task["customer_id"],
            "customer_name": task["customer_name"],
        }

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def place_bid(self, actor: Actor, data: dict[str, Any]) -> dict[str, Any]:
        """
        Place a bid on an open task.

        Error precedence:
        1. INVALID_PAYLOAD: missing task_id or malformed amount/message/estimated_duration
        2. TASK_NOT_FOUND
        3. INVALID_STATUS: task not open
        4. FORBIDDEN: actor is neither tasker nor admin
        5. SELF_BID: actor posted the task
        6. BID_ALREADY_EXISTS: duplicate bid, including a concurrent one
        """
        task_id = data.get("task_id")
        if not isinstance(task_id, str) or not task_id:
            raise ValidationError("Missing required field: task_id", {"field": "task_id"})
        amount = _validate_amount(data.get("amount"))
        message = _validate_message(data.get("message"))
        estimated_duration = _validate_estimated_duration(data.get("estimated_duration"))

        task = self._get_task_or_raise(task_id)

        if task["status"] != TaskStatus.OPEN:
            raise InvalidStateError(
                "This task is no longer accepting bids",
                {"task_id": task_id, "current_status": task["status"]},
            )

        require_role(actor, {"tasker", "admin"}, "Only taskers can place bids")

        if task["customer_id"] == actor.id:
            raise ValidationError("Cannot bid on your own task", {"task_id": task_id}, error="SELF_BID")

        now = _now_iso()
        bid: dict[str, Any] = {
            "bid_id": f"bid-{uuid.uuid4()}",
            "task_id": task_id,
            "tasker_id": actor.id,
            "tasker_name": actor.name,
            "tasker_email": actor.email,
            "amount": amount,
            "message": message,
            "estimated_duration": estimated_duration,
            "status": "pending",
            "rejection_reason": None,
            "created_at": now,
            "updated_at": now,
        }

        try:
            inserted = self._store.insert_bid(bid)
        except DuplicateBidError as exc:
            raise ConflictError(
                "BID_ALREADY_EXISTS",
                "You have already placed a bid on this task",
                {"task_id": task_id},
            ) from exc

        if inserted == 0:
            raise InvalidStateError("This task is no longer accepting bids", {"task_id": task_id})

        self._logger.info(
            "Bid placed",
            extra={"bid_id": bid["bid_id"], "task_id": task_id, "tasker_id": actor.id},
        )

        self._notifier.emit(
            "new_bid",
            task["customer_id"],
            actor.id,
            "New Bid Received",
            f'{actor.name} has placed a bid of {_format_amount(amount)} on your task "{task["title"]}"',
            task_id=task_id,
            bid_id=bid["bid_id"],
            data={"amount": amount, "tasker_name": actor.name, "task_title": task["title"]},
        )
        return bid

    def get_bid(self, actor: Actor, bid_id: str) -> dict[str, Any]:
        """Fetch a bid visible to its tasker, the task's customer or an admin."""
        bid, task = self._get_bid_and_task(bid_id)
        is_bidder = bid["tasker_id"] == actor.id
        if not is_bidder and not can_act_on_task(actor, task, TaskAction.VIEW_BIDDER_CONTACT):
            raise ForbiddenError("Not authorized to view this bid", {"bid_id": bid_id})
        return bid

    def update_bid(self, actor: Actor, bid_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Change amount, message and/or estimated duration of a pending bid.

        Error precedence:
        1. BID_NOT_FOUND
        2. FORBIDDEN: actor is neither the bidder nor admin
        3. INVALID_STATUS: bid not pending
        4. INVALID_PAYLOAD: nothing to update or malformed field
        """
        bid = self._get_bid_or_raise(bid_id)
        self._require_bid_owner(actor, bid, "update")
        self._require_pending(bid, "updated")

        updates: dict[str, Any] = {}
        if "amount" in data:
            updates["amount"] = _validate_amount(data["amount"])
        if "message" in data:
            updates["message"] = _validate_message(data["message"])
        if "estimated_duration" in data:
            updates["estimated_duration"] = _validate_estimated_duration(data["estimated_duration"])
        if len(updates) == 0:
            raise ValidationError(
                "Provide at least one of amount, message or estimated_duration",
                {},
            )
        updates["updated_at"] = _now_iso()

        if self._store.update_bid(bid_id, updates, expected_status="pending") == 0:
            raise InvalidStateError("Bid is no longer pending", {"bid_id": bid_id})
        return self._get_bid_or_raise(bid_id)

    def delete_bid(self, actor: Actor, bid_id: str) -> dict[str, Any]:
        """Remove a pending bid entirely, freeing the task/tasker pair."""
        bid = self._get_bid_or_raise(bid_id)
        self._require_bid_owner(actor, bid, "delete")
        self._require_pending(bid, "deleted")

        if self._store.delete_bid(bid_id, expected_status="pending") == 0:
            raise InvalidStateError("Bid is no longer pending", {"bid_id": bid_id})

        self._logger.info("Bid deleted", extra={"bid_id": bid_id, "actor_id": actor.id})
        return {"message": "Bid removed"}

    def cancel_bid(self, actor: Actor, bid_id: str) -> dict[str, Any]:
        """Withdraw a pending bid, keeping it on record as cancelled."""
        bid = self._get_bid_or_raise(bid_id)
        self._require_bid_owner(actor, bid, "cancel")
        self._require_pending(bid, "cancelled")

        updates = {"status": "cancelled", "updated_at": _now_iso()}
        if self._store.update_bid(bid_id, updates, expected_status="pending") == 0:
            raise InvalidStateError("Bid is no longer pending", {"bid_id": bid_id})
        return self._get_bid_or_raise(bid_id)

    def accept_bid(self, actor: Actor, bid_id: str) -> dict[str, Any]:
        """
        Accept a bid and assign its task to the bidder.

        Error precedence:
        1. BID_NOT_FOUND / TASK_NOT_FOUND
        2. FORBIDDEN: actor is neither the task's customer nor admin
        3. INVALID_STATUS: task not open, bid not pending, or lost a concurrent race
        """
        bid, task = self._get_bid_and_task(bid_id)
        require_task_capability(actor, task, TaskAction.MANAGE_BIDS, "Not authorized to accept this bid")
        return self.accept_for_task(actor, task, bid)

    def accept_for_task(self, actor: Actor, task: dict[str, Any], bid: dict[str, Any]) -> dict[str, Any]:
        """
        Run the accept transaction for an already authorized actor.

        Shared by bid acceptance and task assignment with a bid.
        """
        if task["status"] != TaskStatus.OPEN:
            if task["status"] in (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETION_REQUESTED):
                raise InvalidStateError(
                    "Task has already been assigned",
                    {"task_id": task["task_id"], "current_status": task["status"]},
                )
            next_status(task["status"], TaskEvent.ASSIGN)

        if bid["status"] != "pending":
            raise InvalidStateError(
                "This bid is no longer pending",
                {"bid_id": bid["bid_id"], "current_status": bid["status"]},
            )

        try:
            self._store.accept_bid(task["task_id"], bid["bid_id"], bid["tasker_id"], _now_iso())
        except StaleStatusError as exc:
            if exc.entity == "task":
                raise InvalidStateError("Task has already been assigned", {"task_id": task["task_id"]}) from exc
            raise InvalidStateError("This bid is no longer pending", {"bid_id": bid["bid_id"]}) from exc

        self._logger.info(
            "Bid accepted",
            extra={"bid_id": bid["bid_id"], "task_id": task["task_id"], "tasker_id": bid["tasker_id"]},
        )

        self._notifier.emit(
            "bid_accepted",
            bid["tasker_id"],
            actor.id,
            "Bid Accepted",
            f'Your bid of {_format_amount(bid["amount"])} on task "{task["title"]}" has been accepted!',
            task_id=task["task_id"],
            bid_id=bid["bid_id"],
            data={"amount": bid["amount"], "customer_name": actor.name, "task_title": task["title"]},
        )

        return {
            "message": "Bid accepted",
            "bid": self._get_bid_or_raise(bid["bid_id"]),
            "task": self._get_task_or_raise(task["task_id"]),
        }

    def reject_bid(self, actor: Actor, bid_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Reject a pending bid with an optional reason.

        Error precedence:
        1. BID_NOT_FOUND / TASK_NOT_FOUND
        2. FORBIDDEN: actor is neither the task's customer nor admin
        3. INVALID_STATUS: bid not pending
        4. INVALID_PAYLOAD: reason not a string
        """
        bid, task = self._get_bid_and_task(bid_id)
        require_task_capability(actor, task, TaskAction.MANAGE_BIDS, "Not authorized to reject this bid")
        if bid["status"] != "pending":
            raise InvalidStateError(
                "This bid is no longer pending",
                {"bid_id": bid_id, "current_status": bid["status"]},
            )

        reason = data.get("reason")
        if reason is not None and not isinstance(reason, str):
            raise ValidationError("Field 'reason' must be a string", {"field": "reason"})
        if reason is not None and len(reason) > _MAX_REASON_LENGTH:
            raise ValidationError(
                f"Field 'reason' must be at most {_MAX_REASON_LENGTH} characters",
                {"field": "reason"},
            )

        updates = {"status": "rejected", "rejection_reason": reason or None, "updated_at": _now_iso()}
        if self._store.update_bid(bid_id, updates, expected_status="pending") == 0:
            raise InvalidStateError("This bid is no longer pending", {"bid_id": bid_id})

        self._notifier.emit(
            "bid_rejected",
            bid["tasker_id"],
            actor.id,
            "Bid Rejected",
            f'Your bid of {_format_amount(bid["amount"])} on task "{task["title"]}" has been rejected.',
            task_id=task["task_id"],
            bid_id=bid_id,
            data={
                "amount": bid["amount"],
                "customer_name": actor.name,
                "task_title": task["title"],
                "reason": reason or "",
            },
        )
        return {"message": "Bid rejected", "bid": self._get_bid_or_raise(bid_id)}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def bids_for_task_view(self, actor: Actor, task: dict[str, Any]) -> list[dict[str, Any]]:
        """
        Bids on a task as the actor may see them, cheapest first.

        Raises:
            ForbiddenError: If the task is not open and the actor is neither its customer nor admin.
        """
        require_task_capability(actor, task, TaskAction.VIEW_BIDS, "Not authorized to view bids for this task")
        include_contact = can_act_on_task(actor, task, TaskAction.VIEW_BIDDER_CONTACT)

        bids = self._store.get_bids_for_task(task["task_id"])
        profiles = self._store.get_tasker_profiles(sorted({bid["tasker_id"] for bid in bids}))

        result: list[dict[str, Any]] = []
        for bid in bids:
            profile = profiles[bid["tasker_id"]]
            tasker: dict[str, Any] = {
                "id": bid["tasker_id"],
                "name": bid["tasker_name"],
                "avg_rating": profile["avg_rating"],
                "total_reviews": profile["total_reviews"],
                "completed_tasks": profile["completed_tasks"],
            }
            if include_contact:
                tasker["email"] = bid["tasker_email"]
            view = self._bid_view(bid, include_contact=include_contact)
            view["tasker"] = tasker
            result.append(view)
        return result

    def list_bids_for_task(self, actor: Actor, task_id: str) -> list[dict[str, Any]]:
        """List the bids on a task, cheapest first."""
        task = self._get_task_or_raise(task_id)
        return self.bids_for_task_view(actor, task)

    def list_bids_for_tasker(
        self,
        actor: Actor,
        status: str | None = None,
        task_status: str | None = None,
    ) -> list[dict[str, Any]]:
        """
        The actor's own bids, newest first, each with a summary of its task.

        Args:
            status: Comma-separated bid statuses to keep
            task_status: Task status to keep, or "!<status>" to exclude

        Raises:
            ForbiddenError: If the actor is neither tasker nor admin.
            ValidationError: If a filter names an unknown status.
        """
        require_role(actor, {"tasker", "admin"}, "Only taskers can view their bids")

        statuses: list[str] | None = None
        if status:
            statuses = [value.strip() for value in status.split(",") if value.strip()]
            unknown = [value for value in statuses if value not in BID_STATUSES]
            if unknown:
                raise ValidationError(f"Unknown bid status: {unknown[0]}", {"field": "status"})

        exclude_task_status = False
        wanted_task_status: str | None = None
        if task_status:
            exclude_task_status = task_status.startswith("!")
            wanted_task_status = task_status[1:] if exclude_task_status else task_status
            if not is_valid_status(wanted_task_status):
                raise ValidationError(f"Unknown task status: {wanted_task_status}", {"field": "task_status"})

        bids = self._store.get_bids_for_tasker(actor.id, statuses)
        tasks = self._store.get_tasks_by_ids(sorted({bid["task_id"] for bid in bids}))

        result: list[dict[str, Any]] = []
        for bid in bids:
            task = tasks.get(bid["task_id"])
            if task is None:
                continue
            if wanted_task_status is not None:
                matches = task["status"] == wanted_task_status
                if matches == exclude_task_status:
                    continue
            result.append({**bid, "task": self._task_summary(task)})
        return result
