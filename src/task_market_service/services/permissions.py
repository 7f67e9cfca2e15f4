"""
Capability checks for task and bid commands.

Pure Python, no FastAPI imports. Every command evaluates exactly one
capability through can_act_on_task().
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from task_market_service.core.exceptions import ForbiddenError

ROLES: frozenset[str] = frozenset({"customer", "tasker", "admin"})


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of a command."""

    id: str
    role: str
    name: str
    email: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_tasker(self) -> bool:
        return self.role == "tasker"

    @property
    def is_customer(self) -> bool:
        return self.role == "customer"


class TaskAction(StrEnum):
    """Actions an actor may attempt against a task."""

    EDIT = "edit"
    DELETE = "delete"
    ASSIGN = "assign"
    MANAGE_BIDS = "manage_bids"
    VIEW_BIDS = "view_bids"
    VIEW_BIDDER_CONTACT = "view_bidder_contact"
    START = "start"
    REQUEST_COMPLETION = "request_completion"
    CONFIRM_COMPLETION = "confirm_completion"
    REJECT_COMPLETION = "reject_completion"
    CANCEL = "cancel"
    TASKER_FEEDBACK = "tasker_feedback"
    REVIEW = "review"


_OWNER_OR_ADMIN: frozenset[TaskAction] = frozenset(
    {
        TaskAction.EDIT,
        TaskAction.DELETE,
        TaskAction.ASSIGN,
        TaskAction.MANAGE_BIDS,
        TaskAction.VIEW_BIDDER_CONTACT,
        TaskAction.CONFIRM_COMPLETION,
        TaskAction.REJECT_COMPLETION,
        TaskAction.CANCEL,
    }
)


def is_owner(actor: Actor, task: dict[str, Any]) -> bool:
    return task["customer_id"] == actor.id


def is_assigned_tasker(actor: Actor, task: dict[str, Any]) -> bool:
    return task["assigned_to"] is not None and task["assigned_to"] == actor.id


def can_act_on_task(actor: Actor, task: dict[str, Any], action: TaskAction) -> bool:
    """Decide whether actor may perform action on task."""
    if action in _OWNER_OR_ADMIN:
        return actor.is_admin or is_owner(actor, task)
    if action == TaskAction.VIEW_BIDS:
        return task["status"] == "open" or actor.is_admin or is_owner(actor, task)
    if action == TaskAction.START:
        return actor.is_admin or is_assigned_tasker(actor, task)
    if action in (TaskAction.REQUEST_COMPLETION, TaskAction.TASKER_FEEDBACK):
        return is_assigned_tasker(actor, task)
    if action == TaskAction.REVIEW:
        return is_owner(actor, task)
    return False


def require_task_capability(
    actor: Actor,
    task: dict[str, Any],
    action: TaskAction,
    message: str,
) -> None:
    """
    Raise ForbiddenError unless actor may perform action on task.

    Raises:
        ForbiddenError: If the capability check fails.
    """
    if not can_act_on_task(actor, task, action):
        raise ForbiddenError(message, {"task_id": task["task_id"], "action": action.value})


def require_role(actor: Actor, roles: frozenset[str] | set[str], message: str) -> None:
    """
    Raise ForbiddenError unless actor has one of roles.

    Raises:
        ForbiddenError: If the role check fails.
    """
    if actor.role not in roles:
        raise ForbiddenError(message, {"role": actor.role})
