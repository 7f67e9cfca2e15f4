"""
Task state machine.

Pure Python, no FastAPI imports. The table below is the only source of
legal task transitions; every lifecycle command consults it before
writing.
"""

from __future__ import annotations

from enum import StrEnum

from task_market_service.core.exceptions import InvalidStateError


class TaskStatus(StrEnum):
    """Task lifecycle states."""

    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "inProgress"
    COMPLETION_REQUESTED = "completionRequested"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskEvent(StrEnum):
    """Commands that move a task between states."""

    ASSIGN = "assign"
    START = "start"
    REQUEST_COMPLETION = "requestCompletion"
    CONFIRM_COMPLETION = "confirmCompletion"
    REJECT_COMPLETION = "rejectCompletion"
    CANCEL = "cancel"


TRANSITIONS: dict[tuple[TaskStatus, TaskEvent], TaskStatus] = {
    (TaskStatus.OPEN, TaskEvent.ASSIGN): TaskStatus.ASSIGNED,
    (TaskStatus.ASSIGNED, TaskEvent.START): TaskStatus.IN_PROGRESS,
    (TaskStatus.IN_PROGRESS, TaskEvent.REQUEST_COMPLETION): TaskStatus.COMPLETION_REQUESTED,
    (TaskStatus.COMPLETION_REQUESTED, TaskEvent.CONFIRM_COMPLETION): TaskStatus.COMPLETED,
    (TaskStatus.COMPLETION_REQUESTED, TaskEvent.REJECT_COMPLETION): TaskStatus.IN_PROGRESS,
    (TaskStatus.OPEN, TaskEvent.CANCEL): TaskStatus.CANCELLED,
    (TaskStatus.ASSIGNED, TaskEvent.CANCEL): TaskStatus.CANCELLED,
    (TaskStatus.IN_PROGRESS, TaskEvent.CANCEL): TaskStatus.CANCELLED,
}

EVENT_TARGETS: dict[TaskEvent, TaskStatus] = {event: target for (_, event), target in TRANSITIONS.items()}

# Statuses in which a task must have an assigned tasker.
ASSIGNED_STATUSES: frozenset[TaskStatus] = frozenset(
    {
        TaskStatus.ASSIGNED,
        TaskStatus.IN_PROGRESS,
        TaskStatus.COMPLETION_REQUESTED,
        TaskStatus.COMPLETED,
    }
)


def next_status(current: str, event: TaskEvent) -> TaskStatus:
    """
    Resolve the state a task moves to when event is applied.

    Raises:
        InvalidStateError: If the transition is not in the table.
    """
    try:
        current_status = TaskStatus(current)
    except ValueError:
        current_status = None

    if current_status is not None:
        target = TRANSITIONS.get((current_status, event))
        if target is not None:
            return target

    attempted = EVENT_TARGETS[event]
    raise InvalidStateError(
        f"Cannot {event.value} a task in status '{current}'",
        {
            "event": event.value,
            "current_status": current,
            "attempted_status": attempted.value,
        },
    )


def event_for(current: str, target: str) -> TaskEvent | None:
    """Find the event that moves a task from current to target, if one exists."""
    for (source, event), destination in TRANSITIONS.items():
        if source.value == current and destination.value == target:
            return event
    return None


def is_valid_status(value: object) -> bool:
    """Check whether value names a task status."""
    return isinstance(value, str) and value in {status.value for status in TaskStatus}
