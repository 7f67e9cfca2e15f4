"""
Review submission and tasker rating aggregation.

Pure Python, no FastAPI imports. Rating statistics are always recomputed
from the full stored review set, so recomputing twice yields the same
result.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from task_market_service.logging import get_logger
from task_market_service.services.permissions import TaskAction, can_act_on_task, require_role
from task_market_service.services.review_store import DuplicateReviewError
from task_market_service.services.transitions import TaskStatus

if TYPE_CHECKING:
    from collections.abc import Sequence

    from task_market_service.services.notifier import Notifier
    from task_market_service.services.permissions import Actor
    from task_market_service.services.review_store import ReviewStore
    from task_market_service.services.task_store import TaskStore

MIN_RATING = 1
MAX_RATING = 5
_MAX_COMMENT_LENGTH = 2000


def compute_stats(ratings: Sequence[int]) -> dict[str, Any]:
    """Average (rounded to one decimal), count and per-star distribution of ratings."""
    distribution = {str(star): 0 for star in range(MIN_RATING, MAX_RATING + 1)}
    for rating in ratings:
        distribution[str(rating)] += 1
    total = len(ratings)
    average = round(sum(ratings) / total, 1) if total > 0 else 0.0
    return {
        "average_rating": average,
        "total_reviews": total,
        "rating_distribution": distribution,
    }


def _validate_rating(value: object) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or not MIN_RATING <= value <= MAX_RATING:
        raise ValidationError(
            f"Rating must be an integer between {MIN_RATING} and {MAX_RATING}",
            {"field": "rating"},
            error="INVALID_RATING",
        )
    return value


class ReviewAggregator:
    """Accepts reviews of completed tasks and keeps tasker ratings current."""

    def __init__(self, review_store: ReviewStore, task_store: TaskStore, notifier: Notifier) -> None:
        self._review_store = review_store
        self._task_store = task_store
        self._notifier = notifier
        self._logger = get_logger(__name__)

    def submit_review(self, actor: Actor, data: dict[str, Any]) -> dict[str, Any]:
        """
        Review the tasker who completed one of the actor's tasks.

        Error precedence:
        1. INVALID_PAYLOAD / INVALID_RATING: malformed body
        2. TASK_NOT_FOUND
        3. INVALID_STATUS: task not completed
        4. FORBIDDEN: actor did not post the task
        5. INVALID_PAYLOAD: tasker_id is not the assigned tasker
        6. REVIEW_ALREADY_EXISTS
        """
        for field in ("task_id", "tasker_id"):
            value = data.get(field)
            if not isinstance(value, str) or not value:
                raise ValidationError(f"Missing required field: {field}", {"field": field})
        task_id: str = data["task_id"]
        tasker_id: str = data["tasker_id"]
        rating = _validate_rating(data.get("rating"))
        comment = data.get("comment", "")
        if comment is None:
            comment = ""
        if not isinstance(comment, str):
            raise ValidationError("Field 'comment' must be a string", {"field": "comment"})
        if len(comment) > _MAX_COMMENT_LENGTH:
            raise ValidationError(
                f"Field 'comment' must be at most {_MAX_COMMENT_LENGTH} characters",
                {"field": "comment"},
            )

        task = self._task_store.get_task(task_id)
        if task is None:
            raise NotFoundError("TASK_NOT_FOUND", "Task not found")
        if task["status"] != TaskStatus.COMPLETED:
            raise InvalidStateError(
                "Reviews can only be left on completed tasks",
                {"task_id": task_id, "current_status": task["status"]},
            )
        if not can_act_on_task(actor, task, TaskAction.REVIEW):
            raise ForbiddenError("Only the customer who posted this task can review it", {"task_id": task_id})
        if task["assigned_to"] != tasker_id:
            raise ValidationError(
                "This tasker did not complete the task",
                {"task_id": task_id, "tasker_id": tasker_id},
            )

        review: dict[str, Any] = {
            "review_id": f"rev-{uuid.uuid4()}",
            "task_id": task_id,
            "task_title": task["title"],
            "reviewer_id": actor.id,
            "reviewer_name": actor.name,
            "tasker_id": tasker_id,
            "rating": rating,
            "comment": comment.strip(),
            "created_at": datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z"),
        }
        try:
            self._review_store.insert_review(review)
        except DuplicateReviewError as exc:
            raise ConflictError(
                "REVIEW_ALREADY_EXISTS",
                "You have already reviewed this task",
                {"task_id": task_id},
            ) from exc

        stats = self.refresh_tasker_rating(tasker_id)
        self._logger.info(
            "Review submitted",
            extra={
                "review_id": review["review_id"],
                "task_id": task_id,
                "tasker_id": tasker_id,
                "rating": rating,
                "average_rating": stats["average_rating"],
            },
        )

        self._notifier.emit(
            "review_received",
            tasker_id,
            actor.id,
            "New Review Received",
            f'{actor.name} left you a {rating}-star review for "{task["title"]}"',
            task_id=task_id,
            data={"rating": rating, "review_id": review["review_id"], "task_title": task["title"]},
        )
        return review

    def refresh_tasker_rating(self, tasker_id: str) -> dict[str, Any]:
        """Recompute a tasker's stats from every stored review and cache the aggregate."""
        stats = compute_stats(self._review_store.get_ratings_for_tasker(tasker_id))
        self._task_store.set_tasker_rating(tasker_id, stats["average_rating"], stats["total_reviews"])
        return stats

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def reviews_for_tasker(self, tasker_id: str) -> list[dict[str, Any]]:
        return self._review_store.get_reviews_for_tasker(tasker_id)

    def stats_for_tasker(self, tasker_id: str) -> dict[str, Any]:
        stats = compute_stats(self._review_store.get_ratings_for_tasker(tasker_id))
        profile = self._task_store.get_tasker_profile(tasker_id)
        return {"tasker_id": tasker_id, **stats, "completed_tasks": profile["completed_tasks"]}

    def my_reviews(self, actor: Actor) -> list[dict[str, Any]]:
        """Reviews the actor has written."""
        return self._review_store.get_reviews_by_reviewer(actor.id)

    def received_reviews(self, actor: Actor) -> list[dict[str, Any]]:
        """Reviews the actor has received. Taskers only."""
        require_role(actor, {"tasker"}, "Only taskers receive reviews")
        return self._review_store.get_reviews_for_tasker(actor.id)

    def check_review(self, actor: Actor, task_id: str) -> dict[str, Any]:
        """Whether the actor has already reviewed a task."""
        review = self._review_store.find_review(task_id, actor.id)
        return {"has_reviewed": review is not None, "review": review}

    def get_review(self, actor: Actor, review_id: str) -> dict[str, Any]:
        """Fetch a review visible to its reviewer, its tasker or an admin."""
        review = self._review_store.get_review(review_id)
        if review is None:
            raise NotFoundError("REVIEW_NOT_FOUND", "Review not found")
        if actor.id not in (review["reviewer_id"], review["tasker_id"]) and not actor.is_admin:
            raise ForbiddenError("Not authorized to view this review", {"review_id": review_id})
        return review

    def get_stats(self) -> dict[str, Any]:
        return {"total_reviews": self._review_store.count_reviews()}

    def close(self) -> None:
        """Close the underlying store."""
        self._review_store.close()
