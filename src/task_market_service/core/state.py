"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from task_market_service.clients.category_client import CategoryClient
    from task_market_service.clients.identity_client import IdentityClient
    from task_market_service.clients.push_client import PushClient
    from task_market_service.clients.realtime_client import RealtimeClient
    from task_market_service.services.bid_ledger import BidLedger
    from task_market_service.services.fee_policy import FeePolicyService
    from task_market_service.services.notifier import Notifier
    from task_market_service.services.review_aggregator import ReviewAggregator
    from task_market_service.services.task_lifecycle import TaskLifecycle


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    task_lifecycle: TaskLifecycle | None = None
    bid_ledger: BidLedger | None = None
    fee_service: FeePolicyService | None = None
    notifier: Notifier | None = None
    review_aggregator: ReviewAggregator | None = None
    identity_client: IdentityClient | None = None
    category_client: CategoryClient | None = None
    realtime_client: RealtimeClient | None = None
    push_client: PushClient | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep service dependency references in sync with AppState fields."""
        super().__setattr__(name, value)

        if value is None:
            return

        task_lifecycle = self.__dict__.get("task_lifecycle")
        if name == "category_client" and task_lifecycle is not None:
            task_lifecycle.set_category_client(value)
        elif name == "task_lifecycle":
            category_client = self.__dict__.get("category_client")
            if category_client is not None:
                value.set_category_client(category_client)

        notifier = self.__dict__.get("notifier")
        if name == "realtime_client" and notifier is not None:
            notifier.set_realtime_client(value)
        elif name == "push_client" and notifier is not None:
            notifier.set_push_client(value)
        elif name == "notifier":
            realtime_client = self.__dict__.get("realtime_client")
            push_client = self.__dict__.get("push_client")
            if realtime_client is not None:
                value.set_realtime_client(realtime_client)
            if push_client is not None:
                value.set_push_client(push_client)

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
