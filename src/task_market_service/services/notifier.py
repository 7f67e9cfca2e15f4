"""
Notification emitter and inbox.

emit() persists a notification and schedules realtime and push delivery
as background asyncio tasks. Nothing that goes wrong here propagates to
the command that triggered the notification.
"""

from __future__ import annotations

import asyncio
import math
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from task_market_service.logging import get_logger

if TYPE_CHECKING:
    from task_market_service.clients.push_client import PushClient
    from task_market_service.clients.realtime_client import RealtimeClient
    from task_market_service.services.notification_store import NotificationStore
    from task_market_service.services.permissions import Actor

NOTIFICATION_TYPES: frozenset[str] = frozenset(
    {
        "new_bid",
        "bid_accepted",
        "bid_rejected",
        "task_assigned",
        "task_started",
        "task_cancelled",
        "completion_requested",
        "completion_confirmed",
        "completion_rejected",
        "review_received",
        "task_update",
        "system",
    }
)

REALTIME_EVENT = "notification"

_MAX_DEVICE_TOKEN_LENGTH = 4096


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


class Notifier:
    """Fire-and-forget notification side effects plus the per-user inbox."""

    def __init__(
        self,
        store: NotificationStore,
        realtime_client: RealtimeClient | None,
        push_client: PushClient | None,
        page_size: int,
    ) -> None:
        self._store = store
        self._realtime_client = realtime_client
        self._push_client = push_client
        self._page_size = page_size
        self._pending: set[asyncio.Task[None]] = set()
        self._logger = get_logger(__name__)

    def set_realtime_client(self, realtime_client: RealtimeClient) -> None:
        self._realtime_client = realtime_client

    def set_push_client(self, push_client: PushClient) -> None:
        self._push_client = push_client

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def emit(
        self,
        notification_type: str,
        recipient_id: str,
        sender_id: str | None,
        title: str,
        message: str,
        *,
        task_id: str | None = None,
        bid_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """
        Persist a notification and schedule its delivery.

        Returns:
            The stored notification, or None if it could not be stored.
        """
        if notification_type not in NOTIFICATION_TYPES:
            self._logger.warning(
                "Unknown notification type dropped",
                extra={"notification_type": notification_type, "recipient_id": recipient_id},
            )
            return None

        notification: dict[str, Any] = {
            "notification_id": f"ntf-{uuid.uuid4()}",
            "recipient_id": recipient_id,
            "sender_id": sender_id,
            "type": notification_type,
            "title": title,
            "message": message,
            "task_id": task_id,
            "bid_id": bid_id,
            "data": dict(data) if data is not None else {},
            "is_read": False,
            "created_at": _now_iso(),
        }

        try:
            self._store.insert_notification(notification)
        except Exception as exc:
            self._logger.warning(
                "Failed to persist notification",
                extra={
                    "notification_type": notification_type,
                    "recipient_id": recipient_id,
                    "error": str(exc),
                },
            )
            return None

        try:
            delivery = asyncio.get_running_loop().create_task(self._deliver(notification))
        except RuntimeError as exc:
            self._logger.warning(
                "No event loop for notification delivery",
                extra={"notification_id": notification["notification_id"], "error": str(exc)},
            )
            return notification

        self._pending.add(delivery)
        delivery.add_done_callback(self._pending.discard)
        return notification

    async def _deliver(self, notification: dict[str, Any]) -> None:
        await self._deliver_realtime(notification)
        await self._deliver_push(notification)

    async def _deliver_realtime(self, notification: dict[str, Any]) -> None:
        if self._realtime_client is None:
            return
        try:
            delivered = await self._realtime_client.deliver(
                notification["recipient_id"],
                REALTIME_EVENT,
                {
                    "type": notification["type"],
                    "message": notification["message"],
                    "data": notification["data"],
                },
            )
        except Exception as exc:
            self._logger.warning(
                "Realtime notification delivery failed",
                extra={"notification_id": notification["notification_id"], "error": str(exc)},
            )
            return
        self._logger.debug(
            "Realtime notification delivery attempted",
            extra={"notification_id": notification["notification_id"], "delivered": delivered},
        )

    async def _deliver_push(self, notification: dict[str, Any]) -> None:
        if self._push_client is None:
            return
        recipient_id = notification["recipient_id"]
        try:
            tokens = self._store.get_device_tokens(recipient_id)
            if len(tokens) == 0:
                return
            push_data = {
                "type": notification["type"],
                "task_id": notification["task_id"] or "",
                "bid_id": notification["bid_id"] or "",
            }
            for key, value in notification["data"].items():
                push_data[key] = value if isinstance(value, str) else str(value)
            invalid_tokens = await self._push_client.send_multicast(
                tokens,
                notification["title"],
                notification["message"],
                push_data,
            )
            if invalid_tokens:
                removed = self._store.remove_device_tokens(recipient_id, invalid_tokens)
                self._logger.info(
                    "Pruned invalid device tokens",
                    extra={"recipient_id": recipient_id, "removed": removed},
                )
        except Exception as exc:
            self._logger.warning(
                "Push notification delivery failed",
                extra={"notification_id": notification["notification_id"], "error": str(exc)},
            )

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    def list_notifications(self, actor: Actor, page: int) -> dict[str, Any]:
        """Page through the actor's notifications, newest first."""
        if page < 1:
            raise ValidationError("Page must be a positive integer", {"field": "page"})
        offset = (page - 1) * self._page_size
        notifications, total, unread = self._store.list_for_recipient(actor.id, self._page_size, offset)
        return {
            "notifications": notifications,
            "page": page,
            "pages": math.ceil(total / self._page_size),
            "count": total,
            "unread_count": unread,
        }

    def _get_own_notification(self, actor: Actor, notification_id: str) -> dict[str, Any]:
        notification = self._store.get_notification(notification_id)
        if notification is None:
            raise NotFoundError("NOTIFICATION_NOT_FOUND", "Notification not found")
        if notification["recipient_id"] != actor.id and not actor.is_admin:
            raise ForbiddenError("Not authorized to access this notification")
        return notification

    def mark_read(self, actor: Actor, notification_id: str) -> dict[str, Any]:
        """Mark one of the actor's notifications as read."""
        notification = self._get_own_notification(actor, notification_id)
        self._store.mark_read(notification_id)
        return {**notification, "is_read": True}

    def mark_all_read(self, actor: Actor) -> dict[str, Any]:
        """Mark all of the actor's notifications as read."""
        updated = self._store.mark_all_read(actor.id)
        return {"message": "All notifications marked as read", "updated": updated}

    def delete_notification(self, actor: Actor, notification_id: str) -> dict[str, Any]:
        """Delete one of the actor's notifications."""
        self._get_own_notification(actor, notification_id)
        self._store.delete_notification(notification_id)
        return {"message": "Notification removed"}

    def register_device_token(self, actor: Actor, data: dict[str, Any]) -> dict[str, Any]:
        """Register a push device token for the actor."""
        token = data.get("device_token")
        if not isinstance(token, str) or not token.strip():
            raise ValidationError("Field 'device_token' must be a non-empty string", {"field": "device_token"})
        if len(token) > _MAX_DEVICE_TOKEN_LENGTH:
            raise ValidationError("Field 'device_token' is too long", {"field": "device_token"})
        self._store.add_device_token(actor.id, token, _now_iso())
        return {"message": "Device token registered", "device_token": token}

    def remove_device_token(self, actor: Actor, device_token: str) -> dict[str, Any]:
        """Remove one of the actor's push device tokens."""
        removed = self._store.remove_device_tokens(actor.id, [device_token])
        if removed == 0:
            raise NotFoundError("DEVICE_TOKEN_NOT_FOUND", "Device token not found")
        return {"message": "Device token removed"}
