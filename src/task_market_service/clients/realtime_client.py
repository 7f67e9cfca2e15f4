"""Async HTTP client for the realtime gateway."""

from __future__ import annotations

from typing import Any

import httpx

from task_market_service.core.exceptions import ServiceError
from task_market_service.logging import get_logger


class RealtimeClient:
    """
    Client for pushing events to connected users.

    The gateway owns presence tracking: it delivers the event when the
    recipient has an open connection and reports delivered=false otherwise.
    """

    def __init__(
        self,
        base_url: str,
        deliver_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._deliver_path = deliver_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def deliver(self, recipient_id: str, event: str, payload: dict[str, Any]) -> bool:
        """
        Deliver an event to a user.

        Returns:
            True if the gateway delivered it to an online connection

        Raises:
            ServiceError: REALTIME_SERVICE_UNAVAILABLE (502) on connection/timeout/unexpected errors
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(
                self._deliver_path,
                json={"recipient_id": recipient_id, "event": event, "payload": payload},
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Realtime gateway request failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                "REALTIME_SERVICE_UNAVAILABLE",
                "Cannot reach realtime gateway",
                502,
                {},
            ) from exc

        if response.status_code != 200:
            raise ServiceError(
                "REALTIME_SERVICE_UNAVAILABLE",
                "Realtime gateway returned unexpected status",
                502,
                {"status_code": response.status_code},
            )

        result: dict[str, Any] = response.json()
        return bool(result.get("delivered", False))

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
