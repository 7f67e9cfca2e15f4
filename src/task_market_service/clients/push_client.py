"""Async HTTP client for the push notification gateway."""

from __future__ import annotations

from typing import Any

import httpx

from task_market_service.core.exceptions import ServiceError
from task_market_service.logging import get_logger


class PushClient:
    """
    Client for multicast push delivery to device tokens.

    POST {send_path} with {"tokens", "notification": {"title", "body"}, "data"}.
    The gateway answers with success/failure counts and the tokens it
    considers invalid, which callers should stop using.
    """

    def __init__(
        self,
        base_url: str,
        send_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._send_path = send_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def send_multicast(
        self,
        tokens: list[str],
        title: str,
        body: str,
        data: dict[str, str],
    ) -> list[str]:
        """
        Send one notification to several devices.

        Returns:
            Tokens the gateway reported as invalid

        Raises:
            ServiceError: PUSH_SERVICE_UNAVAILABLE (502) on connection/timeout/unexpected errors
        """
        logger = get_logger(__name__)

        if len(tokens) == 0:
            return []

        try:
            response = await self._client.post(
                self._send_path,
                json={
                    "tokens": tokens,
                    "notification": {"title": title, "body": body},
                    "data": data,
                },
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Push gateway request failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                "PUSH_SERVICE_UNAVAILABLE",
                "Cannot reach push gateway",
                502,
                {},
            ) from exc

        if response.status_code != 200:
            raise ServiceError(
                "PUSH_SERVICE_UNAVAILABLE",
                "Push gateway returned unexpected status",
                502,
                {"status_code": response.status_code},
            )

        result: dict[str, Any] = response.json()
        logger.debug(
            "Push multicast sent",
            extra={
                "success_count": result.get("success_count"),
                "failure_count": result.get("failure_count"),
            },
        )
        invalid = result.get("invalid_tokens", [])
        return [str(token) for token in invalid] if isinstance(invalid, list) else []

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
