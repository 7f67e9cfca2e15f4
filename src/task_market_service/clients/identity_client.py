"""Async HTTP client for the Identity service."""

from __future__ import annotations

from typing import Any

import httpx

from task_market_service.core.exceptions import ServiceError, UnauthorizedError
from task_market_service.logging import get_logger
from task_market_service.services.permissions import ROLES, Actor


class IdentityClient:
    """
    Client for resolving bearer tokens into actors.

    Session mechanics live in the Identity service. This service only
    forwards the caller's token to POST {verify_path} and receives the
    authenticated user back.
    """

    def __init__(
        self,
        base_url: str,
        verify_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._verify_path = verify_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def resolve_actor(self, token: str) -> Actor:
        """
        Resolve a bearer token via the Identity service.

        Args:
            token: Opaque bearer token taken from the Authorization header

        Returns:
            The authenticated Actor

        Raises:
            UnauthorizedError: UNAUTHORIZED (401) if the Identity service says valid=false
            ServiceError: IDENTITY_SERVICE_UNAVAILABLE (502) on connection/timeout/unexpected errors
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(
                self._verify_path,
                json={"token": token},
            )
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Identity service connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Cannot connect to Identity service",
                status_code=502,
                details={},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Identity service HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service request failed",
                status_code=502,
                details={},
            ) from exc

        if response.status_code != 200:
            logger.warning(
                "Identity service unexpected status",
                extra={
                    "status_code": response.status_code,
                    "base_url": self._base_url,
                },
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service returned unexpected status",
                status_code=502,
                details={},
            )

        result: dict[str, Any] = response.json()

        if not result.get("valid", False):
            raise UnauthorizedError("Not authorized, token failed")

        user = result.get("user")
        if not isinstance(user, dict) or not all(
            isinstance(user.get(key), str) for key in ("id", "role", "name", "email")
        ):
            logger.warning(
                "Identity service returned malformed user",
                extra={"base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service returned an unexpected response",
                status_code=502,
                details={},
            )

        if user["role"] not in ROLES:
            raise UnauthorizedError("Not authorized, unknown role", {"role": user["role"]})

        return Actor(id=user["id"], role=user["role"], name=user["name"], email=user["email"])

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
