"""Async HTTP client for the category catalogue."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from task_market_service.core.exceptions import ServiceError
from task_market_service.logging import get_logger


class CategoryClient:
    """
    Client for category lookups.

    GET {category_path} with the category_id substituted returns
    {"category_id": ..., "name": ..., "parent_id": ... | null}, or 404 when
    the category does not exist.
    """

    def __init__(
        self,
        base_url: str,
        category_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._category_path = category_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def get_category(self, category_id: str) -> dict[str, Any] | None:
        """
        Fetch a category.

        Returns:
            The category document, or None if it does not exist

        Raises:
            ServiceError: CATEGORY_SERVICE_UNAVAILABLE (502) on connection/timeout/unexpected errors
        """
        logger = get_logger(__name__)
        path = self._category_path.format(category_id=quote(category_id, safe=""))

        try:
            response = await self._client.get(path)
        except httpx.HTTPError as exc:
            logger.warning(
                "Category service request failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                "CATEGORY_SERVICE_UNAVAILABLE",
                "Cannot reach category service",
                502,
                {},
            ) from exc

        if response.status_code == 404:
            return None

        if response.status_code != 200:
            logger.warning(
                "Category service unexpected status",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            raise ServiceError(
                "CATEGORY_SERVICE_UNAVAILABLE",
                "Category service returned unexpected status",
                502,
                {},
            )

        try:
            category = response.json()
        except ValueError as exc:
            logger.warning(
                "Category service returned invalid JSON",
                extra={"base_url": self._base_url},
            )
            raise ServiceError(
                "CATEGORY_SERVICE_UNAVAILABLE",
                "Category service returned an unexpected response",
                502,
                {},
            ) from exc
        if not isinstance(category, dict):
            raise ServiceError(
                "CATEGORY_SERVICE_UNAVAILABLE",
                "Category service returned an unexpected response",
                502,
                {},
            )
        return category

    async def category_exists(self, category_id: str) -> bool:
        """Check that a category exists."""
        return await self.get_category(category_id) is not None

    async def is_subcategory_of(self, subcategory_id: str, parent_id: str) -> bool:
        """Check that subcategory_id exists and is a direct child of parent_id."""
        subcategory = await self.get_category(subcategory_id)
        if subcategory is None:
            return False
        return subcategory.get("parent_id") == parent_id

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
