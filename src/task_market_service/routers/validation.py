"""Shared request validation helpers for task market routers."""

from __future__ import annotations

import json
from typing import Any

from task_market_service.core.exceptions import ValidationError


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ValidationError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Request body is not valid JSON", {}, error="INVALID_JSON") from exc

    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", {}, error="INVALID_JSON")

    return data


def parse_optional_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, treating an empty body as an empty object."""
    if raw_body.strip() == b"":
        return {}
    return parse_json_body(raw_body)


def parse_page(raw_page: str | None) -> int:
    """Parse a 1-based page number query parameter."""
    if raw_page is None or raw_page == "":
        return 1
    try:
        page = int(raw_page)
    except ValueError as exc:
        raise ValidationError("Page must be a positive integer", {"field": "page"}) from exc
    if page < 1:
        raise ValidationError("Page must be a positive integer", {"field": "page"})
    return page
