"""ASGI middleware for request validation."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Receive, Scope, Send


_JSON_VALIDATION_ENDPOINTS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("POST", re.compile(r"^/tasks$")),
    ("PUT", re.compile(r"^/tasks/[^/]+$")),
    ("PUT", re.compile(r"^/tasks/[^/]+/assign$")),
    ("PUT", re.compile(r"^/tasks/[^/]+/status$")),
    ("PUT", re.compile(r"^/tasks/[^/]+/request-completion$")),
    ("PUT", re.compile(r"^/tasks/[^/]+/confirm-completion$")),
    ("PUT", re.compile(r"^/tasks/[^/]+/reject-completion$")),
    ("PUT", re.compile(r"^/tasks/[^/]+/tasker-feedback$")),
    ("POST", re.compile(r"^/bids$")),
    ("PUT", re.compile(r"^/bids/[^/]+$")),
    ("PUT", re.compile(r"^/bids/[^/]+/reject$")),
    ("POST", re.compile(r"^/reviews$")),
    ("PUT", re.compile(r"^/fees$")),
    ("POST", re.compile(r"^/notifications/devices$")),
)


def _error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "details": {}},
    )


class RequestValidationMiddleware:
    """
    ASGI middleware that validates Content-Type and body size.

    Runs before FastAPI routes. Returns 413 for oversized request bodies
    and 415 when a non-empty body on a JSON endpoint is not
    application/json. Empty bodies pass through so endpoints whose
    fields are all optional can be called without one.
    """

    def __init__(self, app: ASGIApp, max_body_size: int) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = cast("str", scope.get("method", "GET"))

        if method not in ("POST", "PUT", "PATCH"):
            await self.app(scope, receive, send)
            return

        # Extract path and headers
        path = cast("str", scope.get("path", ""))
        raw_headers = cast("list[tuple[bytes, bytes]]", scope.get("headers", []))
        content_type = ""
        for name, value in raw_headers:
            if name.lower() == b"content-type":
                content_type = value.decode("latin-1").lower()
                break

        expects_json = any(
            candidate_method == method and pattern.match(path) is not None
            for candidate_method, pattern in _JSON_VALIDATION_ENDPOINTS
        )

        # Unknown endpoint/method combos and bodyless commands go straight to the router.
        if not expects_json:
            await self.app(scope, receive, send)
            return

        # Read and buffer body, checking size
        body_parts: list[bytes] = []
        body_size = 0

        while True:
            message = cast("dict[str, Any]", await receive())
            chunk = cast("bytes", message.get("body", b""))
            body_parts.append(chunk)
            body_size += len(chunk)

            if body_size > self.max_body_size:
                response = _error_response(
                    413,
                    "PAYLOAD_TOO_LARGE",
                    "Request body exceeds maximum allowed size",
                )
                await response(scope, receive, send)
                return

            if not message.get("more_body", False):
                break

        if body_size > 0 and not content_type.startswith("application/json"):
            response = _error_response(
                415,
                "UNSUPPORTED_MEDIA_TYPE",
                "Content-Type must be application/json",
            )
            await response(scope, receive, send)
            return

        # Replay buffered body for downstream app
        full_body = b"".join(body_parts)
        body_sent = False

        async def buffered_receive() -> dict[str, Any]:
            nonlocal body_sent
            if not body_sent:
                body_sent = True
                return {"type": "http.request", "body": full_body, "more_body": False}
            return {"type": "http.disconnect"}

        await self.app(scope, buffered_receive, send)
