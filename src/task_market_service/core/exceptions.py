"""Service error taxonomy and exception handlers for consistent error responses."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from task_market_service.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.types import ExceptionHandler

__all__ = [
    "ConflictError",
    "ForbiddenError",
    "InvalidStateError",
    "NotFoundError",
    "ServiceError",
    "UnauthorizedError",
    "ValidationError",
    "register_exception_handlers",
]


class ServiceError(Exception):
    """
    Base exception for every error the service reports to a client.

    Carries a machine-readable error code, a human message, the HTTP
    status code and an optional details object.
    """

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details: dict[str, Any] = details if details is not None else {}


class NotFoundError(ServiceError):
    """A referenced entity does not exist."""

    def __init__(self, error: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(error, message, 404, details)


class ForbiddenError(ServiceError):
    """The actor lacks the capability for the requested action."""

    def __init__(
        self,
        message: str = "Not authorized to perform this action",
        details: dict[str, Any] | None = None,
        error: str = "FORBIDDEN",
    ) -> None:
        super().__init__(error, message, 403, details)


class UnauthorizedError(ServiceError):
    """The request carries no usable identity."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__("UNAUTHORIZED", message, 401, details)


class InvalidStateError(ServiceError):
    """The entity is not in a status that permits the action."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__("INVALID_STATUS", message, 400, details)


class ValidationError(ServiceError):
    """Malformed or semantically invalid input."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        error: str = "INVALID_PAYLOAD",
    ) -> None:
        super().__init__(error, message, 400, details)


class ConflictError(ServiceError):
    """A uniqueness rule would be violated."""

    def __init__(self, error: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(error, message, 409, details)


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle ServiceError exceptions."""
    logger = get_logger(__name__)
    logger.warning(
        "Service error",
        extra={
            "error_code": exc.error,
            "status_code": exc.status_code,
            "path": str(request.url.path),
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "message": exc.message, "details": exc.details},
    )


async def unhandled_exception_handler(request: Request, _exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = get_logger(__name__)
    logger.exception("Unhandled exception", extra={"path": str(request.url.path)})
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "details": {},
        },
    )


async def http_exception_handler(
    _request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle Starlette HTTP exceptions (e.g., 405 from router)."""
    if exc.status_code == 405:
        return JSONResponse(
            status_code=405,
            content={
                "error": "METHOD_NOT_ALLOWED",
                "message": "Method not allowed",
                "details": {},
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": str(exc.detail),
            "details": {},
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the app."""
    app.add_exception_handler(ServiceError, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.add_exception_handler(
        StarletteHTTPException,
        cast("ExceptionHandler", http_exception_handler),
    )
