"""Bearer token extraction and actor resolution for routers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from task_market_service.core.exceptions import UnauthorizedError
from task_market_service.core.state import get_app_state

if TYPE_CHECKING:
    from fastapi import Request

    from task_market_service.services.permissions import Actor


def extract_bearer_token(authorization: str | None, *, required: bool) -> str | None:
    """
    Extract the token from an Authorization header.

    Returns None when the header is absent and not required.

    Raises:
        UnauthorizedError: If the header is required but missing, or malformed.
    """
    if authorization is None:
        if required:
            raise UnauthorizedError("Not authorized, no token")
        return None

    if not authorization.startswith("Bearer "):
        raise UnauthorizedError("Authorization header must use Bearer scheme")

    token = authorization[len("Bearer ") :].strip()
    if not token:
        raise UnauthorizedError("Bearer token must not be empty")

    return token


async def require_actor(request: Request) -> Actor:
    """Resolve the caller, failing with 401 when no valid token is presented."""
    token = extract_bearer_token(request.headers.get("authorization"), required=True)
    return await _resolve(str(token))


async def optional_actor(request: Request) -> Actor | None:
    """Resolve the caller if an Authorization header is present."""
    token = extract_bearer_token(request.headers.get("authorization"), required=False)
    if token is None:
        return None
    return await _resolve(token)


async def _resolve(token: str) -> Actor:
    state = get_app_state()
    if state.identity_client is None:
        msg = "IdentityClient not initialized"
        raise RuntimeError(msg)
    return await state.identity_client.resolve_actor(token)
