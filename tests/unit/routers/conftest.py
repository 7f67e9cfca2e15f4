"""Router test fixtures with mocked Identity, Category, Realtime and Push services."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from task_market_service.app import create_app
from task_market_service.config import clear_settings_cache
from task_market_service.core.lifespan import lifespan
from task_market_service.core.state import get_app_state, reset_app_state
from tests.helpers import auth, resolve_test_actor, task_payload

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with temp database and mocked external services."""
    db_path = tmp_path / "test.db"
    config_content = f"""\
service:
  name: "task-market"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{tmp_path / "logs"}"
database:
  path: "{db_path}"
identity:
  base_url: "http://localhost:8001"
  verify_path: "/auth/verify"
  timeout_seconds: 10
categories:
  base_url: "http://localhost:8011"
  category_path: "/categories/{{category_id}}"
  timeout_seconds: 10
realtime:
  base_url: "http://localhost:8012"
  deliver_path: "/events/deliver"
  timeout_seconds: 5
push:
  base_url: "http://localhost:8013"
  send_path: "/push/multicast"
  timeout_seconds: 10
request:
  max_body_size: 4096
fees:
  default_platform_fee_percentage: 5
  default_commission_percentage: 15
  default_trust_and_support_fee: 2
listing:
  task_page_size: 10
  notification_page_size: 20
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        # Replace external service clients with mocks
        state = get_app_state()

        # Identity: the fixed tokens in tests.helpers resolve to actors
        mock_identity = AsyncMock()
        mock_identity.close = AsyncMock()
        mock_identity.resolve_actor = AsyncMock(side_effect=resolve_test_actor)
        state.identity_client = mock_identity

        # Categories: every category exists and every subcategory fits
        mock_categories = AsyncMock()
        mock_categories.close = AsyncMock()
        mock_categories.category_exists = AsyncMock(return_value=True)
        mock_categories.is_subcategory_of = AsyncMock(return_value=True)
        state.category_client = mock_categories

        mock_realtime = AsyncMock()
        mock_realtime.close = AsyncMock()
        mock_realtime.deliver = AsyncMock(return_value=True)
        state.realtime_client = mock_realtime

        mock_push = AsyncMock()
        mock_push.close = AsyncMock()
        mock_push.send_multicast = AsyncMock(return_value=[])
        state.push_client = mock_push

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Mock override fixtures (use these to replace default mock behavior)
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_category_missing(_app: Any) -> None:
    """Configure the Category mock to report unknown categories."""
    state = get_app_state()
    state.category_client.category_exists = AsyncMock(return_value=False)


@pytest.fixture
def mock_subcategory_mismatch(_app: Any) -> None:
    """Configure the Category mock to reject every subcategory."""
    state = get_app_state()
    state.category_client.is_subcategory_of = AsyncMock(return_value=False)


@pytest.fixture
def mock_realtime_unavailable(_app: Any) -> None:
    """Configure the Realtime mock to fail every delivery."""
    state = get_app_state()
    state.realtime_client.deliver = AsyncMock(side_effect=ConnectionError("gateway down"))


# ---------------------------------------------------------------------------
# Lifecycle helper functions
# ---------------------------------------------------------------------------
async def create_task(client: AsyncClient, token: str = "tok-alice", **overrides: Any) -> Any:
    """Create a task via POST /tasks and return the response."""
    return await client.post("/tasks", json=task_payload(**overrides), headers=auth(token))


async def place_bid(
    client: AsyncClient,
    task_id: str,
    token: str = "tok-bob",
    *,
    amount: float = 500,
    message: str = "I can do this",
) -> Any:
    """Place a bid via POST /bids and return the response."""
    return await client.post(
        "/bids",
        json={"task_id": task_id, "amount": amount, "message": message},
        headers=auth(token),
    )


async def accept_bid(client: AsyncClient, bid_id: str, token: str = "tok-alice") -> Any:
    """Accept a bid via PUT /bids/{bid_id}/accept."""
    return await client.put(f"/bids/{bid_id}/accept", headers=auth(token))


async def setup_assigned_task(client: AsyncClient) -> tuple[str, str]:
    """Create a task posted by Alice and assign it to Bob through his bid.

    Returns (task_id, bid_id).
    """
    task_resp = await create_task(client)
    task_id = task_resp.json()["task_id"]
    bid_resp = await place_bid(client, task_id)
    bid_id = bid_resp.json()["bid_id"]
    await accept_bid(client, bid_id)
    return task_id, bid_id


async def setup_in_progress_task(client: AsyncClient) -> tuple[str, str]:
    """Advance a task to inProgress. Returns (task_id, bid_id)."""
    task_id, bid_id = await setup_assigned_task(client)
    await client.put(f"/tasks/{task_id}/start", headers=auth("tok-bob"))
    return task_id, bid_id


async def setup_completion_requested_task(client: AsyncClient) -> tuple[str, str]:
    """Advance a task to completionRequested. Returns (task_id, bid_id)."""
    task_id, bid_id = await setup_in_progress_task(client)
    await client.put(
        f"/tasks/{task_id}/request-completion",
        json={"completion_note": "done"},
        headers=auth("tok-bob"),
    )
    return task_id, bid_id


async def setup_completed_task(client: AsyncClient) -> tuple[str, str]:
    """Advance a task to completed. Returns (task_id, bid_id)."""
    task_id, bid_id = await setup_completion_requested_task(client)
    await client.put(f"/tasks/{task_id}/confirm-completion", headers=auth("tok-alice"))
    return task_id, bid_id


async def drain_notifications() -> None:
    """Wait for background notification deliveries."""
    notifier = get_app_state().notifier
    if notifier is not None:
        await notifier.drain()
