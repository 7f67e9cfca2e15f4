"""Shared test helpers for actors, tokens and stored rows."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from task_market_service.core.exceptions import UnauthorizedError
from task_market_service.services.permissions import Actor

ALICE = Actor(id="u-alice", role="customer", name="Alice", email="alice@example.com")
CAROL = Actor(id="u-carol", role="customer", name="Carol", email="carol@example.com")
BOB = Actor(id="u-bob", role="tasker", name="Bob", email="bob@example.com")
DAVE = Actor(id="u-dave", role="tasker", name="Dave", email="dave@example.com")
ADMIN = Actor(id="u-admin", role="admin", name="Admin", email="admin@example.com")

ACTORS_BY_TOKEN: dict[str, Actor] = {
    "tok-alice": ALICE,
    "tok-carol": CAROL,
    "tok-bob": BOB,
    "tok-dave": DAVE,
    "tok-admin": ADMIN,
}


def auth(token: str) -> dict[str, str]:
    """Authorization header for a test token."""
    return {"Authorization": f"Bearer {token}"}


async def resolve_test_actor(token: str) -> Actor:
    """Stand-in for IdentityClient.resolve_actor over the fixed test tokens."""
    actor = ACTORS_BY_TOKEN.get(token)
    if actor is None:
        raise UnauthorizedError("Not authorized, token failed")
    return actor


def now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def task_payload(**overrides: Any) -> dict[str, Any]:
    """A valid create-task body."""
    payload: dict[str, Any] = {
        "title": "Assemble a bookshelf",
        "description": "Flat-pack bookshelf, all parts included",
        "category_id": "cat-furniture",
        "address": "12 Main Street, Springfield",
        "date_required": "2026-11-02",
        "time_required": "morning",
        "duration": 2,
        "budget": 1000,
    }
    payload.update(overrides)
    return payload


def task_row(
    task_id: str | None = None,
    *,
    customer_id: str = ALICE.id,
    status: str = "open",
    assigned_to: str | None = None,
    **overrides: Any,
) -> dict[str, Any]:
    """A complete task row as TaskStore expects it."""
    timestamp = now_iso()
    row: dict[str, Any] = {
        "task_id": task_id or f"t-{uuid.uuid4()}",
        "customer_id": customer_id,
        "customer_name": "Alice",
        "title": "Assemble a bookshelf",
        "description": "Flat-pack bookshelf",
        "category_id": "cat-furniture",
        "subcategory_id": None,
        "address": "12 Main Street, Springfield",
        "latitude": None,
        "longitude": None,
        "date_required": "2026-11-02",
        "time_required": "morning",
        "duration": 2.0,
        "is_urgent": False,
        "images": [],
        "status": status,
        "assigned_to": assigned_to,
        "budget": 1000.0,
        "platform_fee_rate": 0.05,
        "commission_rate": 0.15,
        "platform_fee": 50.0,
        "commission_amount": 150.0,
        "trust_and_support_fee": 2.0,
        "final_tasker_payout": 850.0,
        "total_amount_paid_by_customer": 1052.0,
        "started_at": None,
        "completion_requested_at": None,
        "completion_requested_by": None,
        "completion_note": None,
        "completed_at": None,
        "customer_feedback": None,
        "tasker_feedback": None,
        "cancelled_at": None,
        "created_at": timestamp,
        "updated_at": timestamp,
    }
    row.update(overrides)
    return row


def bid_row(
    task_id: str,
    tasker: Actor = BOB,
    *,
    amount: float = 500.0,
    status: str = "pending",
    bid_id: str | None = None,
) -> dict[str, Any]:
    """A complete bid row as TaskStore expects it."""
    timestamp = now_iso()
    return {
        "bid_id": bid_id or f"bid-{uuid.uuid4()}",
        "task_id": task_id,
        "tasker_id": tasker.id,
        "tasker_name": tasker.name,
        "tasker_email": tasker.email,
        "amount": amount,
        "message": "I can do this",
        "estimated_duration": None,
        "status": status,
        "rejection_reason": None,
        "created_at": timestamp,
        "updated_at": timestamp,
    }
