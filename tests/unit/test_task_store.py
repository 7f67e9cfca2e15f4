"""Unit tests for TaskStore."""

from __future__ import annotations

import pytest

from task_market_service.services.task_store import DuplicateBidError, StaleStatusError, TaskStore
from tests.helpers import BOB, DAVE, bid_row, task_row


@pytest.fixture
def store(tmp_path):
    task_store = TaskStore(db_path=str(tmp_path / "market.db"))
    yield task_store
    task_store.close()


@pytest.mark.unit
def test_task_round_trip(store: TaskStore) -> None:
    """Tasks persist with decoded images and urgency."""
    row = task_row("t-1", images=["a.png"], is_urgent=True)
    store.insert_task(row)

    task = store.get_task("t-1")
    assert task is not None
    assert task["images"] == ["a.png"]
    assert task["is_urgent"] is True
    assert store.get_task("t-missing") is None


@pytest.mark.unit
def test_update_task_guards_status(store: TaskStore) -> None:
    """update_task only writes when the expected status still holds."""
    store.insert_task(task_row("t-1", status="open"))
    assert store.update_task("t-1", {"title": "New"}, expected_status="assigned") == 0
    assert store.update_task("t-1", {"title": "New"}, expected_status="open") == 1
    assert store.get_task("t-1")["title"] == "New"

    with pytest.raises(ValueError, match="unknown task column"):
        store.update_task("t-1", {"not_a_column": 1}, expected_status=None)


@pytest.mark.unit
def test_duplicate_bid_rejected(store: TaskStore) -> None:
    """A tasker can hold only one bid per task."""
    store.insert_task(task_row("t-1"))
    assert store.insert_bid(bid_row("t-1", BOB)) == 1
    with pytest.raises(DuplicateBidError):
        store.insert_bid(bid_row("t-1", BOB, amount=100))


@pytest.mark.unit
def test_bid_on_closed_task_is_not_inserted(store: TaskStore) -> None:
    """insert_bid returns 0 once the task has left open."""
    store.insert_task(task_row("t-1", status="assigned", assigned_to=DAVE.id))
    assert store.insert_bid(bid_row("t-1", BOB)) == 0
    assert store.get_bids_for_task("t-1") == []


@pytest.mark.unit
def test_accept_bid_is_atomic(store: TaskStore) -> None:
    """Accepting assigns the task, accepts the bid and rejects the rest together."""
    store.insert_task(task_row("t-1"))
    winner = bid_row("t-1", BOB, bid_id="bid-bob")
    loser = bid_row("t-1", DAVE, bid_id="bid-dave")
    store.insert_bid(winner)
    store.insert_bid(loser)

    store.accept_bid("t-1", "bid-bob", BOB.id, "2026-01-01T00:00:00.000000Z")

    task = store.get_task("t-1")
    assert task["status"] == "assigned"
    assert task["assigned_to"] == BOB.id
    assert store.get_bid("bid-bob")["status"] == "accepted"
    assert store.get_bid("bid-dave")["status"] == "rejected"
    assert store.get_bid("bid-dave")["rejection_reason"] == "Another bid was accepted"


@pytest.mark.unit
def test_second_accept_raises_stale_and_rolls_back(store: TaskStore) -> None:
    """A losing accept raises StaleStatusError and leaves no partial write."""
    store.insert_task(task_row("t-1"))
    store.insert_bid(bid_row("t-1", BOB, bid_id="bid-bob"))
    store.insert_bid(bid_row("t-1", DAVE, bid_id="bid-dave"))
    store.accept_bid("t-1", "bid-bob", BOB.id, "2026-01-01T00:00:00.000000Z")

    with pytest.raises(StaleStatusError) as exc_info:
        store.accept_bid("t-1", "bid-dave", DAVE.id, "2026-01-01T00:00:01.000000Z")
    assert exc_info.value.entity == "task"
    assert store.get_task("t-1")["assigned_to"] == BOB.id


@pytest.mark.unit
def test_accept_of_non_pending_bid_rolls_back_task(store: TaskStore) -> None:
    """If the bid is no longer pending, the task assignment is undone."""
    store.insert_task(task_row("t-1"))
    store.insert_bid(bid_row("t-1", BOB, bid_id="bid-bob", status="rejected"))

    with pytest.raises(StaleStatusError) as exc_info:
        store.accept_bid("t-1", "bid-bob", BOB.id, "2026-01-01T00:00:00.000000Z")
    assert exc_info.value.entity == "bid"
    task = store.get_task("t-1")
    assert task["status"] == "open"
    assert task["assigned_to"] is None


@pytest.mark.unit
def test_confirm_completion_counts_completed_tasks(store: TaskStore) -> None:
    """Completing a task closes the bid and increments the tasker's job count."""
    store.insert_task(task_row("t-1", status="completionRequested", assigned_to=BOB.id))
    store.insert_bid(bid_row("t-1", BOB, bid_id="bid-bob", status="in-progress"))

    store.confirm_completion("t-1", BOB.id, "Thanks", "2026-01-01T00:00:00.000000Z")
    assert store.get_task("t-1")["customer_feedback"] == "Thanks"
    assert store.get_bid("bid-bob")["status"] == "completed"
    assert store.get_tasker_profile(BOB.id)["completed_tasks"] == 1

    with pytest.raises(StaleStatusError):
        store.confirm_completion("t-1", BOB.id, None, "2026-01-01T00:00:01.000000Z")


@pytest.mark.unit
def test_cancel_clears_assignment_and_closes_bids(store: TaskStore) -> None:
    """Cancelling cancels the accepted bid and clears assigned_to."""
    store.insert_task(task_row("t-1", status="assigned", assigned_to=BOB.id))
    store.insert_bid(bid_row("t-1", BOB, bid_id="bid-bob", status="accepted"))

    store.cancel_task("t-1", "assigned", "2026-01-01T00:00:00.000000Z")
    task = store.get_task("t-1")
    assert task["status"] == "cancelled"
    assert task["assigned_to"] is None
    assert store.get_bid("bid-bob")["status"] == "cancelled"


@pytest.mark.unit
def test_search_filters_and_order(store: TaskStore) -> None:
    """Filters combine with AND; urgent tasks sort first, then newest."""
    store.insert_task(task_row("t-old", title="Fix sink", budget=100.0, created_at="2026-01-01T00:00:00.000000Z"))
    store.insert_task(
        task_row("t-urgent", title="Fix roof", budget=500.0, is_urgent=True, created_at="2026-01-01T00:00:00.000000Z")
    )
    store.insert_task(task_row("t-new", title="Paint fence", budget=300.0, created_at="2026-01-02T00:00:00.000000Z"))

    tasks, total = store.search_tasks(limit=10, offset=0)
    assert total == 3
    assert [task["task_id"] for task in tasks] == ["t-urgent", "t-new", "t-old"]

    tasks, total = store.search_tasks(keyword="FIX", max_budget=200, limit=10, offset=0)
    assert [task["task_id"] for task in tasks] == ["t-old"]
    assert total == 1


@pytest.mark.unit
def test_search_keyword_escapes_wildcards(store: TaskStore) -> None:
    """% and _ in the keyword match literally."""
    store.insert_task(task_row("t-1", title="100% done"))
    store.insert_task(task_row("t-2", title="1000 done"))

    tasks, _total = store.search_tasks(keyword="100%", limit=10, offset=0)
    assert [task["task_id"] for task in tasks] == ["t-1"]


@pytest.mark.unit
def test_search_near_skips_tasks_without_coordinates(store: TaskStore) -> None:
    """The radius filter uses great-circle distance and ignores unlocated tasks."""
    store.insert_task(task_row("t-near", latitude=51.51, longitude=-0.13))
    store.insert_task(task_row("t-far", latitude=48.8566, longitude=2.3522))
    store.insert_task(task_row("t-none"))

    tasks, total = store.search_tasks(near=(51.5, -0.12, 10), limit=10, offset=0)
    assert [task["task_id"] for task in tasks] == ["t-near"]
    assert total == 1


@pytest.mark.unit
def test_search_pagination(store: TaskStore) -> None:
    """limit/offset page through results while total counts every match."""
    for index in range(5):
        store.insert_task(task_row(f"t-{index}", created_at=f"2026-01-0{index + 1}T00:00:00.000000Z"))

    tasks, total = store.search_tasks(limit=2, offset=2)
    assert total == 5
    assert [task["task_id"] for task in tasks] == ["t-2", "t-1"]


@pytest.mark.unit
def test_delete_task_removes_bids(store: TaskStore) -> None:
    """Deleting a task removes its bids."""
    store.insert_task(task_row("t-1"))
    store.insert_bid(bid_row("t-1", BOB, bid_id="bid-bob"))
    assert store.delete_task("t-1", expected_status="open") == 1
    assert store.get_bid("bid-bob") is None


@pytest.mark.unit
def test_tasker_profiles_default_to_zero(store: TaskStore) -> None:
    """Taskers without reviews or jobs get zeroed profiles."""
    store.set_tasker_rating(BOB.id, 4.5, 2)
    profiles = store.get_tasker_profiles([BOB.id, DAVE.id])
    assert profiles[BOB.id]["avg_rating"] == 4.5
    assert profiles[BOB.id]["total_reviews"] == 2
    assert profiles[DAVE.id] == {"tasker_id": DAVE.id, "avg_rating": 0.0, "total_reviews": 0, "completed_tasks": 0}


@pytest.mark.unit
def test_fee_policies_newest_first(store: TaskStore) -> None:
    """Fee policy history is append-only and newest first."""
    assert store.get_latest_fee_policy() is None
    for index in range(2):
        store.insert_fee_policy(
            {
                "policy_id": f"fee-{index}",
                "platform_fee_percentage": 5.0 + index,
                "commission_percentage": 15.0,
                "trust_and_support_fee": 2.0,
                "updated_by": "u-admin",
                "created_at": "2026-01-01T00:00:00.000000Z",
            }
        )
    assert store.get_latest_fee_policy()["policy_id"] == "fee-1"
    assert [policy["policy_id"] for policy in store.list_fee_policies()] == ["fee-1", "fee-0"]
