"""SQLite-backed storage for tasks, bids, tasker profiles and fee policies."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

from task_market_service.services.geo import haversine_km

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class DuplicateTaskError(Exception):
    """Raised when attempting to insert a task with a duplicate task_id."""


class DuplicateBidError(Exception):
    """Raised when attempting to insert a duplicate bid for a task/tasker pair."""


class StaleStatusError(Exception):
    """Raised when a guarded write finds a row no longer in the expected status."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} is no longer in the expected status")
        self.entity = entity
        self.entity_id = entity_id


NON_TERMINAL_BID_STATUSES: tuple[str, ...] = ("pending", "in-progress")


class TaskStore:
    """SQLite-backed storage for tasks, bids, tasker profiles and fee policies."""

    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "customer_id",
        "customer_name",
        "title",
        "description",
        "category_id",
        "subcategory_id",
        "address",
        "latitude",
        "longitude",
        "date_required",
        "time_required",
        "duration",
        "is_urgent",
        "images",
        "status",
        "assigned_to",
        "budget",
        "platform_fee_rate",
        "commission_rate",
        "platform_fee",
        "commission_amount",
        "trust_and_support_fee",
        "final_tasker_payout",
        "total_amount_paid_by_customer",
        "started_at",
        "completion_requested_at",
        "completion_requested_by",
        "completion_note",
        "completed_at",
        "customer_feedback",
        "tasker_feedback",
        "cancelled_at",
        "created_at",
        "updated_at",
    )
    _TASK_COLUMNS_SQL = ", ".join(_TASK_COLUMNS)
    _TASK_INSERT_SQL = (
        f"INSERT INTO tasks ({_TASK_COLUMNS_SQL}) "  # nosec B608
        f"VALUES ({', '.join(['?'] * len(_TASK_COLUMNS))})"
    )
    _TASK_SELECT_BASE_SQL = f"SELECT {_TASK_COLUMNS_SQL} FROM tasks"  # nosec B608

    _BID_COLUMNS: tuple[str, ...] = (
        "bid_id",
        "task_id",
        "tasker_id",
        "tasker_name",
        "tasker_email",
        "amount",
        "message",
        "estimated_duration",
        "status",
        "rejection_reason",
        "created_at",
        "updated_at",
    )
    _BID_COLUMNS_SQL = ", ".join(_BID_COLUMNS)
    _BID_SELECT_BASE_SQL = f"SELECT {_BID_COLUMNS_SQL} FROM bids"  # nosec B608

    _FEE_POLICY_COLUMNS: tuple[str, ...] = (
        "policy_id",
        "platform_fee_percentage",
        "commission_percentage",
        "trust_and_support_fee",
        "updated_by",
        "created_at",
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._db.create_function("haversine_km", 4, _sql_haversine_km, deterministic=True)
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    customer_id TEXT NOT NULL,
                    customer_name TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    category_id TEXT NOT NULL,
                    subcategory_id TEXT,
                    address TEXT NOT NULL,
                    latitude REAL,
                    longitude REAL,
                    date_required TEXT NOT NULL,
                    time_required TEXT NOT NULL,
                    duration REAL NOT NULL,
                    is_urgent INTEGER NOT NULL DEFAULT 0,
                    images TEXT NOT NULL DEFAULT '[]',
                    status TEXT NOT NULL DEFAULT 'open',
                    assigned_to TEXT,
                    budget REAL NOT NULL,
                    platform_fee_rate REAL NOT NULL,
                    commission_rate REAL NOT NULL,
                    platform_fee REAL NOT NULL,
                    commission_amount REAL NOT NULL,
                    trust_and_support_fee REAL NOT NULL,
                    final_tasker_payout REAL NOT NULL,
                    total_amount_paid_by_customer REAL NOT NULL,
                    started_at TEXT,
                    completion_requested_at TEXT,
                    completion_requested_by TEXT,
                    completion_note TEXT,
                    completed_at TEXT,
                    customer_feedback TEXT,
                    tasker_feedback TEXT,
                    cancelled_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_tasks_customer ON tasks(customer_id);
                CREATE INDEX IF NOT EXISTS idx_tasks_assigned ON tasks(assigned_to);

                CREATE TABLE IF NOT EXISTS bids (
                    bid_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id) ON DELETE CASCADE,
                    tasker_id TEXT NOT NULL,
                    tasker_name TEXT NOT NULL,
                    tasker_email TEXT,
                    amount REAL NOT NULL,
                    message TEXT NOT NULL,
                    estimated_duration REAL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    rejection_reason TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(task_id, tasker_id)
                );

                CREATE INDEX IF NOT EXISTS idx_bids_tasker ON bids(tasker_id);

                CREATE TABLE IF NOT EXISTS tasker_profiles (
                    tasker_id TEXT PRIMARY KEY,
                    avg_rating REAL NOT NULL DEFAULT 0,
                    total_reviews INTEGER NOT NULL DEFAULT 0,
                    completed_tasks INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS fee_policies (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    policy_id TEXT NOT NULL UNIQUE,
                    platform_fee_percentage REAL NOT NULL,
                    commission_percentage REAL NOT NULL,
                    trust_and_support_fee REAL NOT NULL,
                    updated_by TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                """
            )
            self._db.commit()

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside BEGIN IMMEDIATE, rolling back on any failure."""
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                yield self._db
                self._db.commit()
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

    def _row_to_task(self, row: sqlite3.Row) -> dict[str, Any]:
        task = {column: row[column] for column in self._TASK_COLUMNS}
        task["is_urgent"] = bool(task["is_urgent"])
        task["images"] = json.loads(task["images"])
        return task

    def _row_to_bid(self, row: sqlite3.Row) -> dict[str, Any]:
        return {column: row[column] for column in self._BID_COLUMNS}

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row."""
        values = tuple(self._encode_task_value(column, task_data[column]) for column in self._TASK_COLUMNS)

        try:
            with self._transaction() as db:
                db.execute(self._TASK_INSERT_SQL, values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateTaskError(
                    f"A task with task_id={task_data['task_id']} already exists"
                ) from exc
            raise

    @staticmethod
    def _encode_task_value(column: str, value: Any) -> Any:
        if column == "images":
            return json.dumps(list(value))
        if column == "is_urgent":
            return int(bool(value))
        return value

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        with self._lock:
            cursor = self._db.execute(self._TASK_SELECT_BASE_SQL + " WHERE task_id = ?", (task_id,))
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def get_tasks_by_ids(self, task_ids: Sequence[str]) -> dict[str, dict[str, Any]]:
        """Fetch several tasks keyed by task_id. Missing IDs are absent from the result."""
        if len(task_ids) == 0:
            return {}
        placeholders = ", ".join("?" for _ in task_ids)
        query = self._TASK_SELECT_BASE_SQL + f" WHERE task_id IN ({placeholders})"  # nosec B608
        with self._lock:
            rows = self._db.execute(query, list(task_ids)).fetchall()
        return {row["task_id"]: self._row_to_task(row) for row in rows}

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update task columns and return the number of affected rows."""
        if len(updates) == 0:
            return 0

        if any(column not in self._TASK_COLUMNS for column in updates):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [self._encode_task_value(column, value) for column, value in updates.items()]

        query = "UPDATE tasks SET " + set_clause + " WHERE task_id = ?"  # nosec B608
        params.append(task_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)

        with self._lock:
            cursor = self._db.execute(query, params)
            self._db.commit()
        return int(cursor.rowcount)

    def search_tasks(
        self,
        *,
        keyword: str | None = None,
        category_id: str | None = None,
        subcategory_id: str | None = None,
        status: str | None = None,
        is_urgent: bool | None = None,
        min_budget: float | None = None,
        max_budget: float | None = None,
        location: str | None = None,
        near: tuple[float, float, float] | None = None,
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        """
        Search tasks with AND-combined filters.

        Args:
            keyword: Case-insensitive substring of the title
            location: Case-insensitive substring of the address
            near: (latitude, longitude, distance_km) radius filter
            limit: Page size
            offset: Rows to skip

        Returns:
            The requested page (urgent first, then newest first) and the
            total number of matching tasks.
        """
        clauses: list[str] = []
        params: list[object] = []

        if keyword:
            clauses.append("title LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(keyword)}%")
        if category_id is not None:
            clauses.append("category_id = ?")
            params.append(category_id)
        if subcategory_id is not None:
            clauses.append("subcategory_id = ?")
            params.append(subcategory_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if is_urgent is not None:
            clauses.append("is_urgent = ?")
            params.append(int(is_urgent))
        if min_budget is not None:
            clauses.append("budget >= ?")
            params.append(min_budget)
        if max_budget is not None:
            clauses.append("budget <= ?")
            params.append(max_budget)
        if location:
            clauses.append("address LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(location)}%")
        if near is not None:
            latitude, longitude, distance_km = near
            clauses.append(
                "latitude IS NOT NULL AND longitude IS NOT NULL "
                "AND haversine_km(?, ?, latitude, longitude) <= ?"
            )
            params.extend([latitude, longitude, distance_km])

        where = ""
        if len(clauses) > 0:
            where = " WHERE " + " AND ".join(clauses)

        page_query = (
            self._TASK_SELECT_BASE_SQL
            + where
            + " ORDER BY is_urgent DESC, created_at DESC, rowid DESC LIMIT ? OFFSET ?"
        )
        count_query = "SELECT COUNT(*) FROM tasks" + where  # nosec B608

        with self._lock:
            rows = self._db.execute(page_query, [*params, limit, offset]).fetchall()
            count_row = self._db.execute(count_query, params).fetchone()
        total = int(count_row[0]) if count_row is not None else 0
        return [self._row_to_task(row) for row in rows], total

    def list_tasks(
        self,
        *,
        customer_id: str | None = None,
        assigned_to: str | None = None,
        statuses: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        """List tasks for a customer and/or tasker, newest first."""
        query = self._TASK_SELECT_BASE_SQL
        clauses: list[str] = []
        params: list[object] = []

        if customer_id is not None:
            clauses.append("customer_id = ?")
            params.append(customer_id)
        if assigned_to is not None:
            clauses.append("assigned_to = ?")
            params.append(assigned_to)
        if statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(statuses)

        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)

        query += " ORDER BY created_at DESC, rowid DESC"

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_task(row) for row in rows]

    def list_addresses(self, customer_id: str) -> list[str]:
        """Distinct addresses a customer has posted tasks at, most recent first."""
        with self._lock:
            rows = self._db.execute(
                "SELECT address, MAX(created_at) AS last_used FROM tasks "
                "WHERE customer_id = ? GROUP BY address ORDER BY last_used DESC",
                (customer_id,),
            ).fetchall()
        return [str(row["address"]) for row in rows]

    def count_tasks(self) -> int:
        """Count total tasks."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM tasks").fetchone()
        return int(row[0]) if row is not None else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        with self._lock:
            rows = self._db.execute("SELECT status, COUNT(*) FROM tasks GROUP BY status").fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    def delete_task(self, task_id: str, *, expected_status: str | None) -> int:
        """Delete a task together with its bids and return the number of deleted tasks."""
        with self._transaction() as db:
            query = "DELETE FROM tasks WHERE task_id = ?"
            params: list[object] = [task_id]
            if expected_status is not None:
                query += " AND status = ?"
                params.append(expected_status)
            cursor = db.execute(query, params)
            deleted = int(cursor.rowcount)
            if deleted > 0:
                db.execute("DELETE FROM bids WHERE task_id = ?", (task_id,))
        return deleted

    # ------------------------------------------------------------------
    # Bids
    # ------------------------------------------------------------------

    def insert_bid(self, bid_data: dict[str, Any]) -> int:
        """
        Insert a bid while its task is still open.

        Returns:
            1 if the bid was stored, 0 if the task was no longer open.

        Raises:
            DuplicateBidError: If the tasker already has a bid on the task.
        """
        values = [bid_data[column] for column in self._BID_COLUMNS]
        try:
            with self._transaction() as db:
                cursor = db.execute(
                    f"INSERT INTO bids ({self._BID_COLUMNS_SQL}) "  # nosec B608
                    f"SELECT {', '.join('?' for _ in self._BID_COLUMNS)} "
                    "WHERE EXISTS (SELECT 1 FROM tasks WHERE task_id = ? AND status = 'open')",
                    [*values, bid_data["task_id"]],
                )
                inserted = int(cursor.rowcount)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateBidError("This tasker already bid on this task") from exc
            raise
        return inserted

    def get_bid(self, bid_id: str) -> dict[str, Any] | None:
        """Fetch a bid by ID."""
        with self._lock:
            row = self._db.execute(
                self._BID_SELECT_BASE_SQL + " WHERE bid_id = ?",
                (bid_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_bid(row)

    def find_bid(self, task_id: str, tasker_id: str) -> dict[str, Any] | None:
        """Fetch the bid a tasker placed on a task, if any."""
        with self._lock:
            row = self._db.execute(
                self._BID_SELECT_BASE_SQL + " WHERE task_id = ? AND tasker_id = ?",
                (task_id, tasker_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_bid(row)

    def get_bids_for_task(self, task_id: str) -> list[dict[str, Any]]:
        """Fetch all bids for a task, cheapest first."""
        with self._lock:
            rows = self._db.execute(
                self._BID_SELECT_BASE_SQL + " WHERE task_id = ? ORDER BY amount ASC, created_at ASC",
                (task_id,),
            ).fetchall()
        return [self._row_to_bid(row) for row in rows]

    def get_bids_for_tasker(
        self,
        tasker_id: str,
        statuses: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch a tasker's bids, newest first, optionally restricted to some statuses."""
        query = self._BID_SELECT_BASE_SQL + " WHERE tasker_id = ?"
        params: list[object] = [tasker_id]
        if statuses:
            query += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params.extend(statuses)
        query += " ORDER BY created_at DESC, rowid DESC"
        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_bid(row) for row in rows]

    def get_tasker_bids_for_tasks(
        self,
        tasker_id: str,
        task_ids: Sequence[str],
    ) -> dict[str, dict[str, Any]]:
        """Map task_id to the tasker's bid on it, for the given tasks."""
        if len(task_ids) == 0:
            return {}
        placeholders = ", ".join("?" for _ in task_ids)
        query = (
            self._BID_SELECT_BASE_SQL
            + f" WHERE tasker_id = ? AND task_id IN ({placeholders})"  # nosec B608
        )
        with self._lock:
            rows = self._db.execute(query, [tasker_id, *task_ids]).fetchall()
        return {row["task_id"]: self._row_to_bid(row) for row in rows}

    def update_bid(
        self,
        bid_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update bid columns and return the number of affected rows."""
        if len(updates) == 0:
            return 0

        if any(column not in self._BID_COLUMNS for column in updates):
            msg = "Attempted to update unknown bid column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = list(updates.values())
        query = "UPDATE bids SET " + set_clause + " WHERE bid_id = ?"  # nosec B608
        params.append(bid_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)

        with self._lock:
            cursor = self._db.execute(query, params)
            self._db.commit()
        return int(cursor.rowcount)

    def delete_bid(self, bid_id: str, *, expected_status: str | None) -> int:
        """Delete a bid and return the number of deleted rows."""
        query = "DELETE FROM bids WHERE bid_id = ?"
        params: list[object] = [bid_id]
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)
        with self._lock:
            cursor = self._db.execute(query, params)
            self._db.commit()
        return int(cursor.rowcount)

    def accept_bid(self, task_id: str, bid_id: str, tasker_id: str, now: str) -> None:
        """
        Accept a bid and assign its task in one transaction.

        The task must still be open and the bid still pending; every other
        non-terminal bid on the task is rejected.

        Raises:
            StaleStatusError: If the task or the bid changed status concurrently.
        """
        with self._transaction() as db:
            cursor = db.execute(
                "UPDATE tasks SET status = 'assigned', assigned_to = ?, updated_at = ? "
                "WHERE task_id = ? AND status = 'open'",
                (tasker_id, now, task_id),
            )
            if cursor.rowcount == 0:
                raise StaleStatusError("task", task_id)

            cursor = db.execute(
                "UPDATE bids SET status = 'accepted', updated_at = ? "
                "WHERE bid_id = ? AND task_id = ? AND status = 'pending'",
                (now, bid_id, task_id),
            )
            if cursor.rowcount == 0:
                raise StaleStatusError("bid", bid_id)

            self._reject_open_bids(db, task_id, now, "Another bid was accepted", exclude_bid_id=bid_id)

    def assign_task(self, task_id: str, tasker_id: str, now: str) -> None:
        """
        Assign an open task to a tasker without a bid, rejecting pending bids.

        Raises:
            StaleStatusError: If the task is no longer open.
        """
        with self._transaction() as db:
            cursor = db.execute(
                "UPDATE tasks SET status = 'assigned', assigned_to = ?, updated_at = ? "
                "WHERE task_id = ? AND status = 'open'",
                (tasker_id, now, task_id),
            )
            if cursor.rowcount == 0:
                raise StaleStatusError("task", task_id)
            self._reject_open_bids(db, task_id, now, "Task was assigned to another tasker")

    def start_task(self, task_id: str, now: str) -> None:
        """
        Move an assigned task to inProgress and its accepted bid to in-progress.

        Raises:
            StaleStatusError: If the task is no longer assigned.
        """
        with self._transaction() as db:
            cursor = db.execute(
                "UPDATE tasks SET status = 'inProgress', started_at = ?, updated_at = ? "
                "WHERE task_id = ? AND status = 'assigned'",
                (now, now, task_id),
            )
            if cursor.rowcount == 0:
                raise StaleStatusError("task", task_id)
            db.execute(
                "UPDATE bids SET status = 'in-progress', updated_at = ? "
                "WHERE task_id = ? AND status = 'accepted'",
                (now, task_id),
            )

    def confirm_completion(
        self,
        task_id: str,
        tasker_id: str,
        customer_feedback: str | None,
        now: str,
    ) -> None:
        """
        Complete a task, close its active bid and count the job for the tasker.

        Raises:
            StaleStatusError: If completion is no longer requested.
        """
        with self._transaction() as db:
            cursor = db.execute(
                "UPDATE tasks SET status = 'completed', completed_at = ?, "
                "customer_feedback = COALESCE(?, customer_feedback), updated_at = ? "
                "WHERE task_id = ? AND status = 'completionRequested'",
                (now, customer_feedback, now, task_id),
            )
            if cursor.rowcount == 0:
                raise StaleStatusError("task", task_id)
            db.execute(
                "UPDATE bids SET status = 'completed', updated_at = ? "
                "WHERE task_id = ? AND tasker_id = ? AND status IN ('accepted', 'in-progress')",
                (now, task_id, tasker_id),
            )
            db.execute(
                "INSERT INTO tasker_profiles (tasker_id, completed_tasks) VALUES (?, 1) "
                "ON CONFLICT(tasker_id) DO UPDATE SET completed_tasks = completed_tasks + 1",
                (tasker_id,),
            )

    def cancel_task(self, task_id: str, expected_status: str, now: str) -> None:
        """
        Cancel a task, clear its assignment and close all of its live bids.

        Raises:
            StaleStatusError: If the task left expected_status concurrently.
        """
        with self._transaction() as db:
            cursor = db.execute(
                "UPDATE tasks SET status = 'cancelled', assigned_to = NULL, "
                "cancelled_at = ?, updated_at = ? WHERE task_id = ? AND status = ?",
                (now, now, task_id, expected_status),
            )
            if cursor.rowcount == 0:
                raise StaleStatusError("task", task_id)
            db.execute(
                "UPDATE bids SET status = 'cancelled', updated_at = ? "
                "WHERE task_id = ? AND status IN ('accepted', 'in-progress')",
                (now, task_id),
            )
            self._reject_open_bids(db, task_id, now, "Task was cancelled")

    @staticmethod
    def _reject_open_bids(
        db: sqlite3.Connection,
        task_id: str,
        now: str,
        reason: str,
        exclude_bid_id: str | None = None,
    ) -> None:
        placeholders = ", ".join("?" for _ in NON_TERMINAL_BID_STATUSES)
        query = (
            "UPDATE bids SET status = 'rejected', rejection_reason = ?, updated_at = ? "
            f"WHERE task_id = ? AND status IN ({placeholders})"  # nosec B608
        )
        params: list[object] = [reason, now, task_id, *NON_TERMINAL_BID_STATUSES]
        if exclude_bid_id is not None:
            query += " AND bid_id != ?"
            params.append(exclude_bid_id)
        db.execute(query, params)

    # ------------------------------------------------------------------
    # Tasker profiles
    # ------------------------------------------------------------------

    def get_tasker_profiles(self, tasker_ids: Sequence[str]) -> dict[str, dict[str, Any]]:
        """Fetch cached rating profiles. Taskers without a row get zeroed profiles."""
        profiles: dict[str, dict[str, Any]] = {
            tasker_id: {
                "tasker_id": tasker_id,
                "avg_rating": 0.0,
                "total_reviews": 0,
                "completed_tasks": 0,
            }
            for tasker_id in tasker_ids
        }
        if len(profiles) == 0:
            return profiles
        placeholders = ", ".join("?" for _ in profiles)
        query = (
            "SELECT tasker_id, avg_rating, total_reviews, completed_tasks "
            f"FROM tasker_profiles WHERE tasker_id IN ({placeholders})"  # nosec B608
        )
        with self._lock:
            rows = self._db.execute(query, list(profiles)).fetchall()
        for row in rows:
            profiles[row["tasker_id"]] = {
                "tasker_id": row["tasker_id"],
                "avg_rating": float(row["avg_rating"]),
                "total_reviews": int(row["total_reviews"]),
                "completed_tasks": int(row["completed_tasks"]),
            }
        return profiles

    def get_tasker_profile(self, tasker_id: str) -> dict[str, Any]:
        """Fetch one cached rating profile."""
        return self.get_tasker_profiles([tasker_id])[tasker_id]

    def set_tasker_rating(self, tasker_id: str, avg_rating: float, total_reviews: int) -> None:
        """Overwrite the cached rating aggregate for a tasker."""
        with self._lock:
            self._db.execute(
                "INSERT INTO tasker_profiles (tasker_id, avg_rating, total_reviews) VALUES (?, ?, ?) "
                "ON CONFLICT(tasker_id) DO UPDATE SET "
                "avg_rating = excluded.avg_rating, total_reviews = excluded.total_reviews",
                (tasker_id, avg_rating, total_reviews),
            )
            self._db.commit()

    # ------------------------------------------------------------------
    # Fee policies
    # ------------------------------------------------------------------

    def insert_fee_policy(self, policy_data: dict[str, Any]) -> None:
        """Append a fee policy record."""
        with self._lock:
            self._db.execute(
                "INSERT INTO fee_policies ("
                "policy_id, platform_fee_percentage, commission_percentage, "
                "trust_and_support_fee, updated_by, created_at"
                ") VALUES (?, ?, ?, ?, ?, ?)",
                tuple(policy_data[column] for column in self._FEE_POLICY_COLUMNS),
            )
            self._db.commit()

    def get_latest_fee_policy(self) -> dict[str, Any] | None:
        """Fetch the most recently stored fee policy."""
        policies = self.list_fee_policies(limit=1)
        if len(policies) == 0:
            return None
        return policies[0]

    def list_fee_policies(self, limit: int | None = None) -> list[dict[str, Any]]:
        """List stored fee policies, newest first."""
        query = (
            "SELECT policy_id, platform_fee_percentage, commission_percentage, "
            "trust_and_support_fee, updated_by, created_at FROM fee_policies ORDER BY seq DESC"
        )
        params: list[object] = []
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [{column: row[column] for column in self._FEE_POLICY_COLUMNS} for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _sql_haversine_km(
    lat1: float | None,
    lng1: float | None,
    lat2: float | None,
    lng2: float | None,
) -> float | None:
    if lat1 is None or lng1 is None or lat2 is None or lng2 is None:
        return None
    return haversine_km(lat1, lng1, lat2, lng2)
