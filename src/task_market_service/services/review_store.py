"""SQLite-backed review storage."""

from __future__ import annotations

import contextlib
import sqlite3
from pathlib import Path
from threading import RLock
from typing import Any


class DuplicateReviewError(Exception):
    """Raised when a reviewer reviews the same task twice."""


class ReviewStore:
    """
    SQLite-backed storage for immutable reviews.

    Owns its own SQLite connection, sets pragmas, creates the schema and
    exposes insert and lookup operations. A (task_id, reviewer_id) pair may
    appear at most once.
    """

    _COLUMNS: tuple[str, ...] = (
        "review_id",
        "task_id",
        "task_title",
        "reviewer_id",
        "reviewer_name",
        "tasker_id",
        "rating",
        "comment",
        "created_at",
    )
    _SELECT_BASE_SQL = (
        "SELECT review_id, task_id, task_title, reviewer_id, reviewer_name, "
        "tasker_id, rating, comment, created_at FROM reviews"
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS reviews (
                    review_id      TEXT PRIMARY KEY,
                    task_id        TEXT NOT NULL,
                    task_title     TEXT NOT NULL,
                    reviewer_id    TEXT NOT NULL,
                    reviewer_name  TEXT NOT NULL,
                    tasker_id      TEXT NOT NULL,
                    rating         INTEGER NOT NULL,
                    comment        TEXT NOT NULL DEFAULT '',
                    created_at     TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS ux_reviews_task_reviewer
                    ON reviews (task_id, reviewer_id);

                CREATE INDEX IF NOT EXISTS ix_reviews_tasker
                    ON reviews (tasker_id);
                """
            )
            self._db.commit()

    def _row_to_review(self, row: sqlite3.Row) -> dict[str, Any]:
        return {column: row[column] for column in self._COLUMNS}

    def insert_review(self, review_data: dict[str, Any]) -> None:
        """
        Insert a review.

        Raises:
            DuplicateReviewError: If the reviewer already reviewed the task.
        """
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(
                    """
                    INSERT INTO reviews
                        (review_id, task_id, task_title, reviewer_id, reviewer_name,
                         tasker_id, rating, comment, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    tuple(review_data[column] for column in self._COLUMNS),
                )
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                if "unique" in str(exc).lower():
                    raise DuplicateReviewError(
                        f"Reviewer {review_data['reviewer_id']} already reviewed task {review_data['task_id']}"
                    ) from exc
                raise
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

    def get_review(self, review_id: str) -> dict[str, Any] | None:
        """Fetch a review by ID."""
        with self._lock:
            row = self._db.execute(
                self._SELECT_BASE_SQL + " WHERE review_id = ?",
                (review_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_review(row)

    def find_review(self, task_id: str, reviewer_id: str) -> dict[str, Any] | None:
        """Fetch the review a reviewer left on a task, if any."""
        with self._lock:
            row = self._db.execute(
                self._SELECT_BASE_SQL + " WHERE task_id = ? AND reviewer_id = ?",
                (task_id, reviewer_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_review(row)

    def get_reviews_for_tasker(self, tasker_id: str) -> list[dict[str, Any]]:
        """All reviews a tasker received, newest first."""
        with self._lock:
            rows = self._db.execute(
                self._SELECT_BASE_SQL + " WHERE tasker_id = ? ORDER BY created_at DESC, rowid DESC",
                (tasker_id,),
            ).fetchall()
        return [self._row_to_review(row) for row in rows]

    def get_reviews_by_reviewer(self, reviewer_id: str) -> list[dict[str, Any]]:
        """All reviews a user wrote, newest first."""
        with self._lock:
            rows = self._db.execute(
                self._SELECT_BASE_SQL + " WHERE reviewer_id = ? ORDER BY created_at DESC, rowid DESC",
                (reviewer_id,),
            ).fetchall()
        return [self._row_to_review(row) for row in rows]

    def get_ratings_for_tasker(self, tasker_id: str) -> list[int]:
        """Every rating a tasker received."""
        with self._lock:
            rows = self._db.execute(
                "SELECT rating FROM reviews WHERE tasker_id = ?",
                (tasker_id,),
            ).fetchall()
        return [int(row["rating"]) for row in rows]

    def count_reviews(self) -> int:
        """Count total reviews."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM reviews").fetchone()
        return int(row[0]) if row is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
