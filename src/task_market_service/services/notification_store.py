"""SQLite-backed notification and device token storage."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence


class NotificationStore:
    """SQLite-backed storage for the notification inbox and push device tokens."""

    _COLUMNS: tuple[str, ...] = (
        "notification_id",
        "recipient_id",
        "sender_id",
        "type",
        "title",
        "message",
        "task_id",
        "bid_id",
        "data",
        "is_read",
        "created_at",
    )
    _SELECT_BASE_SQL = (
        "SELECT notification_id, recipient_id, sender_id, type, title, message, "
        "task_id, bid_id, data, is_read, created_at FROM notifications"
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
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS notifications (
                    notification_id TEXT PRIMARY KEY,
                    recipient_id    TEXT NOT NULL,
                    sender_id       TEXT,
                    type            TEXT NOT NULL,
                    title           TEXT NOT NULL,
                    message         TEXT NOT NULL,
                    task_id         TEXT,
                    bid_id          TEXT,
                    data            TEXT NOT NULL DEFAULT '{}',
                    is_read         INTEGER NOT NULL DEFAULT 0,
                    created_at      TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS ix_notifications_recipient
                    ON notifications (recipient_id, created_at);

                CREATE TABLE IF NOT EXISTS device_tokens (
                    user_id      TEXT NOT NULL,
                    device_token TEXT NOT NULL,
                    created_at   TEXT NOT NULL,
                    UNIQUE(user_id, device_token)
                );
                """
            )
            self._db.commit()

    def _row_to_notification(self, row: sqlite3.Row) -> dict[str, Any]:
        notification = {column: row[column] for column in self._COLUMNS}
        notification["data"] = json.loads(notification["data"])
        notification["is_read"] = bool(notification["is_read"])
        return notification

    def insert_notification(self, notification_data: dict[str, Any]) -> None:
        """Insert a notification row."""
        values = [notification_data[column] for column in self._COLUMNS]
        values[self._COLUMNS.index("data")] = json.dumps(notification_data["data"], default=str)
        values[self._COLUMNS.index("is_read")] = int(bool(notification_data["is_read"]))
        with self._lock:
            self._db.execute(
                "INSERT INTO notifications ("
                "notification_id, recipient_id, sender_id, type, title, message, "
                "task_id, bid_id, data, is_read, created_at"
                ") VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                values,
            )
            self._db.commit()

    def get_notification(self, notification_id: str) -> dict[str, Any] | None:
        """Fetch a notification by ID."""
        with self._lock:
            row = self._db.execute(
                self._SELECT_BASE_SQL + " WHERE notification_id = ?",
                (notification_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_notification(row)

    def list_for_recipient(
        self,
        recipient_id: str,
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int, int]:
        """
        Page through a recipient's inbox, newest first.

        Returns:
            (page, total count, unread count)
        """
        with self._lock:
            rows = self._db.execute(
                self._SELECT_BASE_SQL
                + " WHERE recipient_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
                (recipient_id, limit, offset),
            ).fetchall()
            counts = self._db.execute(
                "SELECT COUNT(*), COALESCE(SUM(CASE WHEN is_read = 0 THEN 1 ELSE 0 END), 0) "
                "FROM notifications WHERE recipient_id = ?",
                (recipient_id,),
            ).fetchone()
        total = int(counts[0]) if counts is not None else 0
        unread = int(counts[1]) if counts is not None else 0
        return [self._row_to_notification(row) for row in rows], total, unread

    def mark_read(self, notification_id: str) -> int:
        """Mark one notification as read."""
        with self._lock:
            cursor = self._db.execute(
                "UPDATE notifications SET is_read = 1 WHERE notification_id = ?",
                (notification_id,),
            )
            self._db.commit()
        return int(cursor.rowcount)

    def mark_all_read(self, recipient_id: str) -> int:
        """Mark every unread notification of a recipient as read."""
        with self._lock:
            cursor = self._db.execute(
                "UPDATE notifications SET is_read = 1 WHERE recipient_id = ? AND is_read = 0",
                (recipient_id,),
            )
            self._db.commit()
        return int(cursor.rowcount)

    def delete_notification(self, notification_id: str) -> int:
        """Delete a notification."""
        with self._lock:
            cursor = self._db.execute(
                "DELETE FROM notifications WHERE notification_id = ?",
                (notification_id,),
            )
            self._db.commit()
        return int(cursor.rowcount)

    def add_device_token(self, user_id: str, device_token: str, created_at: str) -> None:
        """Register a push device token. Registering the same pair twice is a no-op."""
        with self._lock:
            self._db.execute(
                "INSERT OR IGNORE INTO device_tokens (user_id, device_token, created_at) VALUES (?, ?, ?)",
                (user_id, device_token, created_at),
            )
            self._db.commit()

    def remove_device_tokens(self, user_id: str, device_tokens: Sequence[str]) -> int:
        """Remove device tokens registered for a user."""
        if len(device_tokens) == 0:
            return 0
        placeholders = ", ".join("?" for _ in device_tokens)
        with self._lock:
            cursor = self._db.execute(
                f"DELETE FROM device_tokens WHERE user_id = ? AND device_token IN ({placeholders})",  # nosec B608
                [user_id, *device_tokens],
            )
            self._db.commit()
        return int(cursor.rowcount)

    def get_device_tokens(self, user_id: str) -> list[str]:
        """All device tokens registered for a user, oldest first."""
        with self._lock:
            rows = self._db.execute(
                "SELECT device_token FROM device_tokens WHERE user_id = ? ORDER BY rowid",
                (user_id,),
            ).fetchall()
        return [str(row["device_token"]) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
