"""SQLite storage adapter.

Keeps an append-only log of archived statuses so counts and recent entries
can be queried without walking the archive directory.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Optional

from core.models import ArchivedContent


class SQLiteStorage:
    """Thin SQLite wrapper backing the archive log."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - archived: append-only log of captured statuses
        """

        with self._connect() as conn:
            # archived is denormalized for simplicity; one row per capture.
            # Fields:
            # - id: auto-increment primary key
            # - status_id: dedup key of the captured status
            # - sender_id / sender_name: who posted it
            # - captured_at: when we archived it (UTC)
            # - kind: classified content kind
            # - text: literal text, caption, or description
            # - storage_path: primary archive file, NULL when the write failed
            # - has_media: 1 when media bytes were archived
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS archived (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    status_id TEXT NOT NULL,
                    sender_id TEXT,
                    sender_name TEXT,
                    captured_at TIMESTAMP NOT NULL,
                    kind TEXT NOT NULL,
                    text TEXT,
                    storage_path TEXT,
                    has_media INTEGER NOT NULL DEFAULT 0
                )
                """
            )

    def record_archive(self, content: ArchivedContent, storage_path: Optional[str]) -> None:
        """Append one archived status to the log."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO archived (
                    status_id,
                    sender_id,
                    sender_name,
                    captured_at,
                    kind,
                    text,
                    storage_path,
                    has_media
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    content.status_id,
                    content.sender_id,
                    content.sender_name,
                    content.timestamp.astimezone(timezone.utc).isoformat(),
                    content.variant.kind.value,
                    content.text_or_caption,
                    storage_path,
                    1 if content.media_bytes else 0,
                ),
            )

    def count_archived(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM archived").fetchone()
        return int(row["total"])

    def count_by_kind(self) -> dict[str, int]:
        """Return archived counts keyed by content kind."""

        with self._connect() as conn:
            rows = conn.execute(
                "SELECT kind, COUNT(*) AS total FROM archived GROUP BY kind ORDER BY kind"
            ).fetchall()
        return {row["kind"]: int(row["total"]) for row in rows}

    def list_recent(self, limit: int = 10) -> list[dict]:
        """Return the newest archive rows, newest first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT status_id, sender_name, captured_at, kind, text, storage_path
                FROM archived
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [
            {
                "status_id": row["status_id"],
                "sender_name": row["sender_name"],
                "captured_at": datetime.fromisoformat(row["captured_at"]),
                "kind": row["kind"],
                "text": row["text"],
                "storage_path": row["storage_path"],
            }
            for row in rows
        ]
