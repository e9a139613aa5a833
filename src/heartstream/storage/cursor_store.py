# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""Persistence for the observer's anchor cursor."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .sqlite_client import SQLiteClient


class CursorStore(ABC):
    """Load/save port for a single opaque cursor."""

    @abstractmethod
    def load(self) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def save(self, cursor: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        raise NotImplementedError


class MemoryCursorStore(CursorStore):
    """Keeps the cursor for the life of the process only."""

    def __init__(self, cursor: Optional[str] = None):
        self.cursor = cursor

    def load(self) -> Optional[str]:
        return self.cursor

    def save(self, cursor: str) -> None:
        self.cursor = cursor

    def clear(self) -> None:
        self.cursor = None


class SQLiteCursorStore(CursorStore):
    """Read/write the anchor cursor via SQLite, one row per source."""

    def __init__(self, sqlite_client: SQLiteClient, source_key: str):
        self.client = sqlite_client
        self.source_key = source_key

    def load(self) -> Optional[str]:
        """
        Load the persisted cursor.

        Returns:
            Cursor string or None if nothing has been delivered yet
        """
        with self.client.get_connection() as conn:
            row = conn.execute(
                "SELECT cursor FROM anchor_cursors WHERE source_key = ?",
                (self.source_key,),
            ).fetchone()
            return row["cursor"] if row else None

    def save(self, cursor: str) -> None:
        """Insert or update the cursor for this source."""
        with self.client.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO anchor_cursors (source_key, cursor, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(source_key) DO UPDATE SET
                    cursor = excluded.cursor,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (self.source_key, cursor),
            )
            conn.commit()

    def clear(self) -> None:
        """Forget the cursor so the next session replays full history."""
        with self.client.get_connection() as conn:
            conn.execute(
                "DELETE FROM anchor_cursors WHERE source_key = ?",
                (self.source_key,),
            )
            conn.commit()
