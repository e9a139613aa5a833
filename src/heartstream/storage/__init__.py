# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Local durable state: anchor cursor and share identity.
"""

from .sqlite_client import SQLiteClient
from .schema import create_schema
from .cursor_store import CursorStore, MemoryCursorStore, SQLiteCursorStore

__all__ = [
    "SQLiteClient",
    "create_schema",
    "CursorStore",
    "MemoryCursorStore",
    "SQLiteCursorStore",
]
