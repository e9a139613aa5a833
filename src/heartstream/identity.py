# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Owner and share identifiers.

The share id is short, lowercase and URL-safe. It is generated once per
local install, persisted, and never rotated automatically. The owner id is
supplied from outside (config or environment) and may be absent.
"""

import logging
import uuid
from typing import Optional

from .storage.sqlite_client import SQLiteClient

logger = logging.getLogger(__name__)

SHARE_ID_NAME = "public_share_id"
SHARE_ID_LENGTH = 8


def generate_share_id() -> str:
    return uuid.uuid4().hex[:SHARE_ID_LENGTH].lower()


class ShareIdStore:
    """SQLite-backed get-or-create for the public share id."""

    def __init__(self, sqlite_client: SQLiteClient):
        self.client = sqlite_client

    def load(self) -> Optional[str]:
        with self.client.get_connection() as conn:
            row = conn.execute(
                "SELECT value FROM local_identity WHERE name = ?",
                (SHARE_ID_NAME,),
            ).fetchone()
            return row["value"] if row else None

    def load_or_create(self) -> str:
        existing = self.load()
        if existing:
            return existing

        candidate = generate_share_id()
        with self.client.get_connection() as conn:
            # First writer wins if two processes race
            conn.execute(
                "INSERT OR IGNORE INTO local_identity (name, value) VALUES (?, ?)",
                (SHARE_ID_NAME, candidate),
            )
            conn.commit()

        share_id = self.load() or candidate
        logger.info(f"Created public share id {share_id}")
        return share_id


class LocalIdentityProvider:
    """Supplies the identity used to key sink writes."""

    def __init__(self, share_store: ShareIdStore, owner_id: Optional[str] = None):
        self.share_store = share_store
        self.owner_id = owner_id or None
        self._share_id: Optional[str] = None

    def get_owner_id(self) -> Optional[str]:
        return self.owner_id

    def get_or_create_share_id(self) -> str:
        if self._share_id is None:
            self._share_id = self.share_store.load_or_create()
        return self._share_id
