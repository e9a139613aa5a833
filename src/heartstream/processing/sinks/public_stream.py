# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Public share stream: a latest slot plus history, keyed by share id.

Readers need only the share id; no owner identity is exposed.
"""

import json
import logging
from typing import List, Optional

import redis

from ...models import CanonicalRecord, ShareIdentity, epoch_millis
from ...redis_keys import public_history_index, public_history_key, public_latest_key
from .base import RedisSink, encode_payload

logger = logging.getLogger(__name__)


class PublicStreamSink(RedisSink):
    """
    Writes public/{shareId}/latest and public/{shareId}/heartRate/{endEpochMillis}.

    The latest slot is overwritten unconditionally, so it always holds the
    most recently dispatched record, not the one with the newest end time.
    """

    name = "public_stream"

    async def accept(self, record: CanonicalRecord, identity: ShareIdentity) -> None:
        share_id = identity.share_id
        payload = encode_payload(record)
        latest_key = public_latest_key(share_id)
        history_key = public_history_key(share_id, record.key)
        index = public_history_index(share_id)
        score = epoch_millis(record.end)

        def build(pipe) -> None:
            pipe.set(latest_key, payload)
            pipe.set(history_key, payload)
            pipe.zadd(index, {record.key: score})

        await self._write(build)
        logger.debug(f"Published {history_key}")


class PublicStreamReader:
    """Unauthenticated read side of a public share stream."""

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    def latest(self, share_id: str) -> Optional[CanonicalRecord]:
        raw = self.redis_client.get(public_latest_key(share_id))
        return self._decode(raw)

    def history(self, share_id: str, limit: int = 20) -> List[CanonicalRecord]:
        """
        Most recent history entries, newest first by end time.

        Ordering comes from the numeric index, not from key strings.
        """
        members = self.redis_client.zrevrange(public_history_index(share_id), 0, limit - 1)
        if not members:
            return []

        keys = [
            public_history_key(share_id, m.decode('utf-8') if isinstance(m, bytes) else str(m))
            for m in members
        ]
        records = []
        for raw in self.redis_client.mget(keys):
            record = self._decode(raw)
            if record is not None:
                records.append(record)
        return records

    def _decode(self, raw) -> Optional[CanonicalRecord]:
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode('utf-8')
        try:
            return CanonicalRecord.from_payload(json.loads(raw))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable record: {e}")
            return None
