# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""Per-owner private heart-rate log."""

import logging

from ...models import CanonicalRecord, ShareIdentity, epoch_millis
from ...redis_keys import owner_history_index, owner_history_key
from .base import RedisSink, encode_payload

logger = logging.getLogger(__name__)


class PrivateLogSink(RedisSink):
    """
    Writes owner/{ownerId}/heartRate/{endEpochMillis}.

    A missing owner id is a soft failure: the write is skipped and nothing
    is raised, since the public stream is still useful without it.
    """

    name = "private_log"

    async def accept(self, record: CanonicalRecord, identity: ShareIdentity) -> None:
        owner_id = identity.owner_id
        if not owner_id:
            self.stats['skipped'] += 1
            logger.debug(f"No owner id yet, skipping private log write for {record.key}")
            return

        key = owner_history_key(owner_id, record.key)
        index = owner_history_index(owner_id)
        payload = encode_payload(record)
        score = epoch_millis(record.end)

        def build(pipe) -> None:
            pipe.set(key, payload)
            pipe.zadd(index, {record.key: score})

        await self._write(build)
        logger.debug(f"Wrote {key}")
