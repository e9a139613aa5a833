# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Base classes for record sinks.

A sink accepts one canonical record at a time and raises SinkError on
failure. Sinks own no shared state; the same key written twice is replaced,
not appended.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict

import redis

from ...errors import SinkError
from ...models import CanonicalRecord, ShareIdentity

logger = logging.getLogger(__name__)


def encode_payload(record: CanonicalRecord) -> str:
    return json.dumps(record.to_payload(), separators=(',', ':'))


class Sink(ABC):
    """Write destination for canonical records."""

    name: str = "sink"

    def __init__(self):
        self.stats = {
            'written': 0,
            'skipped': 0,
            'failed': 0,
        }

    @abstractmethod
    async def accept(self, record: CanonicalRecord, identity: ShareIdentity) -> None:
        """
        Write a record.

        Raises:
            SinkError: If the write failed
        """
        raise NotImplementedError

    def get_stats(self) -> Dict[str, Any]:
        return {'sink': self.name, **self.stats}


class RedisSink(Sink):
    """Sink that writes through a Redis pipeline in a worker thread."""

    def __init__(self, redis_client: redis.Redis):
        super().__init__()
        self.redis_client = redis_client

    async def _write(self, build: Callable[[Any], None]) -> None:
        """
        Run a non-transactional pipeline built by ``build``.

        Args:
            build: Callable that queues commands on the pipeline
        """
        def run() -> None:
            pipe = self.redis_client.pipeline(transaction=False)
            build(pipe)
            pipe.execute()

        try:
            # Keep the blocking Redis round-trip off the event loop
            await asyncio.to_thread(run)
        except redis.RedisError as e:
            self.stats['failed'] += 1
            raise SinkError(self.name, str(e)) from e

        self.stats['written'] += 1
