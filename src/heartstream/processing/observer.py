# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Cursor-anchored observer.

Every wake re-queries the source from the last cursor. The cursor moves only
after the batch has been handed to the relay, so a failure between query and
hand-off re-delivers the batch on the next wake instead of losing it.
"""

import asyncio
import logging
from typing import Callable, Optional

from ..capture.sample_source import SampleSource, Subscription, WakeReason
from ..errors import QueryError, RelayStoppedError
from ..storage.cursor_store import CursorStore
from .relay import SampleRelay

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[Exception], None]


class CursorAnchoredObserver:
    """
    Owns the single anchor cursor and drives anchored queries.

    Design:
    - One asyncio.Lock serializes every cursor read-modify-write
    - A query reporting has_more is followed by another query in the same wake
    - Query and relay failures leave the cursor untouched
    """

    def __init__(
        self,
        source: SampleSource,
        relay: SampleRelay,
        cursor_store: CursorStore,
        batch_limit: int = 500,
        on_error: Optional[ErrorCallback] = None,
    ):
        """
        Initialize observer.

        Args:
            source: Sample source to query
            relay: Relay receiving each batch
            cursor_store: Persistence port for the cursor
            batch_limit: Maximum samples per anchored query
            on_error: Called with QueryError or relay failures
        """
        self.source = source
        self.relay = relay
        self.cursor_store = cursor_store
        self.batch_limit = batch_limit
        self.on_error = on_error

        self.last_cursor: Optional[str] = None
        self.running = False
        self._lock = asyncio.Lock()
        self.stats = {
            'wakes': 0,
            'batches': 0,
            'samples': 0,
            'failures': 0,
        }

    def start(self) -> None:
        """Load the persisted cursor and accept wakes."""
        self.last_cursor = self.cursor_store.load()
        if self.last_cursor:
            logger.info(f"Resuming from cursor {self.last_cursor}")
        else:
            logger.info("No cursor stored, delivering full available history")
        self.running = True

    async def on_wake(self, reason: WakeReason = WakeReason.UPDATE) -> int:
        """
        Query from the cursor and hand new samples to the relay.

        Returns:
            Number of samples delivered during this wake
        """
        async with self._lock:
            self.stats['wakes'] += 1
            delivered = 0

            while self.running:
                try:
                    result = await self.source.query(self.last_cursor, self.batch_limit)
                except QueryError as e:
                    self._fail(f"Query after {self.last_cursor} failed on {reason.value} wake", e)
                    return delivered

                try:
                    await self.relay.deliver(result.samples)
                except RelayStoppedError:
                    logger.info(f"Relay stopped, cursor stays at {self.last_cursor}")
                    return delivered
                except Exception as e:
                    self._fail(f"Relay failed for batch after {self.last_cursor}", e)
                    return delivered

                if result.cursor is not None and result.cursor != self.last_cursor:
                    self.last_cursor = result.cursor
                    self._persist(result.cursor)

                if result.samples:
                    self.stats['batches'] += 1
                    self.stats['samples'] += len(result.samples)
                    delivered += len(result.samples)

                if not result.has_more:
                    break

            if delivered:
                logger.debug(f"Delivered {delivered} samples on {reason.value} wake")
            return delivered

    def _persist(self, cursor: str) -> None:
        try:
            self.cursor_store.save(cursor)
        except Exception as e:
            # In-memory cursor stays ahead; a restart re-delivers from the stored one
            logger.error(f"Failed to persist cursor {cursor}: {e}")

    def _fail(self, message: str, error: Exception) -> None:
        self.stats['failures'] += 1
        logger.warning(f"{message}: {error}")
        if self.on_error is not None:
            self.on_error(error)

    async def run(self, subscription: Subscription) -> None:
        """Handle wakes until the subscription closes or stop() is called."""
        logger.info("Observer started")

        async for reason in subscription:
            if not self.running:
                break
            await self.on_wake(reason)

        self.running = False
        logger.info("Observer stopped")

    def stop(self) -> None:
        self.running = False
