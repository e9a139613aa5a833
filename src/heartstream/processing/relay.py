# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Sample relay: converts batches to canonical records and fans them out.

Each sink gets its own queue and worker task:
- Writes to one sink never wait on another sink
- Per-sink write order equals dispatch order, so the latest slot ends on
  the last dispatched record
- deliver() only enqueues, so the observer is never blocked on sink I/O
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence

from ..errors import RelayStoppedError, SinkError
from ..models import CanonicalRecord, Sample, ShareIdentity
from .sinks.base import Sink

logger = logging.getLogger(__name__)

SinkErrorCallback = Callable[[str, CanonicalRecord, SinkError], None]


class RecordFeed:
    """
    Record-observed notifications for a presentation layer.

    Holds at most one pending record; a slow consumer only ever sees the
    most recent one.
    """

    def __init__(self):
        self.last: Optional[CanonicalRecord] = None
        self._pending: asyncio.Queue = asyncio.Queue(maxsize=1)

    def publish(self, record: CanonicalRecord) -> None:
        self.last = record
        if self._pending.full():
            self._pending.get_nowait()
        self._pending.put_nowait(record)

    async def next(self) -> CanonicalRecord:
        return await self._pending.get()

    def pending(self) -> int:
        return self._pending.qsize()


class SampleRelay:
    """
    Stateless forwarding stage between the observer and the sinks.

    Holds no sample state across deliver() calls beyond writes still queued
    for the sinks.
    """

    def __init__(
        self,
        sinks: Sequence[Sink],
        identity_provider,
        on_sink_error: Optional[SinkErrorCallback] = None,
        feed: Optional[RecordFeed] = None,
    ):
        """
        Initialize relay.

        Args:
            sinks: Sinks to fan out to (empty for local display only)
            identity_provider: Supplies get_owner_id() and get_or_create_share_id()
            on_sink_error: Side-channel for sink failures
            feed: Record-observed feed (created if not provided)
        """
        self.sinks = list(sinks)
        self.identity_provider = identity_provider
        self.on_sink_error = on_sink_error
        self.feed = feed or RecordFeed()

        self._queues: List[asyncio.Queue] = []
        self._tasks: List[asyncio.Task] = []
        self.running = False
        self.stats = {
            'batches': 0,
            'records': 0,
            'ignored_batches': 0,
            'sink_errors': 0,
        }

    async def start(self) -> None:
        """Start one worker per sink."""
        if self.running:
            logger.warning("Relay already running")
            return

        for sink in self.sinks:
            queue: asyncio.Queue = asyncio.Queue()
            self._queues.append(queue)
            self._tasks.append(asyncio.create_task(self._run_sink(sink, queue)))

        self.running = True
        logger.info(f"Relay started with sinks: {', '.join(s.name for s in self.sinks) or 'none'}")

    def _identity(self) -> ShareIdentity:
        return ShareIdentity(
            owner_id=self.identity_provider.get_owner_id(),
            share_id=self.identity_provider.get_or_create_share_id(),
        )

    async def deliver(self, batch: Sequence[Sample]) -> None:
        """
        Hand a batch to every sink, in arrival order.

        Returns once every record is queued, without waiting for sink I/O.

        Raises:
            RelayStoppedError: If called after stop(); nothing was queued
        """
        if not self.running:
            self.stats['ignored_batches'] += 1
            raise RelayStoppedError(f"Relay stopped, refusing batch of {len(batch)}")

        if not batch:
            return

        identity = self._identity()

        for sample in batch:
            record = CanonicalRecord.from_sample(sample)
            for queue in self._queues:
                queue.put_nowait((record, identity))
            self.feed.publish(record)
            self.stats['records'] += 1

        self.stats['batches'] += 1
        logger.debug(f"Dispatched batch of {len(batch)} to {len(self.sinks)} sinks")

    async def _run_sink(self, sink: Sink, queue: asyncio.Queue) -> None:
        """Write queued records to one sink, in order."""
        while True:
            record, identity = await queue.get()
            try:
                await sink.accept(record, identity)
            except SinkError as e:
                self._report(sink.name, record, e)
            except Exception as e:
                logger.error(f"Unexpected error in sink {sink.name}: {e}", exc_info=True)
                self._report(sink.name, record, SinkError(sink.name, str(e)))
            finally:
                queue.task_done()

    def _report(self, sink_name: str, record: CanonicalRecord, error: SinkError) -> None:
        self.stats['sink_errors'] += 1
        logger.warning(f"Failed to write {record.key} to {sink_name}: {error}")
        if self.on_sink_error is not None:
            try:
                self.on_sink_error(sink_name, record, error)
            except Exception as callback_error:
                logger.error(f"Sink error callback failed: {callback_error}")

    async def flush(self) -> None:
        """Wait until every queued write has been attempted."""
        await asyncio.gather(*(queue.join() for queue in self._queues))

    async def stop(self, timeout: float = 5.0) -> None:
        """Stop accepting batches, give queued writes ``timeout`` seconds, then cancel."""
        if not self.running and not self._tasks:
            return

        self.running = False

        try:
            await asyncio.wait_for(self.flush(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Dropping unwritten records after {timeout}s")

        for task in self._tasks:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._tasks.clear()
        self._queues.clear()
        logger.info("Relay stopped")

    def get_stats(self) -> Dict[str, object]:
        return {
            **self.stats,
            'sinks': [sink.get_stats() for sink in self.sinks],
        }
