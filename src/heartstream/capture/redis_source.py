# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Redis Stream sample source.

The sensor subsystem XADDs heart-rate samples to a stream. The stream entry
id is the cursor: an anchored query is a non-blocking XREAD strictly after
that id. A background notifier blocks on XREAD and turns new entries into
wakes, with a periodic wake as a fallback.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import redis

from ..errors import AuthError, AuthErrorKind, QueryError
from ..models import Sample, format_timestamp, parse_timestamp
from ..redis_keys import SENSOR_HEART_RATE_STREAM, SENSOR_STREAM_MAXLEN
from .sample_source import QueryResult, SampleSource, Subscription, WakeReason

logger = logging.getLogger(__name__)


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def parse_entry(fields: Dict[Any, Any]) -> Sample:
    """
    Build a Sample from stream entry fields.

    Raises:
        ValueError: If a required field is missing or malformed
    """
    decoded = {_decode(k): _decode(v) for k, v in fields.items()}
    try:
        bpm = float(decoded["bpm"])
        end = parse_timestamp(decoded["end"])
    except KeyError as e:
        raise ValueError(f"missing field {e}") from e

    start = parse_timestamp(decoded["start"]) if decoded.get("start") else end
    return Sample(
        value=bpm,
        start_time=start,
        end_time=end,
        source_name=decoded.get("source") or "unknown",
    )


def encode_sample(sample: Sample) -> Dict[str, str]:
    """Stream entry fields for a sample (producer side)."""
    return {
        "bpm": repr(float(sample.value)),
        "start": format_timestamp(sample.start_time),
        "end": format_timestamp(sample.end_time),
        "source": sample.source_name,
    }


def publish_sample(
    redis_client: redis.Redis,
    sample: Sample,
    stream_name: str = SENSOR_HEART_RATE_STREAM,
    max_length: int = SENSOR_STREAM_MAXLEN,
) -> str:
    """Append a sample to the sensor stream and return its entry id."""
    entry_id = redis_client.xadd(
        stream_name,
        encode_sample(sample),
        maxlen=max_length,
        approximate=True,
    )
    return _decode(entry_id)


class RedisStreamSampleSource(SampleSource):
    """
    Sample source backed by a Redis Stream.

    Features:
    - Anchored, bounded XREAD queries (cursor = stream entry id)
    - Blocking XREAD notifier for near-immediate wakes
    - Periodic wake so a missed notification is picked up later
    """

    name = "redis_stream"

    def __init__(
        self,
        redis_client: redis.Redis,
        stream_name: str = SENSOR_HEART_RATE_STREAM,
        block_ms: int = 1000,
        wake_interval: float = 30.0,
    ):
        """
        Initialize the source.

        Args:
            redis_client: Redis client instance
            stream_name: Sensor stream to observe
            block_ms: Blocking timeout for the notifier XREAD (ms)
            wake_interval: Seconds between periodic wakes when the stream is quiet
        """
        self.redis_client = redis_client
        self.stream_name = stream_name
        self.block_ms = block_ms
        self.wake_interval = wake_interval

        self._subscription: Optional[Subscription] = None
        self._notifier_task: Optional[asyncio.Task] = None
        self.stats = {
            'queries': 0,
            'samples': 0,
            'skipped': 0,
            'wakes': 0,
            'errors': 0,
        }

    def check_availability(self) -> bool:
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError as e:
            logger.warning(f"Sensor source unavailable: {e}")
            return False

    async def request_authorization(self) -> None:
        try:
            key_type = _decode(await asyncio.to_thread(self.redis_client.type, self.stream_name))
            if key_type not in ("stream", "none"):
                raise AuthError(
                    AuthErrorKind.CAPABILITY_UNAVAILABLE,
                    f"{self.stream_name} is a {key_type}, not a stream",
                )
            # Probe read access on the stream itself
            await asyncio.to_thread(self.redis_client.xrevrange, self.stream_name, count=1)
        except (redis.exceptions.NoPermissionError, redis.exceptions.AuthenticationError) as e:
            raise AuthError(AuthErrorKind.DENIED, str(e)) from e
        except redis.RedisError as e:
            raise AuthError(AuthErrorKind.UNAVAILABLE, str(e)) from e

        logger.info(f"Authorized to read {self.stream_name}")

    def subscribe(self) -> Subscription:
        if self._subscription is not None and not self._subscription.closed:
            logger.warning(f"Already subscribed to {self.stream_name}")
            return self._subscription

        subscription = Subscription(self.name)
        subscription.notify(WakeReason.INITIAL)
        self._subscription = subscription
        self._notifier_task = asyncio.create_task(self._run_notifier(subscription))

        logger.info(f"Subscribed to {self.stream_name}")
        return subscription

    def unsubscribe(self, subscription: Optional[Subscription]) -> None:
        if subscription is None:
            return

        subscription.close()

        if subscription is self._subscription:
            if self._notifier_task and not self._notifier_task.done():
                # A blocking XREAD already running in a worker thread finishes on its own
                self._notifier_task.cancel()
            self._notifier_task = None
            self._subscription = None
            logger.info(f"Unsubscribed from {self.stream_name}")

    async def query(self, cursor: Optional[str], limit: int) -> QueryResult:
        self.stats['queries'] += 1
        try:
            messages = await asyncio.to_thread(
                self.redis_client.xread,
                {self.stream_name: cursor or "0-0"},
                count=limit,
            )
        except redis.RedisError as e:
            self.stats['errors'] += 1
            raise QueryError(f"Failed to read {self.stream_name} after {cursor or 'start'}: {e}") from e

        entries = messages[0][1] if messages else []

        samples = []
        new_cursor = cursor
        for entry_id, fields in entries:
            new_cursor = _decode(entry_id)
            try:
                samples.append(parse_entry(fields))
            except ValueError as e:
                # Skipped for good: the cursor moves past malformed entries
                self.stats['skipped'] += 1
                logger.warning(f"Skipping malformed entry {new_cursor}: {e}")

        self.stats['samples'] += len(samples)
        return QueryResult(
            samples=samples,
            cursor=new_cursor,
            has_more=len(entries) >= limit,
        )

    async def _latest_entry_id(self) -> str:
        entries = await asyncio.to_thread(self.redis_client.xrevrange, self.stream_name, count=1)
        if entries:
            return _decode(entries[0][0])
        return "0-0"

    async def _run_notifier(self, subscription: Subscription) -> None:
        """Turn new stream entries into wakes until the subscription closes."""
        loop = asyncio.get_running_loop()
        last_id: Optional[str] = None
        last_wake = loop.time()

        while not subscription.closed:
            try:
                if last_id is None:
                    last_id = await self._latest_entry_id()

                messages = await asyncio.to_thread(
                    self.redis_client.xread,
                    {self.stream_name: last_id},
                    count=100,
                    block=self.block_ms,
                )

                if messages:
                    last_id = _decode(messages[0][1][-1][0])
                    self.stats['wakes'] += 1
                    subscription.notify(WakeReason.NOTIFICATION)
                    last_wake = loop.time()
                elif loop.time() - last_wake >= self.wake_interval:
                    subscription.notify(WakeReason.PERIODIC)
                    last_wake = loop.time()

            except asyncio.CancelledError:
                raise
            except redis.ConnectionError as e:
                logger.warning("Redis connection lost, retrying...")
                subscription.report_error(QueryError(f"Wake notifier lost connection: {e}"))
                await asyncio.sleep(5)
            except Exception as e:
                logger.error(f"Error in wake notifier: {e}")
                subscription.report_error(e)
                await asyncio.sleep(1)

        logger.debug(f"Wake notifier for {self.stream_name} exited")
