# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Tests for the Redis Stream sample source.
"""

import asyncio
from datetime import timedelta
from unittest.mock import Mock

import pytest
import redis

from heartstream.capture.redis_source import (
    RedisStreamSampleSource,
    encode_sample,
    parse_entry,
    publish_sample,
)
from heartstream.capture.sample_source import Subscription, WakeReason
from heartstream.errors import AuthError, AuthErrorKind, QueryError
from heartstream.processing.observer import CursorAnchoredObserver
from heartstream.processing.relay import SampleRelay
from heartstream.processing.sinks import PublicStreamSink
from heartstream.redis_keys import SENSOR_HEART_RATE_STREAM
from heartstream.storage.cursor_store import MemoryCursorStore

from conftest import T0, StaticIdentity, make_sample, run


class TestParseEntry:
    """Test decoding of stream entry fields."""

    def test_parse_bytes_fields(self):
        sample = parse_entry({
            b"bpm": b"72.5",
            b"start": b"2025-03-01T07:59:58.000Z",
            b"end": b"2025-03-01T08:00:00.000Z",
            b"source": b"Watch",
        })
        assert sample.value == 72.5
        assert sample.end_time == T0
        assert sample.start_time == T0 - timedelta(seconds=2)
        assert sample.source_name == "Watch"

    def test_start_and_source_default(self):
        sample = parse_entry({"bpm": "60", "end": "2025-03-01T08:00:00Z"})
        assert sample.start_time == sample.end_time
        assert sample.source_name == "unknown"

    def test_missing_bpm_raises(self):
        with pytest.raises(ValueError):
            parse_entry({"end": "2025-03-01T08:00:00Z"})

    def test_infinite_bpm_raises(self):
        with pytest.raises(ValueError):
            parse_entry({"bpm": "inf", "end": "2025-03-01T08:00:00Z"})

    def test_naive_time_raises(self):
        with pytest.raises(ValueError):
            parse_entry({"bpm": "60", "end": "2025-03-01T08:00:00"})

    def test_encoded_sample_parses_back(self):
        sample = make_sample(64.0, T0, source="Polar", duration=1)
        assert parse_entry(encode_sample(sample)) == sample


class TestQuery:
    """Test anchored queries against the stream."""

    def test_query_from_start(self, fake_redis):
        for i in range(3):
            publish_sample(fake_redis, make_sample(60 + i, T0 + timedelta(seconds=i)))
        source = RedisStreamSampleSource(fake_redis)

        result = run(source.query(None, 10))

        assert [s.value for s in result.samples] == [60, 61, 62]
        assert result.cursor == "3-0"
        assert result.has_more is False

    def test_query_after_cursor_with_limit(self, fake_redis):
        for i in range(5):
            publish_sample(fake_redis, make_sample(60 + i, T0 + timedelta(seconds=i)))
        source = RedisStreamSampleSource(fake_redis)

        result = run(source.query("1-0", 2))

        assert [s.value for s in result.samples] == [61, 62]
        assert result.cursor == "3-0"
        assert result.has_more is True

    def test_empty_query_keeps_cursor(self, fake_redis):
        source = RedisStreamSampleSource(fake_redis)

        result = run(source.query("7-0", 10))

        assert result.samples == []
        assert result.cursor == "7-0"
        assert result.has_more is False

    def test_malformed_entry_is_skipped_past(self, fake_redis):
        fake_redis.xadd(SENSOR_HEART_RATE_STREAM, {"bpm": "not-a-number", "end": "2025-03-01T08:00:00Z"})
        publish_sample(fake_redis, make_sample(70, T0))
        source = RedisStreamSampleSource(fake_redis)

        result = run(source.query(None, 10))

        assert [s.value for s in result.samples] == [70]
        assert result.cursor == "2-0"
        assert source.stats['skipped'] == 1

    def test_infinite_bpm_entry_does_not_stall_cursor(self, fake_redis):
        publish_sample(fake_redis, make_sample(70, T0))
        fake_redis.xadd(SENSOR_HEART_RATE_STREAM, {"bpm": "inf", "end": "2025-03-01T08:00:01Z"})
        publish_sample(fake_redis, make_sample(72, T0 + timedelta(seconds=2)))
        source = RedisStreamSampleSource(fake_redis)
        relay = SampleRelay([PublicStreamSink(fake_redis)], StaticIdentity())
        observer = CursorAnchoredObserver(source, relay, MemoryCursorStore())
        errors = []
        observer.on_error = errors.append

        async def scenario():
            await relay.start()
            observer.start()
            for _ in range(3):
                await observer.on_wake()
            await relay.stop()

        run(scenario())

        assert errors == []
        assert observer.last_cursor == "3-0"
        assert source.stats['skipped'] == 1
        assert b'"bpm":72' in fake_redis.strings["public/ab12cd34/latest"]

    def test_redis_error_becomes_query_error(self, fake_redis, redis_error):
        fake_redis.fail_commands["xread"] = redis_error
        source = RedisStreamSampleSource(fake_redis)

        with pytest.raises(QueryError):
            run(source.query("1-0", 10))
        assert source.stats['errors'] == 1


class TestAuthorization:
    """Test mapping Redis responses to AuthError kinds."""

    def test_existing_stream_is_authorized(self, fake_redis):
        publish_sample(fake_redis, make_sample(70, T0))
        run(RedisStreamSampleSource(fake_redis).request_authorization())

    def test_missing_stream_is_authorized(self, fake_redis):
        run(RedisStreamSampleSource(fake_redis).request_authorization())

    def test_wrong_key_type(self, fake_redis):
        fake_redis.set(SENSOR_HEART_RATE_STREAM, "oops")

        with pytest.raises(AuthError) as exc_info:
            run(RedisStreamSampleSource(fake_redis).request_authorization())
        assert exc_info.value.kind == AuthErrorKind.CAPABILITY_UNAVAILABLE

    def test_no_permission_is_denied(self):
        client = Mock()
        client.type.return_value = b"stream"
        client.xrevrange.side_effect = redis.exceptions.NoPermissionError("NOPERM")

        with pytest.raises(AuthError) as exc_info:
            run(RedisStreamSampleSource(client).request_authorization())
        assert exc_info.value.kind == AuthErrorKind.DENIED

    def test_bad_password_is_denied(self):
        client = Mock()
        client.type.side_effect = redis.exceptions.AuthenticationError("WRONGPASS")

        with pytest.raises(AuthError) as exc_info:
            run(RedisStreamSampleSource(client).request_authorization())
        assert exc_info.value.kind == AuthErrorKind.DENIED

    def test_connection_error_is_unavailable(self, redis_error):
        client = Mock()
        client.type.side_effect = redis_error

        with pytest.raises(AuthError) as exc_info:
            run(RedisStreamSampleSource(client).request_authorization())
        assert exc_info.value.kind == AuthErrorKind.UNAVAILABLE

    def test_check_availability(self, fake_redis, redis_error):
        source = RedisStreamSampleSource(fake_redis)
        assert source.check_availability() is True

        fake_redis.fail_commands["ping"] = redis_error
        assert source.check_availability() is False


class TestSubscription:
    """Test wake delivery."""

    def test_wakes_coalesce(self):
        async def scenario():
            subscription = Subscription("test")
            subscription.notify(WakeReason.INITIAL)
            subscription.notify(WakeReason.NOTIFICATION)
            subscription.notify(WakeReason.PERIODIC)
            first = await subscription.__anext__()
            subscription.close()
            remaining = [reason async for reason in subscription]
            return first, remaining

        first, remaining = run(scenario())

        assert first == WakeReason.INITIAL
        assert remaining == []

    def test_close_unblocks_waiting_consumer(self):
        async def consume(subscription):
            return [reason async for reason in subscription]

        async def scenario():
            subscription = Subscription("test")
            consumer = asyncio.create_task(consume(subscription))
            await asyncio.sleep(0)
            subscription.close()
            return await asyncio.wait_for(consumer, timeout=1.0)

        assert run(scenario()) == []

    def test_new_entry_wakes_subscriber(self, fake_redis):
        source = RedisStreamSampleSource(fake_redis, block_ms=10)

        async def scenario():
            subscription = source.subscribe()
            first = await subscription.__anext__()
            await asyncio.sleep(0.05)
            publish_sample(fake_redis, make_sample(70, T0))
            second = await asyncio.wait_for(subscription.__anext__(), timeout=1.0)
            source.unsubscribe(subscription)
            return first, second, subscription.closed

        first, second, closed = run(scenario())

        assert first == WakeReason.INITIAL
        assert second == WakeReason.NOTIFICATION
        assert closed is True

    def test_subscribe_twice_returns_same_subscription(self, fake_redis):
        source = RedisStreamSampleSource(fake_redis, block_ms=10)

        async def scenario():
            first = source.subscribe()
            second = source.subscribe()
            source.unsubscribe(first)
            return first is second

        assert run(scenario()) is True
