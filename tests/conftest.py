# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Shared fixtures and fakes.

FakeRedis implements just the commands the relay uses, storing bytes the
way redis-py does with decode_responses=False.
"""

import asyncio
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
import redis

from heartstream.capture.sample_source import QueryResult, SampleSource, Subscription, WakeReason
from heartstream.errors import AuthError, QueryError
from heartstream.models import Sample
from heartstream.storage.schema import create_schema
from heartstream.storage.sqlite_client import SQLiteClient

T0 = datetime(2025, 3, 1, 8, 0, 0, tzinfo=timezone.utc)


def make_sample(bpm: float, end: datetime, source: str = "Watch", duration: float = 0.0) -> Sample:
    return Sample(
        value=bpm,
        start_time=end - timedelta(seconds=duration),
        end_time=end,
        source_name=source,
    )


def _b(value) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


def _parse_id(entry_id) -> Tuple[int, int]:
    text = entry_id.decode() if isinstance(entry_id, bytes) else str(entry_id)
    ms, _, seq = text.partition("-")
    return int(ms), int(seq or 0)


class FakePipeline:
    def __init__(self, client: "FakeRedis"):
        self.client = client
        self.commands = []

    def set(self, key, value):
        self.commands.append(("set", key, value))
        return self

    def zadd(self, key, mapping):
        self.commands.append(("zadd", key, mapping))
        return self

    def execute(self):
        self.client._check("pipeline")
        results = []
        for name, *args in self.commands:
            results.append(getattr(self.client, name)(*args))
        self.commands = []
        return results


class FakeRedis:
    """Dict-backed stand-in for redis.Redis(decode_responses=False)."""

    def __init__(self):
        self.strings: Dict[str, bytes] = {}
        self.zsets: Dict[str, Dict[bytes, float]] = {}
        self.streams: Dict[str, List[Tuple[bytes, Dict[bytes, bytes]]]] = {}
        self.fail_commands: Dict[str, Exception] = {}
        self.writes: List[str] = []
        self._next_id = 1

    def _check(self, command: str) -> None:
        error = self.fail_commands.get(command)
        if error is not None:
            raise error

    def ping(self):
        self._check("ping")
        return True

    def close(self):
        pass

    def type(self, key):
        self._check("type")
        if key in self.streams:
            return b"stream"
        if key in self.strings:
            return b"string"
        if key in self.zsets:
            return b"zset"
        return b"none"

    def set(self, key, value):
        self._check("set")
        self.strings[key] = _b(value)
        self.writes.append(key)
        return True

    def get(self, key):
        self._check("get")
        return self.strings.get(key)

    def mget(self, keys):
        self._check("mget")
        return [self.strings.get(k) for k in keys]

    def zadd(self, key, mapping):
        self._check("zadd")
        zset = self.zsets.setdefault(key, {})
        added = 0
        for member, score in mapping.items():
            member = _b(member)
            if member not in zset:
                added += 1
            zset[member] = float(score)
        return added

    def zrevrange(self, key, start, end):
        self._check("zrevrange")
        members = sorted(self.zsets.get(key, {}).items(), key=lambda kv: kv[1], reverse=True)
        stop = None if end == -1 else end + 1
        return [m for m, _ in members[start:stop]]

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def xadd(self, name, fields, maxlen=None, approximate=True):
        self._check("xadd")
        entry_id = f"{self._next_id}-0".encode()
        self._next_id += 1
        self.streams.setdefault(name, []).append(
            (entry_id, {_b(k): _b(v) for k, v in fields.items()})
        )
        return entry_id

    def xread(self, streams, count=None, block=None):
        self._check("xread")
        result = []
        for name, last_id in streams.items():
            if last_id == "$":
                continue
            after = _parse_id(last_id)
            entries = [e for e in self.streams.get(name, []) if _parse_id(e[0]) > after]
            if count is not None:
                entries = entries[:count]
            if entries:
                result.append([name.encode(), entries])
        return result

    def xrevrange(self, name, max="+", min="-", count=None):
        self._check("xrevrange")
        entries = list(reversed(self.streams.get(name, [])))
        if count is not None:
            entries = entries[:count]
        return entries


class FakeSampleSource(SampleSource):
    """
    In-memory source with real anchored-query semantics.

    The cursor is the index of the last delivered entry, as a string.
    """

    name = "fake"

    def __init__(self, limit_override: Optional[int] = None):
        self.entries: List[Sample] = []
        self.available = True
        self.auth_error: Optional[AuthError] = None
        self.query_cursors: List[Optional[str]] = []
        self.fail_next_queries = 0
        self.limit_override = limit_override
        self.subscriptions: List[Subscription] = []
        self.unsubscribed = 0
        self.auth_requests = 0

    def add(self, *samples: Sample) -> None:
        self.entries.extend(samples)

    def check_availability(self) -> bool:
        return self.available

    async def request_authorization(self) -> None:
        self.auth_requests += 1
        if self.auth_error is not None:
            raise self.auth_error

    def subscribe(self) -> Subscription:
        subscription = Subscription(self.name)
        subscription.notify(WakeReason.INITIAL)
        self.subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Optional[Subscription]) -> None:
        if subscription is None:
            return
        subscription.close()
        self.unsubscribed += 1

    async def query(self, cursor: Optional[str], limit: int) -> QueryResult:
        self.query_cursors.append(cursor)
        if self.fail_next_queries > 0:
            self.fail_next_queries -= 1
            raise QueryError("platform busy")

        limit = self.limit_override or limit
        start = int(cursor) + 1 if cursor is not None else 0
        batch = self.entries[start:start + limit]
        new_cursor = str(start + len(batch) - 1) if batch else cursor
        return QueryResult(
            samples=list(batch),
            cursor=new_cursor,
            has_more=start + len(batch) < len(self.entries),
        )


class StaticIdentity:
    def __init__(self, owner_id: Optional[str] = "owner-1", share_id: str = "ab12cd34"):
        self.owner_id = owner_id
        self.share_id = share_id

    def get_owner_id(self) -> Optional[str]:
        return self.owner_id

    def get_or_create_share_id(self) -> str:
        return self.share_id


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_source():
    return FakeSampleSource()


@pytest.fixture
def sqlite_client():
    with tempfile.TemporaryDirectory() as tmpdir:
        client = SQLiteClient(Path(tmpdir) / "state.db")
        client.initialize_database()
        create_schema(client)
        yield client


@pytest.fixture
def redis_error():
    return redis.ConnectionError("connection refused")
