# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Tests for reading a public share stream.
"""

from datetime import timedelta

from heartstream.models import EPOCH, CanonicalRecord, ShareIdentity
from heartstream.processing.sinks import PublicStreamReader, PublicStreamSink

from conftest import T0, make_sample, run

IDENTITY = ShareIdentity(owner_id=None, share_id="ab12cd34")


def publish(fake_redis, *samples):
    sink = PublicStreamSink(fake_redis)

    async def write():
        for sample in samples:
            await sink.accept(CanonicalRecord.from_sample(sample), IDENTITY)

    run(write())


class TestPublicStreamReader:
    """Test latest and history reads."""

    def test_latest_missing(self, fake_redis):
        assert PublicStreamReader(fake_redis).latest("nobody") is None

    def test_latest_after_publish(self, fake_redis):
        publish(fake_redis, make_sample(70, T0), make_sample(80, T0 - timedelta(seconds=5)))

        record = PublicStreamReader(fake_redis).latest("ab12cd34")

        assert record.bpm == 80

    def test_history_is_numeric_newest_first(self, fake_redis):
        # Lexicographic order would put "1000000000000" before "999999999999"
        older = make_sample(60, EPOCH + timedelta(milliseconds=999_999_999_999))
        newer = make_sample(61, EPOCH + timedelta(milliseconds=1_000_000_000_000))
        publish(fake_redis, newer, older)

        history = PublicStreamReader(fake_redis).history("ab12cd34")

        assert [r.bpm for r in history] == [61, 60]
        assert [r.key for r in history] == ["1000000000000", "999999999999"]

    def test_history_limit(self, fake_redis):
        publish(fake_redis, *[make_sample(60 + i, T0 + timedelta(seconds=i)) for i in range(5)])

        history = PublicStreamReader(fake_redis).history("ab12cd34", limit=2)

        assert [r.bpm for r in history] == [64, 63]

    def test_unreadable_record_skipped(self, fake_redis):
        publish(fake_redis, make_sample(60, T0), make_sample(61, T0 + timedelta(seconds=1)))
        key = f"public/ab12cd34/heartRate/{CanonicalRecord.from_sample(make_sample(60, T0)).key}"
        fake_redis.strings[key] = b"{broken"

        history = PublicStreamReader(fake_redis).history("ab12cd34")

        assert [r.bpm for r in history] == [61]
