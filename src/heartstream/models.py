# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Data model for heart-rate samples and their canonical wire form.

A Sample is what the source adapter produces. A CanonicalRecord is what sinks
store: bpm rounded to an integer and timestamps normalized to UTC with
millisecond precision, so the payload round-trips exactly.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def _require_aware(name: str, value: datetime) -> None:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware, got {value!r}")


def to_utc_millis(value: datetime) -> datetime:
    """Normalize an aware datetime to UTC, truncated to whole milliseconds."""
    _require_aware("timestamp", value)
    value = value.astimezone(timezone.utc)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def format_timestamp(value: datetime) -> str:
    """Format as ISO-8601 UTC with millisecond precision, e.g. 2025-01-01T12:00:00.000Z."""
    return to_utc_millis(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(text: str) -> datetime:
    """
    Parse an ISO-8601 timestamp with an explicit offset.

    Raises:
        ValueError: If the string is not ISO-8601 or carries no timezone
    """
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    value = datetime.fromisoformat(text)
    _require_aware("timestamp", value)
    return value


def epoch_millis(value: datetime) -> int:
    """Integer milliseconds since the Unix epoch (floor)."""
    _require_aware("timestamp", value)
    return (value - EPOCH) // _ONE_MS


def timestamp_key(value: datetime) -> str:
    """
    Storage key for a record: ms epoch as a decimal string.

    Keys are not zero-padded, so they only sort lexicographically while the
    digit count stays constant. Use the numeric history index for ordering.
    """
    return str(epoch_millis(value))


def round_bpm(value: float) -> int:
    """Round half away from zero (72.5 -> 73)."""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class Sample:
    """A single heart-rate reading as produced by the sample source."""

    value: float
    start_time: datetime
    end_time: datetime
    source_name: str

    def __post_init__(self):
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            raise ValueError(f"value must be a number, got {self.value!r}")
        if not math.isfinite(self.value) or self.value < 0:
            raise ValueError(f"value must be a finite number >= 0, got {self.value!r}")
        _require_aware("start_time", self.start_time)
        _require_aware("end_time", self.end_time)
        if self.end_time < self.start_time:
            raise ValueError("end_time must not precede start_time")


@dataclass(frozen=True)
class CanonicalRecord:
    """Wire/storage form of a Sample."""

    bpm: int
    start: datetime
    end: datetime
    source: str

    @classmethod
    def from_sample(cls, sample: Sample) -> "CanonicalRecord":
        return cls(
            bpm=round_bpm(sample.value),
            start=to_utc_millis(sample.start_time),
            end=to_utc_millis(sample.end_time),
            source=sample.source_name,
        )

    @property
    def key(self) -> str:
        return timestamp_key(self.end)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "bpm": self.bpm,
            "start": format_timestamp(self.start),
            "end": format_timestamp(self.end),
            "source": self.source,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "CanonicalRecord":
        """
        Rebuild a record from its stored payload.

        Raises:
            ValueError: If a field is missing or malformed
        """
        try:
            return cls(
                bpm=int(payload["bpm"]),
                start=parse_timestamp(payload["start"]),
                end=parse_timestamp(payload["end"]),
                source=str(payload["source"]),
            )
        except KeyError as e:
            raise ValueError(f"Missing field in payload: {e}") from e


@dataclass(frozen=True)
class ShareIdentity:
    """Identifiers used to key writes. owner_id is None until identity is established."""

    owner_id: Optional[str]
    share_id: str
