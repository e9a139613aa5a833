# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Redis Stream and Key Name Constants.

Centralized definitions for every Redis name used by the relay, so the
writer and reader sides agree on the layout.
"""

# =============================================================================
# SENSOR STREAMS
# =============================================================================

# Heart-rate samples produced by the external sensor subsystem.
#
# Producers (write to this stream):
#   - Sensor bridge / `heartstream emit`: one entry per sample
#     fields: bpm, start, end (ISO-8601 with timezone), source
#
# Consumers (read from this stream):
#   - RedisStreamSampleSource: anchored XREAD from the persisted cursor
SENSOR_HEART_RATE_STREAM = "sensor:heart_rate"

# Approximate cap applied by producers on XADD
SENSOR_STREAM_MAXLEN = 100000

# =============================================================================
# PUBLISHED KEYS
# =============================================================================
#
# owner/{ownerId}/heartRate/{endEpochMillis}   private per-owner log
# public/{shareId}/latest                      most recently dispatched record
# public/{shareId}/heartRate/{endEpochMillis}  public history
#
# Each history also has a sorted-set index (score = epoch millis) so readers
# can enumerate in numeric order. Decimal keys stop sorting lexicographically
# once the digit count changes.

HISTORY_INDEX_SUFFIX = "_index"


def owner_history_key(owner_id: str, timestamp_key: str) -> str:
    return f"owner/{owner_id}/heartRate/{timestamp_key}"


def owner_history_index(owner_id: str) -> str:
    return f"owner/{owner_id}/heartRate/{HISTORY_INDEX_SUFFIX}"


def public_latest_key(share_id: str) -> str:
    return f"public/{share_id}/latest"


def public_history_key(share_id: str, timestamp_key: str) -> str:
    return f"public/{share_id}/heartRate/{timestamp_key}"


def public_history_index(share_id: str) -> str:
    return f"public/{share_id}/heartRate/{HISTORY_INDEX_SUFFIX}"
