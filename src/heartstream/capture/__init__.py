# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Capture layer: adapters that observe the sensor platform.
"""

from .sample_source import QueryResult, SampleSource, Subscription, WakeReason
from .redis_source import RedisStreamSampleSource, publish_sample

__all__ = [
    "QueryResult",
    "SampleSource",
    "Subscription",
    "WakeReason",
    "RedisStreamSampleSource",
    "publish_sample",
]
