# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Record sinks.

The set of sinks is configuration: {private_log, public_stream} publishes,
an empty set keeps the relay local-display-only.
"""

import logging
from typing import Iterable, List

import redis

from .base import RedisSink, Sink
from .private_log import PrivateLogSink
from .public_stream import PublicStreamReader, PublicStreamSink

logger = logging.getLogger(__name__)

SINK_TYPES = {
    PrivateLogSink.name: PrivateLogSink,
    PublicStreamSink.name: PublicStreamSink,
}


def build_sinks(names: Iterable[str], redis_client: redis.Redis) -> List[Sink]:
    """
    Instantiate sinks by configured name. A repeated name yields one sink.

    Raises:
        ValueError: If a name is not a known sink
    """
    sinks = []
    seen = set()
    for name in names:
        if name in seen:
            logger.warning(f"Sink {name} listed more than once, using a single instance")
            continue
        if name not in SINK_TYPES:
            raise ValueError(
                f"Unknown sink: {name}. "
                f"Valid sinks: {', '.join(SINK_TYPES.keys())}"
            )
        sinks.append(SINK_TYPES[name](redis_client))
        seen.add(name)
    return sinks


__all__ = [
    "Sink",
    "RedisSink",
    "PrivateLogSink",
    "PublicStreamSink",
    "PublicStreamReader",
    "SINK_TYPES",
    "build_sinks",
]
