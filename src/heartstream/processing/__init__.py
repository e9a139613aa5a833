# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Processing layer for Heartstream.
Observes the sample source from a cursor and fans records out to sinks.
"""

from .observer import CursorAnchoredObserver
from .relay import RecordFeed, SampleRelay

__all__ = [
    "CursorAnchoredObserver",
    "RecordFeed",
    "SampleRelay",
]
