# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Error taxonomy for the relay pipeline.

- AuthError: fatal to starting a session, never retried
- QueryError: transient source failure, retried on the next wake
- SinkError: write failure isolated to a single sink
- RelayStoppedError: batch refused by a stopped relay
"""

from enum import Enum
from typing import Optional


class HeartstreamError(Exception):
    """Base class for all heartstream errors."""
    pass


class AuthErrorKind(str, Enum):
    """Reasons a source can refuse to authorize observation."""

    UNAVAILABLE = "unavailable"
    DENIED = "denied"
    CAPABILITY_UNAVAILABLE = "capability_unavailable"


_AUTH_MESSAGES = {
    AuthErrorKind.UNAVAILABLE: "Sensor source is not available",
    AuthErrorKind.DENIED: "Permission to read heart rate data was denied",
    AuthErrorKind.CAPABILITY_UNAVAILABLE: "Heart rate data type is not available",
}


class AuthError(HeartstreamError):
    """Raised when the sample source refuses authorization."""

    def __init__(self, kind: AuthErrorKind, detail: Optional[str] = None):
        self.kind = kind
        self.detail = detail
        message = _AUTH_MESSAGES[kind]
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class QueryError(HeartstreamError):
    """Raised when an anchored query fails. The cursor must not advance."""
    pass


class SinkError(HeartstreamError):
    """Raised by a sink when a record could not be written."""

    def __init__(self, sink_name: str, message: str):
        self.sink_name = sink_name
        super().__init__(f"{sink_name}: {message}")


class RelayStoppedError(HeartstreamError):
    """Raised by SampleRelay.deliver() after stop(). The batch was not handed off."""
    pass
