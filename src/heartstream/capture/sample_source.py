# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Sample source contract.

A source exposes an authorization check, a bounded anchored query, and a
subscription object that streams wake events. Wakes carry no data: on each
wake the observer re-queries from its own cursor, so coalescing or dropping
duplicate wakes never loses samples.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..models import Sample

logger = logging.getLogger(__name__)


class WakeReason(str, Enum):
    """Why the observer is being asked to query."""

    INITIAL = "initial"
    NOTIFICATION = "notification"
    PERIODIC = "periodic"
    UPDATE = "update"


@dataclass
class QueryResult:
    """Result of one anchored query."""

    samples: List[Sample]
    cursor: Optional[str]
    has_more: bool = False


class Subscription:
    """
    Live subscription handle returned by SampleSource.subscribe().

    Wakes are coalesced into a single pending slot. Errors raised by the
    source's background wake machinery go to the separate ``errors`` queue.
    """

    def __init__(self, source_name: str):
        self.source_name = source_name
        self.errors: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self._wakes: asyncio.Queue = asyncio.Queue(maxsize=1)
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    def notify(self, reason: WakeReason = WakeReason.NOTIFICATION) -> None:
        """Request a wake. Must be called on the event loop thread."""
        if self.closed:
            return
        try:
            self._wakes.put_nowait(reason)
        except asyncio.QueueFull:
            # A wake is already pending, it will query from the same cursor
            logger.debug(f"Coalesced {reason.value} wake for {self.source_name}")

    def notify_threadsafe(self, reason: WakeReason = WakeReason.NOTIFICATION) -> None:
        """Request a wake from any thread."""
        if self._loop is None:
            raise RuntimeError("Subscription was not created inside a running event loop")
        self._loop.call_soon_threadsafe(self.notify, reason)

    def report_error(self, error: Exception) -> None:
        if not self.closed:
            self.errors.put_nowait(error)

    def close(self) -> None:
        """Stop delivering wakes. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        while not self._wakes.empty():
            self._wakes.get_nowait()
        # Unblock a consumer waiting in __anext__
        self._wakes.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> WakeReason:
        if self.closed and self._wakes.empty():
            raise StopAsyncIteration
        reason = await self._wakes.get()
        if reason is None or self.closed:
            raise StopAsyncIteration
        return reason


class SampleSource(ABC):
    """Port implemented by platform adapters."""

    name: str = "source"

    @abstractmethod
    def check_availability(self) -> bool:
        """Whether the platform exposes the sensor capability at all."""
        raise NotImplementedError

    @abstractmethod
    async def request_authorization(self) -> None:
        """
        Wait for the platform to grant read access.

        Raises:
            AuthError: If access is unavailable or denied
        """
        raise NotImplementedError

    @abstractmethod
    def subscribe(self) -> Subscription:
        """Begin continuous observation. The first wake is queued immediately."""
        raise NotImplementedError

    @abstractmethod
    async def query(self, cursor: Optional[str], limit: int) -> QueryResult:
        """
        Fetch samples strictly after ``cursor`` (all history when None).

        Raises:
            QueryError: On transient failure. No partial batch is returned.
        """
        raise NotImplementedError

    @abstractmethod
    def unsubscribe(self, subscription: Optional[Subscription]) -> None:
        """Release wake-up registration. No-op for None or closed subscriptions."""
        raise NotImplementedError
