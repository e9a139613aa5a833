# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Observation session lifecycle.

IDLE -> AUTHORIZING -> SUBSCRIBED -> STOPPED, or FAILED when authorization
is refused. Query and sink errors are advisories: the session stays
SUBSCRIBED and listeners receive the error alongside the current state.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from .capture.sample_source import SampleSource, Subscription
from .errors import AuthError, AuthErrorKind
from .processing.observer import CursorAnchoredObserver
from .processing.relay import SampleRelay

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    AUTHORIZING = "authorizing"
    SUBSCRIBED = "subscribed"
    STOPPED = "stopped"
    FAILED = "failed"


DISPLAY_STATUS = {
    SessionState.IDLE: "Not Connected",
    SessionState.AUTHORIZING: "Connecting...",
    SessionState.SUBSCRIBED: "Monitoring",
    SessionState.STOPPED: "Stopped",
    SessionState.FAILED: "Failed",
}

StateListener = Callable[[SessionState, Optional[Exception]], None]


@dataclass
class StartResult:
    success: bool
    error: Optional[AuthError] = None


class ObservationSession:
    """
    Wires source, observer and relay together for one observation session.

    start() while already started is a logged no-op.
    """

    def __init__(
        self,
        source: SampleSource,
        observer: CursorAnchoredObserver,
        relay: SampleRelay,
    ):
        self.source = source
        self.observer = observer
        self.relay = relay

        self.state = SessionState.IDLE
        self.last_error: Optional[Exception] = None
        self._listeners: List[StateListener] = []
        self._subscription: Optional[Subscription] = None
        self._tasks: List[asyncio.Task] = []

        self.observer.on_error = self._advise
        self.relay.on_sink_error = lambda sink_name, record, error: self._advise(error)

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    @property
    def status(self) -> str:
        return DISPLAY_STATUS[self.state]

    def _set_state(self, state: SessionState, error: Optional[Exception] = None) -> None:
        self.state = state
        self._notify(error)

    def _notify(self, error: Optional[Exception]) -> None:
        for listener in self._listeners:
            try:
                listener(self.state, error)
            except Exception as e:
                logger.error(f"Session listener failed: {e}")

    def _advise(self, error: Exception) -> None:
        """Surface a transient error without leaving SUBSCRIBED."""
        self.last_error = error
        self._notify(error)

    async def start(self) -> StartResult:
        """
        Authorize, then subscribe and start delivering batches.

        Returns:
            StartResult with the AuthError when authorization was refused
        """
        if self.state in (SessionState.AUTHORIZING, SessionState.SUBSCRIBED):
            logger.warning("Session already started")
            return StartResult(success=True)

        self.last_error = None
        self._set_state(SessionState.AUTHORIZING)

        try:
            available = await asyncio.to_thread(self.source.check_availability)
            if not available:
                raise AuthError(AuthErrorKind.UNAVAILABLE)
            await self.source.request_authorization()
        except AuthError as e:
            logger.error(f"Authorization failed: {e}")
            self.last_error = e
            self._set_state(SessionState.FAILED, e)
            return StartResult(success=False, error=e)

        if self.state != SessionState.AUTHORIZING:
            # stop() landed while waiting for authorization
            return StartResult(success=False)

        await self.relay.start()
        self.observer.start()
        self._subscription = self.source.subscribe()
        self._tasks = [
            asyncio.create_task(self._run_observer(self._subscription)),
            asyncio.create_task(self._pump_source_errors(self._subscription)),
        ]

        self._set_state(SessionState.SUBSCRIBED)
        logger.info("Observation session started")
        return StartResult(success=True)

    async def _run_observer(self, subscription: Subscription) -> None:
        try:
            await self.observer.run(subscription)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Observer failed: {e}", exc_info=True)
            self._advise(e)

    async def _pump_source_errors(self, subscription: Subscription) -> None:
        while True:
            error = await subscription.errors.get()
            self._advise(error)

    async def stop(self) -> None:
        """Tear down the subscription. Safe to call repeatedly."""
        if self.state not in (SessionState.AUTHORIZING, SessionState.SUBSCRIBED):
            return

        logger.info("Stopping observation session...")
        self.observer.stop()
        self.source.unsubscribe(self._subscription)
        self._subscription = None

        for task in self._tasks:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._tasks.clear()

        await self.relay.stop()
        self._set_state(SessionState.STOPPED)
        logger.info("Observation session stopped")
