# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Main server for the Heartstream relay.

Wires Redis, local state, sinks, relay, observer and session together and
handles graceful shutdown.
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

import redis

from .capture.redis_source import RedisStreamSampleSource
from .config import Config
from .identity import LocalIdentityProvider, ShareIdStore
from .processing.observer import CursorAnchoredObserver
from .processing.relay import SampleRelay
from .processing.sinks import build_sinks
from .session import ObservationSession, SessionState, StartResult
from .storage.cursor_store import CursorStore, MemoryCursorStore, SQLiteCursorStore
from .storage.schema import create_schema
from .storage.sqlite_client import SQLiteClient

logger = logging.getLogger(__name__)


def create_redis_client(config: Config) -> redis.Redis:
    return redis.Redis(
        host=config.redis_host,
        port=config.redis_port,
        db=config.redis_db,
        password=config.redis_password,
        socket_timeout=config.socket_timeout,
        socket_connect_timeout=config.socket_connect_timeout,
        decode_responses=False,  # We handle encoding/decoding
    )


def cursor_source_key(config: Config) -> str:
    return f"{RedisStreamSampleSource.name}:{config.stream_name}"


def create_state_store(config: Config) -> SQLiteClient:
    client = SQLiteClient(config.db_path)
    client.initialize_database()
    create_schema(client)
    return client


class RelayServer:
    """
    Main server for heart-rate relaying.

    Manages:
    - Redis connection
    - Local SQLite state (cursor, share id)
    - Observation session (source, observer, relay, sinks)
    - Graceful shutdown
    """

    def __init__(self, config: Optional[Config] = None):
        """
        Initialize relay server.

        Args:
            config: Configuration instance (creates default if not provided)
        """
        self.config = config or Config()

        self.redis_client: Optional[redis.Redis] = None
        self.sqlite_client: Optional[SQLiteClient] = None
        self.identity: Optional[LocalIdentityProvider] = None
        self.source: Optional[RedisStreamSampleSource] = None
        self.relay: Optional[SampleRelay] = None
        self.observer: Optional[CursorAnchoredObserver] = None
        self.session: Optional[ObservationSession] = None
        self._stopped = asyncio.Event()

    def _initialize_storage(self) -> None:
        logger.info(f"Initializing local state: {self.config.db_path}")
        self.sqlite_client = create_state_store(self.config)
        self.identity = LocalIdentityProvider(
            ShareIdStore(self.sqlite_client),
            owner_id=self.config.owner_id,
        )
        if not self.config.owner_id:
            logger.warning("No owner id configured, private log writes will be skipped")

    def _initialize_redis(self) -> None:
        logger.info(f"Connecting to Redis at {self.config.redis_host}:{self.config.redis_port}")
        self.redis_client = create_redis_client(self.config)

    def _create_cursor_store(self, source_key: str) -> CursorStore:
        if self.config.persist_cursor:
            return SQLiteCursorStore(self.sqlite_client, source_key)
        logger.info("Cursor persistence disabled, history is re-delivered on restart")
        return MemoryCursorStore()

    def _initialize_session(self) -> None:
        self.source = RedisStreamSampleSource(
            self.redis_client,
            stream_name=self.config.stream_name,
            block_ms=self.config.block_ms,
            wake_interval=self.config.wake_interval,
        )

        sinks = build_sinks(self.config.sinks, self.redis_client)
        self.relay = SampleRelay(sinks, self.identity)

        self.observer = CursorAnchoredObserver(
            self.source,
            self.relay,
            self._create_cursor_store(cursor_source_key(self.config)),
            batch_limit=self.config.batch_limit,
        )
        self.session = ObservationSession(self.source, self.observer, self.relay)

    def setup(self) -> None:
        """Build every component without starting anything."""
        if self.session is not None:
            return
        self._initialize_storage()
        self._initialize_redis()
        self._initialize_session()

    async def start(self) -> StartResult:
        """Authorize and begin relaying."""
        self.setup()

        logger.info("Starting Heartstream relay...")
        result = await self.session.start()
        if result.success:
            logger.info(f"Publishing to share id {self.identity.get_or_create_share_id()}")
        return result

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if self.session is not None:
            await self.session.stop()

        if self.redis_client is not None:
            self.redis_client.close()
            self.redis_client = None

        self._stopped.set()
        logger.info("Server stopped")

    async def run(self) -> int:
        """Start, then block until stop() is called."""
        result = await self.start()
        if not result.success:
            await self.stop()
            return 1

        await self._stopped.wait()
        return 0

    @property
    def running(self) -> bool:
        return self.session is not None and self.session.state == SessionState.SUBSCRIBED


def setup_logging(level: str = "INFO") -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


async def main() -> int:
    """Main entry point."""
    config = Config()
    setup_logging(config.log_level)

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        return 2

    server = RelayServer(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(server.stop()))

    try:
        return await server.run()
    except Exception as e:
        logger.error(f"Server error: {e}")
        return 1
    finally:
        await server.stop()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
