# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Configuration management for the relay.

Precedence: defaults < ~/.heartstream/config.yaml < HEARTSTREAM_* environment.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .processing.sinks import SINK_TYPES
from .redis_keys import SENSOR_HEART_RATE_STREAM

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".heartstream"
DEFAULT_SINKS = ["private_log", "public_stream"]


@dataclass
class Config:
    """Relay configuration container."""

    # Redis settings
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0

    # Source settings
    stream_name: str = SENSOR_HEART_RATE_STREAM
    batch_limit: int = 500
    block_ms: int = 1000
    wake_interval: float = 30.0

    # Storage settings
    db_path: Path = DEFAULT_HOME / "state.db"
    persist_cursor: bool = True

    # Sink settings (empty list = local display only)
    sinks: List[str] = field(default_factory=lambda: list(DEFAULT_SINKS))

    # Identity settings
    owner_id: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    # Config file path
    config_path: Optional[Path] = None

    def __post_init__(self):
        """Initialize configuration after creation."""
        if self.config_path is None:
            self.config_path = DEFAULT_HOME / "config.yaml"
        self.config_path = Path(self.config_path)

        if self.config_path.exists():
            self.load_from_file()

        self.load_from_env()
        self.db_path = Path(self.db_path).expanduser()

    def load_from_file(self) -> None:
        """Load configuration from YAML file."""
        try:
            with open(self.config_path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not load config file {self.config_path}: {e}")
            return

        if not isinstance(data, dict):
            logger.warning(f"Ignoring config file {self.config_path}: not a mapping")
            return

        redis_section = self._section(data, "redis")
        self.redis_host = redis_section.get("host", self.redis_host)
        self.redis_port = int(redis_section.get("port", self.redis_port))
        self.redis_db = int(redis_section.get("db", self.redis_db))
        self.redis_password = redis_section.get("password", self.redis_password)
        self.socket_timeout = float(redis_section.get("socket_timeout", self.socket_timeout))
        self.socket_connect_timeout = float(
            redis_section.get("socket_connect_timeout", self.socket_connect_timeout)
        )

        source = self._section(data, "source")
        self.stream_name = source.get("stream", self.stream_name)
        self.batch_limit = int(source.get("batch_limit", self.batch_limit))
        self.block_ms = int(source.get("block_ms", self.block_ms))
        self.wake_interval = float(source.get("wake_interval", self.wake_interval))

        storage = self._section(data, "storage")
        self.db_path = Path(storage.get("db_path", self.db_path))
        self.persist_cursor = bool(storage.get("persist_cursor", self.persist_cursor))

        sinks = self._section(data, "sinks")
        enabled = sinks.get("enabled", self.sinks)
        self.sinks = list(enabled) if enabled else []

        identity = self._section(data, "identity")
        self.owner_id = identity.get("owner_id", self.owner_id)

        logging_section = self._section(data, "logging")
        self.log_level = logging_section.get("level", self.log_level)

    def _section(self, data: Dict[str, Any], name: str) -> Dict[str, Any]:
        section = data.get(name, {})
        if not isinstance(section, dict):
            logger.warning(f"Ignoring config section '{name}': not a mapping")
            return {}
        return section

    def load_from_env(self) -> None:
        """Load configuration from environment variables."""
        if env_host := os.environ.get("HEARTSTREAM_REDIS_HOST"):
            self.redis_host = env_host

        if env_port := os.environ.get("HEARTSTREAM_REDIS_PORT"):
            self.redis_port = int(env_port)

        if env_password := os.environ.get("HEARTSTREAM_REDIS_PASSWORD"):
            self.redis_password = env_password

        if env_db := os.environ.get("HEARTSTREAM_DB_PATH"):
            self.db_path = Path(env_db)

        if env_owner := os.environ.get("HEARTSTREAM_OWNER_ID"):
            self.owner_id = env_owner

        if env_level := os.environ.get("HEARTSTREAM_LOG_LEVEL"):
            self.log_level = env_level

    def save_to_file(self) -> None:
        """Save current configuration to YAML file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "redis": {
                "host": self.redis_host,
                "port": self.redis_port,
                "db": self.redis_db,
                "socket_timeout": self.socket_timeout,
                "socket_connect_timeout": self.socket_connect_timeout,
            },
            "source": {
                "stream": self.stream_name,
                "batch_limit": self.batch_limit,
                "block_ms": self.block_ms,
                "wake_interval": self.wake_interval,
            },
            "storage": {
                "db_path": str(self.db_path),
                "persist_cursor": self.persist_cursor,
            },
            "sinks": {
                "enabled": list(self.sinks),
            },
            "identity": {
                "owner_id": self.owner_id,
            },
            "logging": {
                "level": self.log_level,
            },
        }

        with open(self.config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by attribute name."""
        value = getattr(self, key, None)
        return default if value is None else value

    def validate(self) -> List[str]:
        """
        Validate configuration values.

        Returns:
            List of error messages (empty when valid)
        """
        errors = []

        if not 0 < self.redis_port < 65536:
            errors.append("redis port must be between 1 and 65535")

        if self.batch_limit <= 0:
            errors.append("batch_limit must be positive")

        if self.block_ms < 0:
            errors.append("block_ms must be non-negative")

        if self.wake_interval <= 0:
            errors.append("wake_interval must be positive")

        for name in self.sinks:
            if name not in SINK_TYPES:
                errors.append(f"unknown sink '{name}' (valid: {', '.join(SINK_TYPES)})")

        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"invalid log level '{self.log_level}'")

        return errors
