"""Channel configuration.

Every field is optional; defaults match the backend's expectations.
Environment variables (prefix ``AGENT_MAIL_``) override defaults when
loaded through ``ChannelConfig.from_env()``.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from .constants import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_FROM_ADDRESS,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_HEARTBEAT_TIMEOUT,
    DEFAULT_RECONNECT_INTERVAL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_WEBSOCKET_URL,
    MAX_RECONNECT_ATTEMPTS,
    UI_OPERATION_TIMEOUT,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "AGENT_MAIL_"


@dataclass
class ChannelConfig:
    """Configuration for the connection transport and mail layer."""

    url: str = DEFAULT_WEBSOCKET_URL
    headers: dict[str, str] = field(default_factory=dict)
    subprotocols: list[str] | None = None

    # Timeouts
    timeout: float = DEFAULT_REQUEST_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    operation_timeout: float = UI_OPERATION_TIMEOUT

    # Liveness
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    heartbeat_timeout: float = DEFAULT_HEARTBEAT_TIMEOUT

    # Reconnection
    reconnect: bool = True
    reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL
    max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS

    # Mail
    default_from: str = DEFAULT_FROM_ADDRESS

    debug: bool = False

    def with_overrides(self, **changes: Any) -> ChannelConfig:
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)

    def validate(self) -> list[str]:
        """Check the configuration and return a list of problems."""
        errors: list[str] = []

        parsed = urlparse(self.url)
        if parsed.scheme not in ("ws", "wss") or not parsed.netloc:
            errors.append(f"Invalid url: {self.url!r} is not a ws:// or wss:// URL")

        if not 1.0 <= self.timeout <= 600.0:
            errors.append("Invalid timeout: must be between 1 and 600 seconds")

        if self.connect_timeout <= 0:
            errors.append("Invalid connect_timeout: must be positive")

        if self.heartbeat_interval <= 0:
            errors.append("Invalid heartbeat_interval: must be positive")

        if self.reconnect_interval < 0:
            errors.append("Invalid reconnect_interval: must be >= 0")

        if self.max_reconnect_attempts < 0:
            errors.append("Invalid max_reconnect_attempts: must be >= 0")

        return errors

    @classmethod
    def from_env(
        cls,
        environ: dict[str, str] | None = None,
        **overrides: Any,
    ) -> ChannelConfig:
        """Build a config from ``AGENT_MAIL_*`` environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)
            **overrides: Explicit values that win over the environment
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        if url := env.get(f"{ENV_PREFIX}WS_URL"):
            values["url"] = url

        for name in (
            "timeout",
            "connect_timeout",
            "operation_timeout",
            "heartbeat_interval",
            "reconnect_interval",
        ):
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw:
                try:
                    values[name] = float(raw)
                except ValueError:
                    logger.warning(f"Ignoring non-numeric {ENV_PREFIX}{name.upper()}={raw!r}")

        raw_attempts = env.get(f"{ENV_PREFIX}MAX_RECONNECT_ATTEMPTS")
        if raw_attempts:
            try:
                values["max_reconnect_attempts"] = int(raw_attempts)
            except ValueError:
                logger.warning(f"Ignoring non-integer {ENV_PREFIX}MAX_RECONNECT_ATTEMPTS={raw_attempts!r}")

        raw_debug = env.get(f"{ENV_PREFIX}DEBUG")
        if raw_debug:
            values["debug"] = raw_debug.lower() in ("1", "true", "yes")

        values.update(overrides)
        return cls(**values)
