"""
Client configuration module.

This module handles client-side configuration settings.
"""

import os
from typing import Optional

from talksync_common.constants import (
    DEFAULT_HOST, DEFAULT_PORT, PORT_ENV_VAR, CONNECT_TIMEOUT, FALLBACK_GRACE_DELAY,
    CONNECT_RETRY_INTERVAL, TYPING_QUIET_PERIOD, RECONNECT_ATTEMPTS,
    RECONNECT_DELAY_BASE, MAX_LINE_BYTES
)


def default_port() -> int:
    """Server port from the environment, falling back to the default."""
    value = os.environ.get(PORT_ENV_VAR, '')
    if value.strip().isdigit():
        return int(value)
    return DEFAULT_PORT


class ClientConfig:
    """Client configuration class."""

    def __init__(self, host: str = DEFAULT_HOST, port: Optional[int] = None, username: str = None,
                 connect_timeout: float = CONNECT_TIMEOUT,
                 grace_delay: float = FALLBACK_GRACE_DELAY,
                 typing_quiet_period: float = TYPING_QUIET_PERIOD,
                 reconnect: bool = True,
                 reconnect_attempts: int = RECONNECT_ATTEMPTS):
        self.host = host
        self.port = default_port() if port is None else port
        self.username = username or f"user_{id(self) % 10000}"

        # Connection settings
        self.connect_timeout = connect_timeout
        self.grace_delay = grace_delay
        self.connect_retry_interval = CONNECT_RETRY_INTERVAL
        self.max_line_bytes = MAX_LINE_BYTES

        # Reconnection after a dropped connection
        self.reconnect = reconnect
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay_base = RECONNECT_DELAY_BASE

        # Typing indicator
        self.typing_quiet_period = typing_quiet_period
