"""
Server configuration module.

This module handles server-side configuration settings.
"""

import os
from typing import Optional

from talksync_common.constants import (
    DEFAULT_SERVER_HOST, DEFAULT_PORT, PORT_ENV_VAR, MAX_LINE_BYTES
)


def default_port() -> int:
    """Listen port from the environment, falling back to the default."""
    value = os.environ.get(PORT_ENV_VAR, '')
    if value.strip().isdigit():
        return int(value)
    return DEFAULT_PORT


class ServerConfig:
    """Server configuration class."""

    def __init__(self, host: str = DEFAULT_SERVER_HOST, port: Optional[int] = None,
                 log_dir: Optional[str] = None):
        self.host = host
        self.port = default_port() if port is None else port

        # Logging configuration, transcript file disabled unless set
        self.log_dir = log_dir

        # Connection settings
        self.max_line_bytes = MAX_LINE_BYTES
