"""
Server logging module.

This module handles server-side logging functionality.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from talksync_common.constants import CHAT_LOG_FILE


class ServerLogger:
    """Server logging class."""

    def __init__(self, log_level: int = logging.INFO):
        self.chat_log_path: Optional[Path] = None

        # Set up main logger
        self.logger = logging.getLogger('talksync_server')
        self.logger.setLevel(log_level)

        # Remove existing handlers
        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)

        # Create console handler
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)

        # Create formatter
        formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_handler.setFormatter(formatter)

        # Add handler to logger
        self.logger.addHandler(console_handler)

    def enable_transcript(self, logs_dir: str):
        """Append every chat message to a transcript file under logs_dir."""
        path = Path(logs_dir)
        path.mkdir(parents=True, exist_ok=True)
        self.chat_log_path = path / CHAT_LOG_FILE
        self.info(f"Writing chat transcript to {self.chat_log_path}")

    def info(self, message: str):
        """Log info message."""
        self.logger.info(message)

    def error(self, message: str):
        """Log error message."""
        self.logger.error(message)

    def warning(self, message: str):
        """Log warning message."""
        self.logger.warning(message)

    def debug(self, message: str):
        """Log debug message."""
        self.logger.debug(message)

    def log_connection(self, addr, conn_id: int):
        """Log client connection."""
        self.info(f"New connection from {addr}, assigned conn={conn_id}")

    def log_join(self, name: str, conn_id: int, previous: Optional[str] = None):
        """Log user join or rename."""
        if previous is not None and previous != name:
            self.info(f"Connection conn={conn_id} renamed '{previous}' -> '{name}'")
        else:
            self.info(f"{name} joined the chat (conn={conn_id})")

    def log_leave(self, name: str, conn_id: int):
        """Log user leaving."""
        self.info(f"{name} left the chat (conn={conn_id})")

    def log_message(self, name: str, conn_id: int, text: Optional[str], has_image: bool):
        """Log chat message."""
        summary = text or ''
        if has_image:
            summary = f"{summary} [image]".strip()
        self.info(f"New message from {name} (conn={conn_id}): {summary}")
        if self.chat_log_path is not None:
            self._write_to_file(self.chat_log_path, f"{datetime.now().isoformat()} | {name} | {summary}")

    def log_ignored(self, event_type: str, conn_id: int, reason: str):
        """Log an inbound event that was dropped."""
        self.warning(f"Ignoring '{event_type}' from conn={conn_id}: {reason}")

    def log_error(self, operation: str, error: Exception):
        """Log error with operation context."""
        self.error(f"Error in {operation}: {error}")

    def _write_to_file(self, file_path: Path, content: str):
        """Write content to log file."""
        try:
            with open(file_path, 'a', encoding='utf-8') as f:
                f.write(content + '\n')
        except OSError as e:
            self.error(f"Failed to write to log file {file_path}: {e}")


# Global logger instance
logger = ServerLogger()
