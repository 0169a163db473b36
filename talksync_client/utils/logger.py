"""
Client logging module.

This module handles client-side logging functionality.
"""

import logging
import sys
from typing import List


class ClientLogger:
    """Client logging class."""

    def __init__(self, log_level: int = logging.INFO):
        self.logger = logging.getLogger('talksync_client')
        self.logger.setLevel(log_level)

        # Remove existing handlers
        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)

        # Create console handler
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)

        # Create formatter
        formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_handler.setFormatter(formatter)

        # Add handler to logger
        self.logger.addHandler(console_handler)

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

    def log_connection(self, host: str, port: int, success: bool):
        """Log connection attempt."""
        status = "Connected" if success else "Failed to connect"
        self.info(f"{status} to {host}:{port}")

    def log_state(self, old: str, new: str):
        """Log a connection state change."""
        if old != new:
            self.info(f"Connection state: {old} -> {new}")

    def log_chat_sent(self, text: str, local: bool = False):
        """Log chat message sent."""
        where = "locally" if local else "to server"
        self.debug(f"Chat sent {where}: {text}")

    def show_join_info(self, username: str):
        """Show join information."""
        self.info(f"[INFO] Joining as '{username}'...")

    def show_online(self, names: List[str]):
        """Show online user list."""
        self.info(f"[INFO] Online ({len(names)}): {', '.join(names)}")

    def show_interactive_mode_info(self):
        """Show interactive mode information."""
        self.info("[INFO] Type messages to chat (Ctrl+C to exit)")
        self.info("[INFO] Commands: /image PATH /who /quit")

    def log_error(self, operation: str, error: Exception):
        """Log error with operation context."""
        self.error(f"Error in {operation}: {error}")


# Global logger instance
logger = ClientLogger()
