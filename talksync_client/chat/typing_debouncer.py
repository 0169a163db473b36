"""
Typing debouncer.

Turns a stream of keystrokes into one `typing` signal and, after a quiet
period with no keystrokes, one `stop_typing` signal.
"""

import asyncio
from typing import Callable, Optional

from talksync_common.constants import EventTypes, TYPING_QUIET_PERIOD


class TypingDebouncer:
    """Coalesces keystrokes into start/stop typing signals."""

    def __init__(self, emit: Callable[[str], None], quiet_period: float = TYPING_QUIET_PERIOD):
        self.emit = emit  # called with EventTypes.TYPING or EventTypes.STOP_TYPING
        self.quiet_period = quiet_period
        self.is_typing = False
        self._stop_handle: Optional[asyncio.TimerHandle] = None
        self._cancelled = False

    def keystroke(self):
        """Record input activity; must be called from the event loop thread."""
        if self._cancelled:
            return

        if not self.is_typing:
            self.is_typing = True
            self.emit(EventTypes.TYPING)

        # Only one pending stop timer, restarted on every keystroke
        if self._stop_handle is not None:
            self._stop_handle.cancel()
        loop = asyncio.get_running_loop()
        self._stop_handle = loop.call_later(self.quiet_period, self._quiet_period_elapsed)

    def _quiet_period_elapsed(self):
        self._stop_handle = None
        if self._cancelled:
            return
        self.is_typing = False
        self.emit(EventTypes.STOP_TYPING)

    @property
    def pending(self) -> bool:
        return self._stop_handle is not None

    def cancel(self):
        """Drop the pending stop timer for good; nothing is emitted afterwards."""
        self._cancelled = True
        self.is_typing = False
        if self._stop_handle is not None:
            self._stop_handle.cancel()
            self._stop_handle = None
