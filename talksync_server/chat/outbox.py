"""
Per-connection outbound queue.

The router never awaits a client socket: it drops encoded events into the
connection's queue and a dedicated writer task drains them. A slow client
only delays itself, and a dead one only closes its own outbox. The queue is
bounded; once it is full a stalled client misses events until it catches up
or reconnects.
"""

import asyncio
from typing import Any, Dict, Optional

from talksync_common.constants import OUTBOX_MAX_EVENTS
from talksync_common.protocol_definitions import encode_event
from talksync_server.utils.logger import logger


class ConnectionOutbox:
    """Fire-and-forget event sink for one client connection."""

    def __init__(self, conn_id: int, writer: asyncio.StreamWriter,
                 max_events: int = OUTBOX_MAX_EVENTS):
        self.conn_id = conn_id
        self.writer = writer
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_events)
        self.closed = False
        self.dropped = 0
        self._task: Optional[asyncio.Task] = None

    def start(self):
        """Start the writer task on the running loop."""
        self._task = asyncio.create_task(self._drain())

    def send(self, event: Dict[str, Any]) -> bool:
        """Queue an event for delivery; returns False when closed or full."""
        if self.closed:
            return False
        try:
            self.queue.put_nowait(encode_event(event))
        except asyncio.QueueFull:
            if self.dropped == 0:
                logger.warning(f"Outbox of conn={self.conn_id} is full, dropping events")
            self.dropped += 1
            return False
        return True

    async def _drain(self):
        while True:
            data = await self.queue.get()
            try:
                self.writer.write(data)
                await self.writer.drain()
            except (ConnectionError, OSError) as e:
                logger.warning(f"Failed to deliver to conn={self.conn_id}: {e}")
                self.closed = True
                break
            finally:
                self.queue.task_done()
            if self.dropped and self.queue.empty():
                logger.info(f"conn={self.conn_id} caught up after {self.dropped} dropped events")
                self.dropped = 0

    async def close(self):
        """Stop the writer task and close the socket."""
        self.closed = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        try:
            self.writer.close()
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error closing conn={self.conn_id}: {e}")
