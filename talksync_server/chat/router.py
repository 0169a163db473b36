"""
Broadcast router.

The router is the only owner of the room state. Connection handlers never
touch the registry directly: they submit events into the router's inbox and
a single consumer task applies them one at a time, then fans the results out
to connection outboxes.
"""

import asyncio
from typing import Any, Callable, Dict, Iterable, Optional

from talksync_common.constants import EventTypes
from talksync_common.protocol_definitions import (
    Message, MessageIdFactory, utc_timestamp,
    normalize_name, normalize_text, is_image_payload,
    create_history_events, create_new_message_event,
    create_user_joined_event, create_user_left_event,
    create_user_typing_event, create_user_stop_typing_event
)
from talksync_server.chat.room_state import RoomState
from talksync_server.utils.logger import logger


class BroadcastRouter:
    """Serializes session events and broadcasts the resulting state."""

    def __init__(self, room: Optional[RoomState] = None,
                 id_factory: Optional[MessageIdFactory] = None):
        self.room = room or RoomState()
        self.id_factory = id_factory or MessageIdFactory()
        self.outboxes: Dict[int, Any] = {}  # conn_id -> object with send(event) -> bool
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

        self._handlers: Dict[str, Callable[[int, dict], None]] = {
            EventTypes.JOIN: self.handle_join,
            EventTypes.MESSAGE: self.handle_message,
            EventTypes.TYPING: self.handle_typing,
            EventTypes.STOP_TYPING: self.handle_stop_typing,
            EventTypes.DISCONNECT: self.handle_disconnect,
        }

    # ------------------------------------------------------------------
    # Actor plumbing
    # ------------------------------------------------------------------

    def attach(self, conn_id: int, outbox):
        """Register the outbound channel of a new connection."""
        self.outboxes[conn_id] = outbox

    def submit(self, conn_id: int, event: Dict[str, Any]):
        """Queue an inbound event; events of one connection keep their order."""
        self._inbox.put_nowait((conn_id, event))

    def start(self):
        """Start the consumer task on the running loop."""
        if self._task is None:
            self._task = asyncio.create_task(self.run())

    async def run(self):
        while True:
            conn_id, event = await self._inbox.get()
            try:
                self.dispatch(conn_id, event)
            except Exception as e:
                logger.log_error(f"dispatch of '{event.get('type')}' from conn={conn_id}", e)
            finally:
                self._inbox.task_done()

    async def wait_idle(self):
        """Wait until every submitted event has been dispatched."""
        await self._inbox.join()

    async def close(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, conn_id: int, event: Dict[str, Any]):
        """Apply one event to the room state and emit its broadcasts."""
        event_type = event.get('type', '')
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.log_ignored(str(event_type), conn_id, "unknown event type")
            return
        handler(conn_id, event)

    def handle_join(self, conn_id: int, event: dict):
        name = normalize_name(event.get('name'))
        if name is None:
            logger.log_ignored(EventTypes.JOIN, conn_id, "missing or invalid name")
            return

        previous = self.room.name_of(conn_id)
        was_typing = previous is not None and previous in self.room.typing_names()

        history, online_names = self.room.join(conn_id, name)
        logger.log_join(name, conn_id, previous)

        for page in create_history_events(history):
            self.unicast(conn_id, page)
        self.broadcast(create_user_joined_event(name, online_names))

        if was_typing and previous != name:
            self.broadcast(
                create_user_stop_typing_event(previous, self.room.typing_names()),
                exclude=conn_id
            )

    def handle_message(self, conn_id: int, event: dict):
        if not self.room.is_joined(conn_id):
            logger.log_ignored(EventTypes.MESSAGE, conn_id, "connection has not joined")
            return
        name = self.room.name_of(conn_id)

        text = normalize_text(event.get('text'))
        image = event.get('image') if is_image_payload(event.get('image')) else None
        if text is None and image is None:
            logger.log_ignored(EventTypes.MESSAGE, conn_id, "no text or image")
            return

        message = Message(
            id=self.id_factory.next_id(),
            name=name,
            timestamp=utc_timestamp(),
            text=text,
            image=image,
        )
        stored = self.room.append_message(message)
        logger.log_message(name, conn_id, text, image is not None)

        self.broadcast(create_new_message_event(stored))

    def handle_typing(self, conn_id: int, event: dict):
        name = self._typing_name(conn_id, event)
        if name is None:
            logger.log_ignored(EventTypes.TYPING, conn_id, "missing name")
            return

        self.room.typing_start(name)
        logger.debug(f"{name} is typing")
        self.broadcast(
            create_user_typing_event(name, self.room.typing_names()),
            exclude=conn_id
        )

    def handle_stop_typing(self, conn_id: int, event: dict):
        name = self._typing_name(conn_id, event)
        if name is None:
            logger.log_ignored(EventTypes.STOP_TYPING, conn_id, "missing name")
            return

        self.room.typing_stop(name)
        logger.debug(f"{name} stopped typing")
        self.broadcast(
            create_user_stop_typing_event(name, self.room.typing_names()),
            exclude=conn_id
        )

    def handle_disconnect(self, conn_id: int, event: dict):
        name = self.room.disconnect(conn_id)
        self.outboxes.pop(conn_id, None)
        if name is None:
            return

        logger.log_leave(name, conn_id)
        self.broadcast(create_user_left_event(name, self.room.online_names()))

    def _typing_name(self, conn_id: int, event: dict) -> Optional[str]:
        return normalize_name(event.get('name')) or self.room.name_of(conn_id)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    def unicast(self, conn_id: int, event: Dict[str, Any]) -> bool:
        outbox = self.outboxes.get(conn_id)
        if outbox is None:
            return False
        return outbox.send(event)

    def broadcast(self, event: Dict[str, Any], exclude: Optional[int] = None) -> int:
        """Send to every joined session; returns how many outboxes accepted it."""
        delivered = 0
        for conn_id in self._recipients(exclude):
            if self.unicast(conn_id, event):
                delivered += 1
        logger.debug(f"[BROADCAST] {event.get('type')} to {delivered} sessions, exclude={exclude}")
        return delivered

    def _recipients(self, exclude: Optional[int]) -> Iterable[int]:
        return [c for c in self.room.sessions if c != exclude]
