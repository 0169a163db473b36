"""
Chat client module.

This module handles client-side chat state: the message list, who is online,
who is typing, and routing of outgoing messages and typing signals.
"""

from typing import Any, Callable, Dict, List, Optional, Set

from talksync_common.constants import EventTypes, TYPING_QUIET_PERIOD
from talksync_common.protocol_definitions import (
    Message, MessageIdFactory, ProtocolError,
    create_typing_event, create_stop_typing_event,
    normalize_text, is_image_payload
)
from talksync_client.chat.connection_state import ConnectionState, Notify, is_live
from talksync_client.chat.delivery import delivery_for
from talksync_client.chat.typing_debouncer import TypingDebouncer
from talksync_client.utils.logger import logger


# Update kinds passed to the update handler
UPDATE_STATE = 'state'          # payload: ConnectionState
UPDATE_HISTORY = 'history'      # payload: List[Message], replaces the view
UPDATE_MESSAGE = 'message'      # payload: Message
UPDATE_ONLINE = 'online'        # payload: List[str]
UPDATE_TYPING = 'typing'        # payload: List[str], self excluded
UPDATE_PRESENCE = 'presence'    # payload: (event type, name)
UPDATE_NOTICE = 'notice'        # payload: Notify


class ChatClient:
    """Client-side chat functionality."""

    def __init__(self, username: str, typing_quiet_period: float = TYPING_QUIET_PERIOD):
        self.username = username
        self.messages: List[Message] = []
        self.online_names: List[str] = []
        self.typing_names: List[str] = []
        self.state = ConnectionState.CONNECTING
        self.delivery = delivery_for(self.state)
        self.id_factory = MessageIdFactory()
        self.debouncer = TypingDebouncer(self._emit_typing, typing_quiet_period)
        self.closed = False

        self.sender: Optional[Callable[[Dict[str, Any]], bool]] = None
        self.update_handler: Optional[Callable[[str, Any], None]] = None
        self._message_ids: Set[str] = set()
        self._history_pages: List[Message] = []  # message_history pages received so far

        self._handlers = {
            EventTypes.MESSAGE_HISTORY: self._handle_history,
            EventTypes.NEW_MESSAGE: self._handle_new_message,
            EventTypes.USER_JOINED: self._handle_presence,
            EventTypes.USER_LEFT: self._handle_presence,
            EventTypes.USER_TYPING: self._handle_typing,
            EventTypes.USER_STOP_TYPING: self._handle_typing,
            EventTypes.ERROR: self._handle_error,
        }

    def set_sender(self, sender: Callable[[Dict[str, Any]], bool]):
        """Set the function used to put events on the wire."""
        self.sender = sender

    def set_update_handler(self, handler: Callable[[str, Any], None]):
        """Set the callback that renders view updates."""
        self.update_handler = handler

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def set_state(self, state: ConnectionState):
        if state is self.state:
            return
        self.state = state
        self.delivery = delivery_for(state)
        if not is_live(state):
            self._set_typing([])
        self._update(UPDATE_STATE, state)

    def enter_fallback(self):
        """Local-only mode: we are the only one online."""
        self._set_online([self.username])
        self._set_typing([])

    def notify(self, text: str, level: str = 'info'):
        self._update(UPDATE_NOTICE, Notify(text, level))

    # ------------------------------------------------------------------
    # Outgoing
    # ------------------------------------------------------------------

    def send_chat(self, text: Optional[str] = None, image: Optional[str] = None) -> bool:
        """Send a chat message through the strategy of the current state."""
        if self.closed:
            return False
        text = normalize_text(text)
        if not is_image_payload(image):
            image = None
        if text is None and image is None:
            return False
        return self.delivery.deliver(self, text, image)

    def input_changed(self):
        """Called on every edit of the message input."""
        if self.closed or not is_live(self.state):
            return
        self.debouncer.keystroke()

    def send_event(self, event: Dict[str, Any]) -> bool:
        if self.closed or self.sender is None:
            return False
        return self.sender(event)

    def _emit_typing(self, event_type: str):
        # The stop timer may fire after the connection dropped
        if self.closed or not is_live(self.state):
            return
        if event_type == EventTypes.TYPING:
            self.send_event(create_typing_event(self.username))
        else:
            self.send_event(create_stop_typing_event(self.username))

    # ------------------------------------------------------------------
    # Incoming
    # ------------------------------------------------------------------

    def handle_message(self, event: Dict[str, Any]):
        """Apply one server event to the local view."""
        if self.closed or self.state is ConnectionState.OFFLINE_FALLBACK:
            return
        handler = self._handlers.get(event.get('type', ''))
        if handler is None:
            logger.debug(f"Ignoring event type {event.get('type')!r}")
            return
        handler(event)

    def add_message(self, message: Message) -> bool:
        if message.id in self._message_ids:
            return False
        self._message_ids.add(message.id)
        self.messages.append(message)
        self._update(UPDATE_MESSAGE, message)
        return True

    def _handle_history(self, event: dict):
        # Pages arrive back to back; the first one starts a fresh snapshot
        if event.get('page', 0) == 0:
            self._history_pages = []
        for record in event.get('messages', []):
            try:
                self._history_pages.append(Message.from_dict(record))
            except ProtocolError as e:
                logger.warning(f"Skipping bad history record: {e}")
        if not event.get('final', True):
            return

        history, self._history_pages = self._history_pages, []
        self.messages = history
        self._message_ids = {m.id for m in history}
        self._update(UPDATE_HISTORY, list(history))

    def _handle_new_message(self, event: dict):
        try:
            message = Message.from_dict(event)
        except ProtocolError as e:
            logger.warning(f"Skipping bad message: {e}")
            return
        self.add_message(message)

    def _handle_presence(self, event: dict):
        name = event.get('name')
        self._set_online(event.get('online_names', []))
        if event['type'] == EventTypes.USER_LEFT and name in self.typing_names:
            self._set_typing([n for n in self.typing_names if n != name])
        self._update(UPDATE_PRESENCE, (event['type'], name))

    def _handle_typing(self, event: dict):
        self._set_typing(event.get('typing_names', []))

    def _handle_error(self, event: dict):
        self.notify(f"Server error: {event.get('message', 'Unknown error')}", 'error')

    def _set_online(self, names: List[str]):
        self.online_names = [n for n in names if isinstance(n, str)]
        self._update(UPDATE_ONLINE, list(self.online_names))

    def _set_typing(self, names: List[str]):
        typing = [n for n in names if isinstance(n, str) and n != self.username]
        if typing == self.typing_names:
            return
        self.typing_names = typing
        self._update(UPDATE_TYPING, list(typing))

    def _update(self, kind: str, payload: Any):
        if self.update_handler is not None:
            self.update_handler(kind, payload)

    def close(self):
        """Stop all activity; no event is sent after this."""
        self.closed = True
        self.debouncer.cancel()
