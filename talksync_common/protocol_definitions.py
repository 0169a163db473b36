"""
Protocol definitions for the TalkSync chat relay.

This module defines the message structures and data formats used in communication
between client and server components. Every event travels as one JSON object
per line, tagged with a ``type`` field.
"""

import asyncio
import json
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from talksync_common.constants import (
    EventTypes, MAX_NAME_LENGTH, MAX_TEXT_LENGTH, IMAGE_DATA_URI_PREFIX,
    MAX_IMAGE_BYTES, HISTORY_PAGE_BYTES
)


class ProtocolError(ValueError):
    """Raised when a line cannot be decoded into an event."""


@dataclass(frozen=True)
class Message:
    """Chat message record, immutable once created."""
    id: str
    name: str
    timestamp: str
    text: Optional[str] = None
    image: Optional[str] = None
    seq: Optional[int] = None

    def with_seq(self, seq: int) -> 'Message':
        """Return a copy carrying its position in the message log."""
        return replace(self, seq=seq)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "timestamp": self.timestamp,
        }
        if self.text is not None:
            data["text"] = self.text
        if self.image is not None:
            data["image"] = self.image
        if self.seq is not None:
            data["seq"] = self.seq
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Message':
        """Build a message from its wire shape; raises ProtocolError on bad input."""
        try:
            return cls(
                id=str(data["id"]),
                name=str(data["name"]),
                timestamp=str(data["timestamp"]),
                text=data.get("text"),
                image=data.get("image"),
                seq=data.get("seq"),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ProtocolError(f"Invalid message record: {e}") from e


class MessageIdFactory:
    """
    Creates message ids derived from creation time.

    Ids are milliseconds since the epoch, bumped by one when two messages are
    created within the same millisecond, so they stay unique and increasing.
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self._last = 0

    def next_id(self) -> str:
        now_ms = int(self._clock() * 1000)
        if now_ms <= self._last:
            now_ms = self._last + 1
        self._last = now_ms
        return str(now_ms)


def utc_timestamp() -> str:
    """Current time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def normalize_name(value: Any) -> Optional[str]:
    """Return a usable display name, or None when the value is not one."""
    if not isinstance(value, str):
        return None
    name = value.strip()
    if not name or len(name) > MAX_NAME_LENGTH:
        return None
    return name


def normalize_text(value: Any) -> Optional[str]:
    """Return stripped message text, or None when absent or invalid."""
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text or len(text) > MAX_TEXT_LENGTH:
        return None
    return text


def is_image_payload(value: Any) -> bool:
    """Check for an inline image data URI small enough to travel in one event."""
    return (
        isinstance(value, str)
        and value.startswith(IMAGE_DATA_URI_PREFIX)
        and ';base64,' in value
        and len(value) <= MAX_IMAGE_BYTES
    )


# ---------------------------------------------------------------------------
# Client to server
# ---------------------------------------------------------------------------

def create_join_event(name: str) -> Dict[str, Any]:
    """Create a join event."""
    return {
        "type": EventTypes.JOIN,
        "name": name
    }


def create_message_event(name: str, text: Optional[str] = None,
                         image: Optional[str] = None) -> Dict[str, Any]:
    """Create a chat message event."""
    event = {
        "type": EventTypes.MESSAGE,
        "name": name
    }
    if text is not None:
        event["text"] = text
    if image is not None:
        event["image"] = image
    return event


def create_typing_event(name: str) -> Dict[str, Any]:
    """Create a typing event."""
    return {
        "type": EventTypes.TYPING,
        "name": name
    }


def create_stop_typing_event(name: str) -> Dict[str, Any]:
    """Create a stop typing event."""
    return {
        "type": EventTypes.STOP_TYPING,
        "name": name
    }


# ---------------------------------------------------------------------------
# Server to client
# ---------------------------------------------------------------------------

def create_history_events(messages: Iterable[Message],
                          page_bytes: int = HISTORY_PAGE_BYTES) -> List[Dict[str, Any]]:
    """
    Create the catch-up history sent to a joining client.

    The history is split into pages so that no single line outgrows the
    reader limit. Every page carries the total ``count``, its ``page``
    index and ``final`` on the last one. There is always at least one page.
    """
    records = [m.to_dict() for m in messages]

    pages: List[List[Dict[str, Any]]] = [[]]
    size = 0
    for record in records:
        record_size = len(json.dumps(record).encode('utf-8')) + 2
        if pages[-1] and size + record_size > page_bytes:
            pages.append([])
            size = 0
        pages[-1].append(record)
        size += record_size

    return [
        {
            "type": EventTypes.MESSAGE_HISTORY,
            "messages": page,
            "count": len(records),
            "page": index,
            "final": index == len(pages) - 1
        }
        for index, page in enumerate(pages)
    ]


def create_new_message_event(message: Message) -> Dict[str, Any]:
    """Create a new message broadcast."""
    event = {"type": EventTypes.NEW_MESSAGE}
    event.update(message.to_dict())
    return event


def create_user_typing_event(name: str, typing_names: List[str]) -> Dict[str, Any]:
    """Create a user typing broadcast."""
    return {
        "type": EventTypes.USER_TYPING,
        "name": name,
        "typing_names": list(typing_names)
    }


def create_user_stop_typing_event(name: str, typing_names: List[str]) -> Dict[str, Any]:
    """Create a user stop typing broadcast."""
    return {
        "type": EventTypes.USER_STOP_TYPING,
        "name": name,
        "typing_names": list(typing_names)
    }


def create_user_joined_event(name: str, online_names: List[str]) -> Dict[str, Any]:
    """Create a user joined broadcast."""
    return {
        "type": EventTypes.USER_JOINED,
        "name": name,
        "online_names": list(online_names)
    }


def create_user_left_event(name: str, online_names: List[str]) -> Dict[str, Any]:
    """Create a user left broadcast."""
    return {
        "type": EventTypes.USER_LEFT,
        "name": name,
        "online_names": list(online_names)
    }


def create_error_event(message: str) -> Dict[str, Any]:
    """Create an error message."""
    return {
        "type": EventTypes.ERROR,
        "message": message
    }


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------

def encode_event(event: Dict[str, Any]) -> bytes:
    """Serialize an event as one newline-terminated JSON line."""
    return json.dumps(event).encode('utf-8') + b'\n'


def decode_event(line: bytes) -> Dict[str, Any]:
    """Parse one line into an event dict."""
    try:
        event = json.loads(line.decode('utf-8').strip())
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Malformed JSON: {e}") from e

    if not isinstance(event, dict):
        raise ProtocolError("Event must be a JSON object")

    event_type = event.get('type')
    if not isinstance(event_type, str) or not event_type:
        raise ProtocolError("Event has no type")

    return event


async def read_event_line(reader: asyncio.StreamReader) -> bytes:
    """
    Read one event line; returns b'' at end of stream.

    A line longer than the reader limit is skipped up to and including its
    newline, then ProtocolError is raised, so the next call starts cleanly
    at the following event.
    """
    try:
        return await reader.readuntil(b'\n')
    except asyncio.IncompleteReadError as e:
        return e.partial
    except asyncio.LimitOverrunError:
        await _discard_line(reader)
        raise ProtocolError("Event too large")


async def _discard_line(reader: asyncio.StreamReader):
    while True:
        try:
            await reader.readuntil(b'\n')
            return
        except asyncio.LimitOverrunError as e:
            await reader.readexactly(e.consumed)
        except asyncio.IncompleteReadError:
            return
