"""
Room state for the single chat room.

Holds the presence registry (connection id -> display name), the set of
names currently typing and the append-only message log. Every method runs
to completion without awaiting, so a caller that owns the instance (the
broadcast router) gets atomic snapshots for free.
"""

from typing import Dict, List, Optional, Tuple

from talksync_common.protocol_definitions import Message


class MessageLog:
    """Append-only message history in server arrival order."""

    def __init__(self):
        self._messages: List[Message] = []

    def append(self, message: Message) -> Message:
        """Store a message and stamp it with its log position."""
        stored = message.with_seq(len(self))
        self._messages.append(stored)
        return stored

    def snapshot(self) -> List[Message]:
        return list(self._messages)

    def __len__(self):
        return len(self._messages)


class RoomState:
    """Presence registry, typing set and message log of the room."""

    def __init__(self):
        self.sessions: Dict[int, str] = {}  # conn_id -> display name
        self._typing: Dict[str, None] = {}  # insertion-ordered set of names
        self.log = MessageLog()

    def join(self, conn_id: int, name: str) -> Tuple[List[Message], List[str]]:
        """
        Register a session and return (history, online_names).

        A second join on the same connection replaces the previous name.
        The old name's typing flag is dropped so it cannot linger.
        """
        previous = self.sessions.get(conn_id)
        if previous is not None and previous != name:
            self._typing.pop(previous, None)
        self.sessions[conn_id] = name
        return self.log.snapshot(), self.online_names()

    def disconnect(self, conn_id: int) -> Optional[str]:
        """Remove a session; returns the freed name, or None if it never joined."""
        name = self.sessions.pop(conn_id, None)
        if name is not None:
            self._typing.pop(name, None)
        return name

    def append_message(self, message: Message) -> Message:
        return self.log.append(message)

    def typing_start(self, name: str):
        self._typing[name] = None

    def typing_stop(self, name: str):
        self._typing.pop(name, None)

    def name_of(self, conn_id: int) -> Optional[str]:
        return self.sessions.get(conn_id)

    def is_joined(self, conn_id: int) -> bool:
        return conn_id in self.sessions

    def online_names(self) -> List[str]:
        return list(self.sessions.values())

    def typing_names(self) -> List[str]:
        return list(self._typing)

    def history(self) -> List[Message]:
        return self.log.snapshot()
