"""
Client connection state machine.

The client is always in exactly one ConnectionState. Transport signals are
fed through transition(), which returns the next state plus the side effects
the caller has to perform. Nothing here touches the network or a timer, so
every transition can be checked without a live server.

    connecting --connected--> connected --disconnected--> disconnected
        |                         ^                            |
        | connect_failed          +---------connected----------+
        v
    (grace timer) --grace_expired--> offline_fallback   (terminal)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


class ConnectionState(Enum):
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    DISCONNECTED = 'disconnected'
    OFFLINE_FALLBACK = 'offline_fallback'


class Signal(Enum):
    CONNECTED = 'connected'
    CONNECT_FAILED = 'connect_failed'
    GRACE_EXPIRED = 'grace_expired'
    DISCONNECTED = 'disconnected'


# Effects

@dataclass(frozen=True)
class EmitJoin:
    """Send the join event with the chosen display name."""


@dataclass(frozen=True)
class ScheduleFallback:
    """Arm the grace timer; a timer already running is left alone."""


@dataclass(frozen=True)
class EnterFallback:
    """Switch to local-only mode and list ourselves as the only user online."""


@dataclass(frozen=True)
class CloseTransport:
    """Drop the socket (or abandon the pending connect attempt)."""


@dataclass(frozen=True)
class Notify:
    """Tell the user something about the connection."""
    text: str
    level: str = 'info'


@dataclass(frozen=True)
class Transition:
    state: ConnectionState
    effects: Tuple[object, ...] = ()


_TABLE: Dict[Tuple[ConnectionState, Signal], Transition] = {
    (ConnectionState.CONNECTING, Signal.CONNECTED): Transition(
        ConnectionState.CONNECTED,
        (EmitJoin(), Notify("Connected - you've joined the chat!"))
    ),
    (ConnectionState.CONNECTING, Signal.CONNECT_FAILED): Transition(
        ConnectionState.CONNECTING,
        (ScheduleFallback(), Notify("Server not reachable yet, still trying...", 'warning'))
    ),
    (ConnectionState.CONNECTING, Signal.GRACE_EXPIRED): Transition(
        ConnectionState.OFFLINE_FALLBACK,
        (CloseTransport(), EnterFallback(),
         Notify("Demo mode - no server reachable, messages stay on this device", 'warning'))
    ),
    (ConnectionState.CONNECTED, Signal.DISCONNECTED): Transition(
        ConnectionState.DISCONNECTED,
        (Notify("Connection lost", 'warning'),)
    ),
    (ConnectionState.DISCONNECTED, Signal.CONNECTED): Transition(
        ConnectionState.CONNECTED,
        (EmitJoin(), Notify("Reconnected"))
    ),
    # A connect that completes after fallback was declared is thrown away
    (ConnectionState.OFFLINE_FALLBACK, Signal.CONNECTED): Transition(
        ConnectionState.OFFLINE_FALLBACK,
        (CloseTransport(),)
    ),
}


def transition(state: ConnectionState, signal: Signal) -> Transition:
    """Return the state reached from `state` on `signal`, with its effects."""
    return _TABLE.get((state, signal), Transition(state))


def is_live(state: ConnectionState) -> bool:
    """True when sends and typing go to the server."""
    return state is ConnectionState.CONNECTED
