"""
Message delivery strategies.

Exactly one strategy is active at a time, chosen from the connection state:
while connected the server echo is the only source of our own messages; in
offline fallback the message is echoed straight into the local list; in any
other state the send is refused.
"""

from typing import Optional

from talksync_common.protocol_definitions import (
    Message, create_message_event, utc_timestamp
)
from talksync_client.chat.connection_state import ConnectionState
from talksync_client.utils.logger import logger


class NetworkDelivery:
    """Send to the server; the message shows up when the server echoes it."""
    local = False

    def deliver(self, client, text: Optional[str], image: Optional[str]) -> bool:
        sent = client.send_event(create_message_event(client.username, text, image))
        if sent:
            logger.log_chat_sent(text or '[image]')
        else:
            client.notify("Message could not be sent", 'warning')
        return sent


class LocalEchoDelivery:
    """Append to the local message list without touching the network."""
    local = True

    def deliver(self, client, text: Optional[str], image: Optional[str]) -> bool:
        message = Message(
            id=client.id_factory.next_id(),
            name=client.username,
            timestamp=utc_timestamp(),
            text=text,
            image=image,
            seq=len(client.messages),
        )
        client.add_message(message)
        logger.log_chat_sent(text or '[image]', local=True)
        return True


class UnavailableDelivery:
    """Connecting or disconnected: nothing can be sent."""
    local = False

    def deliver(self, client, text: Optional[str], image: Optional[str]) -> bool:
        client.notify("Not connected - message not sent", 'warning')
        return False


_NETWORK = NetworkDelivery()
_LOCAL_ECHO = LocalEchoDelivery()
_UNAVAILABLE = UnavailableDelivery()


def delivery_for(state: ConnectionState):
    """Pick the delivery strategy for a connection state."""
    if state is ConnectionState.CONNECTED:
        return _NETWORK
    if state is ConnectionState.OFFLINE_FALLBACK:
        return _LOCAL_ECHO
    return _UNAVAILABLE
