#!/usr/bin/env python3
"""
Integration tests for the chat relay.

Runs a real ChatRelayServer on localhost and talks to it with raw
line-delimited JSON sockets and with ChatRelayClient.
"""

import asyncio
import socket
import unittest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from talksync_common.constants import EventTypes, IMAGE_DATA_URI_PREFIX, MAX_LINE_BYTES
from talksync_common.protocol_definitions import (
    decode_event, encode_event, create_join_event, create_message_event,
    create_typing_event
)
from talksync_client.chat.connection_state import ConnectionState
from talksync_client.main_client import ChatRelayClient
from talksync_client.utils.config import ClientConfig
from talksync_server.main_server import ChatRelayServer
from talksync_server.utils.config import ServerConfig

TIMEOUT = 3.0


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


async def wait_until(predicate, timeout: float = TIMEOUT):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.02)


class RawClient:
    """Minimal socket client speaking the wire protocol directly."""

    def __init__(self, reader, writer):
        self.reader = reader
        self.writer = writer

    @classmethod
    async def connect(cls, port: int) -> 'RawClient':
        reader, writer = await asyncio.open_connection('127.0.0.1', port, limit=MAX_LINE_BYTES)
        return cls(reader, writer)

    async def send(self, event):
        self.writer.write(encode_event(event))
        await self.writer.drain()

    async def send_raw(self, data: bytes):
        self.writer.write(data)
        await self.writer.drain()

    async def receive(self, timeout: float = TIMEOUT):
        line = await asyncio.wait_for(self.reader.readline(), timeout)
        if not line:
            raise ConnectionError("server closed the connection")
        return decode_event(line)

    async def receive_type(self, event_type: str, timeout: float = TIMEOUT):
        """Skip events until one of the given type arrives."""
        while True:
            event = await self.receive(timeout)
            if event["type"] == event_type:
                return event

    async def join(self, name: str):
        await self.send(create_join_event(name))
        history = await self.receive_type(EventTypes.MESSAGE_HISTORY)
        await self.receive_type(EventTypes.USER_JOINED)
        return history

    async def close(self):
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass


class ServerTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.server = ChatRelayServer(ServerConfig(host='127.0.0.1', port=0))
        await self.server.serve()
        self.clients = []

    async def asyncTearDown(self):
        for client in self.clients:
            await client.close()
        await self.server.stop()

    async def raw_client(self) -> RawClient:
        client = await RawClient.connect(self.server.port)
        self.clients.append(client)
        return client


class TestRelay(ServerTestCase):
    """Join, chat and leave over real sockets."""

    async def test_two_user_scenario(self):
        alice = await self.raw_client()
        await alice.join("alice")

        bob = await self.raw_client()
        await bob.send(create_join_event("bob"))
        await bob.receive_type(EventTypes.MESSAGE_HISTORY)
        joined_b = await bob.receive_type(EventTypes.USER_JOINED)
        joined_a = await alice.receive_type(EventTypes.USER_JOINED)
        self.assertEqual(joined_a["online_names"], ["alice", "bob"])
        self.assertEqual(joined_b["online_names"], ["alice", "bob"])

        await alice.send(create_message_event("alice", "hi"))
        for client in (alice, bob):
            message = await client.receive_type(EventTypes.NEW_MESSAGE)
            self.assertEqual(message["name"], "alice")
            self.assertEqual(message["text"], "hi")

        self.clients.remove(bob)
        await bob.close()

        left = await alice.receive_type(EventTypes.USER_LEFT)
        self.assertEqual(left["name"], "bob")
        self.assertEqual(left["online_names"], ["alice"])

    async def test_late_joiner_gets_history(self):
        alice = await self.raw_client()
        await alice.join("alice")
        for text in ("one", "two"):
            await alice.send(create_message_event("alice", text))
            await alice.receive_type(EventTypes.NEW_MESSAGE)

        carol = await self.raw_client()
        history = await carol.join("carol")
        self.assertEqual([m["text"] for m in history["messages"]], ["one", "two"])

    async def test_typing_is_not_echoed(self):
        alice = await self.raw_client()
        await alice.join("alice")
        bob = await self.raw_client()
        await bob.join("bob")

        await alice.send(create_typing_event("alice"))
        typing = await bob.receive_type(EventTypes.USER_TYPING)
        self.assertEqual(typing["typing_names"], ["alice"])

        # The next thing alice sees is her own message, not a typing echo
        await alice.send(create_message_event("alice", "done"))
        while True:
            event = await alice.receive()
            self.assertNotEqual(event["type"], EventTypes.USER_TYPING)
            if event["type"] == EventTypes.NEW_MESSAGE:
                break

    async def test_malformed_line_gets_error_and_connection_survives(self):
        alice = await self.raw_client()
        await alice.send_raw(b'{not json}\n')
        error = await alice.receive()
        self.assertEqual(error["type"], EventTypes.ERROR)

        await alice.join("alice")
        self.assertEqual(self.server.router.room.online_names(), ["alice"])

    async def test_oversized_line_is_rejected_once(self):
        alice = await self.raw_client()
        text = b'x' * (MAX_LINE_BYTES + 1024)
        await alice.send_raw(b'{"type": "message", "name": "alice", "text": "' + text + b'"}\n')

        error = await alice.receive()
        self.assertEqual(error["type"], EventTypes.ERROR)
        self.assertEqual(error["message"], "Event too large")

        await alice.send(create_join_event("alice"))
        event = await alice.receive()
        self.assertEqual(event["type"], EventTypes.MESSAGE_HISTORY)
        await alice.receive_type(EventTypes.USER_JOINED)
        self.assertEqual(self.server.router.room.online_names(), ["alice"])

    async def test_unnamed_join_does_not_register(self):
        alice = await self.raw_client()
        await alice.send({"type": EventTypes.JOIN})
        await alice.join("alice")
        self.assertEqual(self.server.router.room.online_names(), ["alice"])


class TestRelayClient(ServerTestCase):
    """ChatRelayClient against a live server."""

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.relay_clients = []

    async def asyncTearDown(self):
        for client in self.relay_clients:
            await client.close()
        await super().asyncTearDown()

    def relay_client(self, name: str, port: int, **kwargs) -> ChatRelayClient:
        config = ClientConfig('127.0.0.1', port, name, **kwargs)
        config.connect_retry_interval = 0.05
        client = ChatRelayClient(config)
        self.relay_clients.append(client)
        return client

    async def test_connects_joins_and_receives_own_echo(self):
        client = self.relay_client("dave", self.server.port)
        client.start()
        await wait_until(lambda: client.state is ConnectionState.CONNECTED)
        await wait_until(lambda: client.chat_client.online_names == ["dave"])

        self.assertTrue(client.chat_client.send_chat("hello"))
        await wait_until(lambda: len(client.chat_client.messages) == 1)
        self.assertEqual(client.chat_client.messages[0].name, "dave")

    async def test_join_after_large_image_history(self):
        alice = await self.raw_client()
        await alice.join("alice")
        images = [f"{IMAGE_DATA_URI_PREFIX}jpeg;base64,{chr(ord('A') + n) * 800_000}" for n in range(4)]
        for image in images:
            await alice.send(create_message_event("alice", image=image))
            await alice.receive_type(EventTypes.NEW_MESSAGE)

        client = self.relay_client("bob", self.server.port)
        client.start()
        await wait_until(lambda: len(client.chat_client.messages) == 4, timeout=10)

        self.assertEqual([m.image for m in client.chat_client.messages], images)
        self.assertIs(client.state, ConnectionState.CONNECTED)

    async def test_unreachable_server_falls_back_to_demo_mode(self):
        observer = await self.raw_client()
        await observer.join("observer")

        client = self.relay_client("carol", unused_port(), connect_timeout=0.2, grace_delay=0.3)
        client.start()
        await wait_until(lambda: client.state is ConnectionState.OFFLINE_FALLBACK)

        chat = client.chat_client
        self.assertEqual(chat.online_names, ["carol"])
        self.assertTrue(chat.send_chat("anyone there?"))
        self.assertEqual([m.text for m in chat.messages], ["anyone there?"])

        with self.assertRaises(asyncio.TimeoutError):
            await observer.receive_type(EventTypes.NEW_MESSAGE, timeout=0.3)
        self.assertEqual(self.server.router.room.history(), [])

    async def test_server_loss_moves_to_disconnected(self):
        client = self.relay_client("erin", self.server.port, reconnect=False)
        client.start()
        await wait_until(lambda: client.chat_client.online_names == ["erin"])

        await self.server.stop()
        await wait_until(lambda: client.state is ConnectionState.DISCONNECTED)
        self.assertFalse(client.chat_client.send_chat("lost"))


if __name__ == '__main__':
    unittest.main()
