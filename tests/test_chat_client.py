#!/usr/bin/env python3
"""
Unit tests for chat_client.py and delivery.py

Tests the client-side view model:
- Delivery strategy follows the connection state
- Server events update messages, presence and typing
- Offline fallback ignores the server completely
- Nothing is sent after close
"""

import asyncio
import unittest
from unittest.mock import Mock

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from talksync_common.constants import EventTypes
from talksync_common.protocol_definitions import (
    Message, create_history_events, create_new_message_event,
    create_user_joined_event, create_user_left_event, create_user_typing_event
)
from talksync_client.chat.chat_client import (
    ChatClient, UPDATE_HISTORY, UPDATE_MESSAGE, UPDATE_ONLINE, UPDATE_NOTICE, UPDATE_STATE
)
from talksync_client.chat.connection_state import ConnectionState
from talksync_client.chat.delivery import (
    NetworkDelivery, LocalEchoDelivery, UnavailableDelivery, delivery_for
)


def server_message(n: int, name: str = "bob", text: str = "hello") -> Message:
    return Message(id=str(1000 + n), name=name, timestamp="2024-01-01T10:00:00+00:00",
                   text=text, seq=n)


class ChatClientTestCase(unittest.TestCase):

    def setUp(self):
        self.sender = Mock(return_value=True)
        self.updates = []
        self.client = ChatClient("alice", typing_quiet_period=0.05)
        self.client.set_sender(self.sender)
        self.client.set_update_handler(lambda kind, payload: self.updates.append((kind, payload)))

    def update_kinds(self):
        return [kind for kind, _ in self.updates]


class TestDelivery(ChatClientTestCase):
    """Strategy selection and sending."""

    def test_strategy_per_state(self):
        self.assertIsInstance(delivery_for(ConnectionState.CONNECTED), NetworkDelivery)
        self.assertIsInstance(delivery_for(ConnectionState.OFFLINE_FALLBACK), LocalEchoDelivery)
        self.assertIsInstance(delivery_for(ConnectionState.CONNECTING), UnavailableDelivery)
        self.assertIsInstance(delivery_for(ConnectionState.DISCONNECTED), UnavailableDelivery)

    def test_connected_send_waits_for_echo(self):
        self.client.set_state(ConnectionState.CONNECTED)
        self.assertTrue(self.client.send_chat("hi"))

        event = self.sender.call_args[0][0]
        self.assertEqual(event, {"type": EventTypes.MESSAGE, "name": "alice", "text": "hi"})
        self.assertEqual(self.client.messages, [])

        self.client.handle_message(create_new_message_event(server_message(0, "alice", "hi")))
        self.assertEqual([m.text for m in self.client.messages], ["hi"])

    def test_connecting_send_is_refused(self):
        self.assertFalse(self.client.send_chat("hi"))
        self.sender.assert_not_called()
        self.assertIn(UPDATE_NOTICE, self.update_kinds())

    def test_fallback_send_is_local(self):
        self.client.set_state(ConnectionState.OFFLINE_FALLBACK)
        self.client.enter_fallback()

        self.assertTrue(self.client.send_chat("just me"))
        self.assertTrue(self.client.send_chat("again"))

        self.sender.assert_not_called()
        self.assertEqual([m.text for m in self.client.messages], ["just me", "again"])
        self.assertEqual([m.seq for m in self.client.messages], [0, 1])
        self.assertTrue(all(m.name == "alice" for m in self.client.messages))
        self.assertEqual(self.client.online_names, ["alice"])

    def test_empty_send_is_dropped(self):
        self.client.set_state(ConnectionState.CONNECTED)
        self.assertFalse(self.client.send_chat("   "))
        self.assertFalse(self.client.send_chat(image="http://example.com/cat.png"))
        self.sender.assert_not_called()

    def test_image_send(self):
        self.client.set_state(ConnectionState.CONNECTED)
        image = "data:image/jpeg;base64,/9j/"
        self.assertTrue(self.client.send_chat(image=image))
        self.assertEqual(self.sender.call_args[0][0]["image"], image)

    def test_failed_write_notifies(self):
        self.sender.return_value = False
        self.client.set_state(ConnectionState.CONNECTED)
        self.assertFalse(self.client.send_chat("hi"))
        self.assertEqual(self.updates[-1][0], UPDATE_NOTICE)


class TestIncoming(ChatClientTestCase):
    """Applying server events."""

    def setUp(self):
        super().setUp()
        self.client.set_state(ConnectionState.CONNECTED)

    def test_history_replaces_messages(self):
        self.client.handle_message(create_new_message_event(server_message(5)))
        self.client.handle_message(create_history_events([server_message(0), server_message(1)])[0])
        self.assertEqual([m.seq for m in self.client.messages], [0, 1])

    def test_paged_history_is_shown_once_complete(self):
        history = [server_message(n, text="x" * 200) for n in range(6)]
        pages = create_history_events(history, page_bytes=600)
        self.assertGreater(len(pages), 1)

        for page in pages[:-1]:
            self.client.handle_message(page)
        self.assertNotIn(UPDATE_HISTORY, self.update_kinds())
        self.assertEqual(self.client.messages, [])

        self.client.handle_message(pages[-1])
        self.assertEqual(self.update_kinds().count(UPDATE_HISTORY), 1)
        self.assertEqual([m.seq for m in self.client.messages], list(range(6)))

    def test_first_page_restarts_history(self):
        stale = create_history_events([server_message(n, text="x" * 200) for n in range(6)],
                                      page_bytes=600)
        self.client.handle_message(stale[0])

        self.client.handle_message(create_history_events([server_message(9)])[0])
        self.assertEqual([m.seq for m in self.client.messages], [9])

    def test_duplicate_message_is_ignored(self):
        event = create_new_message_event(server_message(0))
        self.client.handle_message(event)
        self.client.handle_message(event)
        self.assertEqual(len(self.client.messages), 1)
        self.assertEqual(self.update_kinds().count(UPDATE_MESSAGE), 1)

    def test_presence_updates_online_list(self):
        self.client.handle_message(create_user_joined_event("bob", ["alice", "bob"]))
        self.assertEqual(self.client.online_names, ["alice", "bob"])
        self.client.handle_message(create_user_left_event("bob", ["alice"]))
        self.assertEqual(self.client.online_names, ["alice"])
        self.assertIn(UPDATE_ONLINE, self.update_kinds())

    def test_leaver_is_removed_from_typing(self):
        self.client.handle_message(create_user_typing_event("bob", ["bob"]))
        self.assertEqual(self.client.typing_names, ["bob"])
        self.client.handle_message(create_user_left_event("bob", ["alice"]))
        self.assertEqual(self.client.typing_names, [])

    def test_own_name_is_not_shown_typing(self):
        self.client.handle_message(create_user_typing_event("bob", ["alice", "bob"]))
        self.assertEqual(self.client.typing_names, ["bob"])

    def test_bad_message_is_skipped(self):
        self.client.handle_message({"type": EventTypes.NEW_MESSAGE, "text": "no id"})
        self.assertEqual(self.client.messages, [])

    def test_disconnect_clears_typing(self):
        self.client.handle_message(create_user_typing_event("bob", ["bob"]))
        self.client.set_state(ConnectionState.DISCONNECTED)
        self.assertEqual(self.client.typing_names, [])
        self.assertIn((UPDATE_STATE, ConnectionState.DISCONNECTED), self.updates)


class TestFallbackIsolation(ChatClientTestCase):
    """Once in fallback, server events never reach the view."""

    def test_server_events_are_ignored(self):
        self.client.set_state(ConnectionState.OFFLINE_FALLBACK)
        self.client.enter_fallback()

        self.client.handle_message(create_new_message_event(server_message(0)))
        self.client.handle_message(create_user_joined_event("bob", ["alice", "bob"]))

        self.assertEqual(self.client.messages, [])
        self.assertEqual(self.client.online_names, ["alice"])


class TestTypingSignals(unittest.IsolatedAsyncioTestCase):
    """Keystrokes only reach the server while connected."""

    async def asyncSetUp(self):
        self.sender = Mock(return_value=True)
        self.client = ChatClient("alice", typing_quiet_period=0.05)
        self.client.set_sender(self.sender)

    def sent_types(self):
        return [call[0][0]["type"] for call in self.sender.call_args_list]

    async def test_keystrokes_while_connected(self):
        self.client.set_state(ConnectionState.CONNECTED)
        for _ in range(5):
            self.client.input_changed()
        await asyncio.sleep(0.2)
        self.assertEqual(self.sent_types(), [EventTypes.TYPING, EventTypes.STOP_TYPING])

    async def test_keystrokes_in_fallback_are_local(self):
        self.client.set_state(ConnectionState.OFFLINE_FALLBACK)
        self.client.input_changed()
        await asyncio.sleep(0.2)
        self.sender.assert_not_called()

    async def test_no_stop_typing_after_close(self):
        self.client.set_state(ConnectionState.CONNECTED)
        self.client.input_changed()
        self.client.close()
        await asyncio.sleep(0.2)
        self.assertEqual(self.sent_types(), [EventTypes.TYPING])

    async def test_no_stop_typing_after_drop(self):
        self.client.set_state(ConnectionState.CONNECTED)
        self.client.input_changed()
        self.client.set_state(ConnectionState.DISCONNECTED)
        await asyncio.sleep(0.2)
        self.assertEqual(self.sent_types(), [EventTypes.TYPING])


if __name__ == '__main__':
    unittest.main()
