#!/usr/bin/env python3
"""
TalkSync Chat Relay Client - Connection Driver

This module owns the socket and drives the connection state machine:
bounded connect attempts, the grace period before offline fallback, the join
handshake, the listen loop and reconnection after a dropped connection.
Front-ends (the CLI below, or the PyQt6 window) only talk to ChatClient.
"""

import asyncio
import sys
from typing import Any, Dict, Optional

from talksync_common.constants import EventTypes
from talksync_common.protocol_definitions import (
    ProtocolError, decode_event, encode_event, read_event_line, create_join_event
)
from talksync_client.chat.chat_client import (
    ChatClient, UPDATE_STATE, UPDATE_HISTORY, UPDATE_MESSAGE, UPDATE_ONLINE,
    UPDATE_TYPING, UPDATE_PRESENCE, UPDATE_NOTICE
)
from talksync_client.chat.connection_state import (
    ConnectionState, Signal, EmitJoin, ScheduleFallback, EnterFallback,
    CloseTransport, Notify, transition
)
from talksync_client.utils.config import ClientConfig
from talksync_client.utils.logger import logger


class ChatRelayClient:
    """Main client class that drives the connection lifecycle."""

    def __init__(self, config: ClientConfig):
        self.config = config
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self.closed = False

        self.chat_client = ChatClient(config.username, config.typing_quiet_period)
        self.chat_client.set_sender(self.send_event)

        self._grace_handle: Optional[asyncio.TimerHandle] = None
        self._run_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ConnectionState:
        return self.chat_client.state

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def signal(self, signal: Signal):
        """Feed a transport signal through the state machine and run its effects."""
        if self.closed:
            return
        old = self.state
        result = transition(old, signal)
        logger.log_state(old.value, result.state.value)
        if result.state is ConnectionState.CONNECTED:
            self._cancel_grace_timer()
        self.chat_client.set_state(result.state)
        for effect in result.effects:
            self._perform(effect)

    def _perform(self, effect):
        if isinstance(effect, EmitJoin):
            logger.show_join_info(self.config.username)
            self.send_event(create_join_event(self.config.username))
        elif isinstance(effect, ScheduleFallback):
            if self._grace_handle is None:
                loop = asyncio.get_running_loop()
                self._grace_handle = loop.call_later(
                    self.config.grace_delay, self._grace_expired
                )
        elif isinstance(effect, EnterFallback):
            self.chat_client.enter_fallback()
        elif isinstance(effect, CloseTransport):
            self._close_writer()
        elif isinstance(effect, Notify):
            self.chat_client.notify(effect.text, effect.level)

    def _grace_expired(self):
        self._grace_handle = None
        self.signal(Signal.GRACE_EXPIRED)

    def _cancel_grace_timer(self):
        if self._grace_handle is not None:
            self._grace_handle.cancel()
            self._grace_handle = None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _open(self) -> bool:
        """One connection attempt bounded by connect_timeout."""
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    self.config.host, self.config.port,
                    limit=self.config.max_line_bytes
                ),
                timeout=self.config.connect_timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.log_connection(self.config.host, self.config.port, False)
            logger.debug(f"Connect error: {e!r}")
            return False

        if self.closed:
            writer.close()
            return False

        self.reader, self.writer = reader, writer
        logger.log_connection(self.config.host, self.config.port, True)
        return True

    async def connect(self) -> bool:
        """Keep trying until connected or until offline fallback is declared."""
        while not self.closed and self.state is ConnectionState.CONNECTING:
            if await self._open():
                self.signal(Signal.CONNECTED)
                break
            self.signal(Signal.CONNECT_FAILED)
            if self.state is ConnectionState.CONNECTING:
                await asyncio.sleep(self.config.connect_retry_interval)
        return self.state is ConnectionState.CONNECTED

    def send_event(self, event: Dict[str, Any]) -> bool:
        """Write one event without waiting for the socket to drain."""
        if self.closed or self.writer is None or self.writer.is_closing():
            return False
        try:
            self.writer.write(encode_event(event))
            return True
        except (ConnectionError, OSError, RuntimeError) as e:
            logger.log_error("send", e)
            return False

    async def listen_for_messages(self):
        """Read server events until the connection drops."""
        while not self.closed and self.reader is not None:
            try:
                data = await read_event_line(self.reader)
                if not data:
                    logger.info("[INFO] Server closed connection")
                    break
                event = decode_event(data)
            except ProtocolError as e:
                logger.error(f"[ERROR] {e}")
                continue
            except (ConnectionError, OSError) as e:
                logger.error(f"[ERROR] Connection lost: {e}")
                break

            try:
                self.chat_client.handle_message(event)
            except Exception as e:
                logger.log_error(f"handling '{event.get('type')}'", e)

        if not self.closed:
            self._close_writer()
            self.signal(Signal.DISCONNECTED)

    async def _reconnect(self) -> bool:
        """Reconnect to the server with exponential backoff."""
        max_attempts = self.config.reconnect_attempts
        base_delay = self.config.reconnect_delay_base

        for attempt in range(max_attempts):
            delay = base_delay * (2 ** attempt)
            logger.info(f"[INFO] Attempting to reconnect in {delay}s (attempt {attempt + 1}/{max_attempts})...")
            await asyncio.sleep(delay)
            if self.closed:
                return False

            if await self._open():
                self.signal(Signal.CONNECTED)
                return True

        logger.error("[ERROR] Failed to reconnect after multiple attempts")
        self.chat_client.notify("Could not reconnect - leave and join again", 'error')
        return False

    async def run(self):
        """Run the connection lifecycle until closed, fallback or give-up."""
        if not await self.connect():
            return

        while not self.closed:
            await self.listen_for_messages()
            if self.closed or not self.config.reconnect:
                break
            if not await self._reconnect():
                break

    def start(self) -> asyncio.Task:
        """Run the lifecycle in a background task."""
        self._run_task = asyncio.create_task(self.run())
        return self._run_task

    def _close_writer(self):
        if self.writer is not None:
            self.writer.close()
        self.reader = None
        self.writer = None

    async def close(self):
        """Tear down: cancel timers, stop the lifecycle task, close the socket."""
        if self.closed:
            return
        self.closed = True
        self.chat_client.close()
        self._cancel_grace_timer()

        if self._run_task is not None and not self._run_task.done():
            self._run_task.cancel()
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass

        writer = self.writer
        self._close_writer()
        if writer is not None:
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError) as e:
                logger.debug(f"Error while closing: {e}")

        logger.info("[INFO] Disconnected from server")

    # ------------------------------------------------------------------
    # Command-line front-end
    # ------------------------------------------------------------------

    def print_update(self, kind: str, payload):
        """Render view updates on the terminal."""
        if kind == UPDATE_MESSAGE:
            print(format_message(payload))
        elif kind == UPDATE_HISTORY:
            if payload:
                print(f"\n[HISTORY] Loading {len(payload)} previous message(s):")
                print("-" * 50)
                for message in payload:
                    print(format_message(message))
                print("-" * 50)
            else:
                print("[HISTORY] No previous messages")
        elif kind == UPDATE_PRESENCE:
            event_type, name = payload
            verb = "joined" if event_type == EventTypes.USER_JOINED else "left"
            print(f"[EVENT] {name} {verb} the chat")
        elif kind == UPDATE_ONLINE:
            logger.show_online(payload)
        elif kind == UPDATE_TYPING:
            if payload:
                print(f"[TYPING] {', '.join(payload)} typing...")
        elif kind == UPDATE_NOTICE:
            print(f"[{payload.level.upper()}] {payload.text}")
        elif kind == UPDATE_STATE:
            print(f"[STATUS] {payload.value}")

    async def handle_input(self, line: str) -> bool:
        """Handle one line typed by the user; returns False to quit."""
        line = line.strip()
        if not line:
            return True
        if line == '/quit':
            return False
        if line == '/who':
            logger.show_online(self.chat_client.online_names)
            return True
        if line.startswith('/image '):
            self._send_image(line[len('/image '):].strip())
            return True
        self.chat_client.send_chat(line)
        return True

    def _send_image(self, path: str):
        try:
            from talksync_client.ui.media import compress_image
        except ImportError:
            logger.error("[ERROR] PyQt6 not installed. Install with: pip install PyQt6")
            return
        try:
            data_uri = compress_image(path)
        except ValueError as e:
            logger.error(f"[ERROR] {e}")
            return
        self.chat_client.send_chat(image=data_uri)

    async def interactive_mode(self):
        """Run client with interactive chat input."""
        self.chat_client.set_update_handler(self.print_update)
        logger.show_interactive_mode_info()
        self.start()

        loop = asyncio.get_running_loop()
        try:
            while True:
                line = await loop.run_in_executor(None, sys.stdin.readline)
                if not line:
                    break
                if not await self.handle_input(line):
                    break
        except asyncio.CancelledError:
            pass
        finally:
            await self.close()


def format_message(message) -> str:
    """One-line rendering of a chat message."""
    body = message.text or ''
    if message.image:
        body = f"{body} [image]".strip()
    return f"[{message.timestamp[11:16]}] {message.name}: {body}"
