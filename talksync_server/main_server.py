#!/usr/bin/env python3
"""
TalkSync Chat Relay Server - Main Entry Point

This is the server application. It accepts TCP connections carrying
line-delimited JSON events and hands every event to the broadcast router.
"""

import argparse
import asyncio
import itertools
from typing import Dict, Optional

from talksync_common.constants import EventTypes
from talksync_common.protocol_definitions import (
    ProtocolError, decode_event, read_event_line, create_error_event
)
from talksync_server.chat.outbox import ConnectionOutbox
from talksync_server.chat.router import BroadcastRouter
from talksync_server.utils.config import ServerConfig
from talksync_server.utils.logger import logger


class ChatRelayServer:
    """Main server class: owns the listener, the router and the connections."""

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.router = BroadcastRouter()
        self.outboxes: Dict[int, ConnectionOutbox] = {}  # conn_id -> outbox
        self.server: Optional[asyncio.AbstractServer] = None
        self._conn_ids = itertools.count(1)

        if self.config.log_dir:
            logger.enable_transcript(self.config.log_dir)

    @property
    def port(self) -> int:
        """Actual bound port (differs from the configured one when it was 0)."""
        if self.server and self.server.sockets:
            return self.server.sockets[0].getsockname()[1]
        return self.config.port

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """Handle individual client connection."""
        addr = writer.get_extra_info('peername')
        conn_id = next(self._conn_ids)

        outbox = ConnectionOutbox(conn_id, writer)
        outbox.start()
        self.outboxes[conn_id] = outbox
        self.router.attach(conn_id, outbox)

        logger.log_connection(addr, conn_id)

        try:
            while True:
                try:
                    data = await read_event_line(reader)
                    if not data:
                        break
                    event = decode_event(data)
                except ProtocolError as e:
                    logger.warning(f"Malformed event from conn={conn_id}: {e}")
                    outbox.send(create_error_event(str(e)))
                    continue

                if event['type'] == EventTypes.DISCONNECT:
                    logger.log_ignored(EventTypes.DISCONNECT, conn_id, "transport-level event")
                    continue

                logger.debug(f"Received from conn={conn_id}: {event['type']}")
                self.router.submit(conn_id, event)

        except asyncio.CancelledError:
            logger.info(f"Connection cancelled for conn={conn_id}")
            raise
        except (ConnectionError, OSError) as e:
            logger.error(f"Socket error for conn={conn_id}: {e}")
        finally:
            self.router.submit(conn_id, {"type": EventTypes.DISCONNECT})
            self.outboxes.pop(conn_id, None)
            await outbox.close()

    async def serve(self) -> asyncio.AbstractServer:
        """Bind the listener and start the router; returns the server object."""
        self.router.start()
        self.server = await asyncio.start_server(
            self.handle_client,
            self.config.host,
            self.config.port,
            limit=self.config.max_line_bytes
        )

        addr = ', '.join(str(sock.getsockname()) for sock in self.server.sockets)
        logger.info(f"Chat server listening on {addr}")
        return self.server

    async def start(self):
        """Start the server and run until cancelled."""
        server = await self.serve()
        try:
            await server.serve_forever()
        finally:
            await self.stop()

    async def stop(self):
        """Close the listener, the connections and the router."""
        if self.server is not None:
            self.server.close()
        # Closing the sockets ends every handle_client loop
        for outbox in list(self.outboxes.values()):
            await outbox.close()
        self.outboxes.clear()
        if self.server is not None:
            await self.server.wait_closed()
        await self.router.close()


def main():
    parser = argparse.ArgumentParser(description='TalkSync Chat Relay Server')
    parser.add_argument('--host', type=str, default='0.0.0.0',
                        help='Host to bind to (default: 0.0.0.0)')
    parser.add_argument('--port', type=int, default=None,
                        help='TCP port (default: $PORT or 3001)')
    parser.add_argument('--log-dir', type=str, default=None,
                        help='Write a chat transcript into this directory (default: off)')

    args = parser.parse_args()

    server = ChatRelayServer(ServerConfig(host=args.host, port=args.port, log_dir=args.log_dir))
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Server shutting down...")
    except OSError as e:
        logger.log_error("server", e)


if __name__ == "__main__":
    main()
