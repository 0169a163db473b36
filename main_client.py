#!/usr/bin/env python3
"""
TalkSync Chat Client - Main Entry Point

Joins the single chat room with either the PyQt6 window or a terminal
interface. When the server cannot be reached the client switches to demo
mode and keeps working locally.

Usage:
    python main_client.py [--username NAME] [--server-ip HOST] [--port PORT] [--cli]

Modes:
    (default)    Launch with PyQt6 GUI
    --cli        Launch with command-line interface
"""

import argparse
import asyncio
import sys

from talksync_common.constants import DEFAULT_HOST
from talksync_common.protocol_definitions import normalize_name


def run_gui_client(username: str = None, server_host: str = DEFAULT_HOST, server_port: int = None):
    """Run the GUI client."""
    try:
        from talksync_client.ui.client_gui import main as gui_main
    except ImportError:
        print("[ERROR] PyQt6 not installed. Install with: pip install PyQt6")
        sys.exit(1)

    gui_main(server_host, server_port, username)


def run_cli_client(username: str = None, server_host: str = DEFAULT_HOST, server_port: int = None,
                   reconnect: bool = True):
    """Run the CLI client."""
    from talksync_client.main_client import ChatRelayClient
    from talksync_client.utils.config import ClientConfig
    from talksync_client.utils.logger import logger

    name = normalize_name(username)
    while name is None:
        name = normalize_name(input("Enter your name: "))
        if name is None:
            print("[ERROR] Name must be 1-20 characters")

    config = ClientConfig(server_host, server_port, name, reconnect=reconnect)
    client = ChatRelayClient(config)

    try:
        asyncio.run(client.interactive_mode())
    except KeyboardInterrupt:
        print("\n[INFO] Interrupted by user")
    except Exception as e:
        logger.log_error("client", e)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='TalkSync Chat Client')
    parser.add_argument('--username', type=str, default=None,
                        help='Display name (default: will be asked)')
    parser.add_argument('--server-ip', type=str, default=DEFAULT_HOST,
                        help=f'Server address (default: {DEFAULT_HOST})')
    parser.add_argument('--port', type=int, default=None,
                        help='Server port (default: $PORT or 3001)')
    parser.add_argument('--cli', action='store_true',
                        help='Run in command-line mode (GUI is default)')
    parser.add_argument('--no-reconnect', action='store_true',
                        help='Do not reconnect after the connection drops')

    args = parser.parse_args()

    if args.cli:
        run_cli_client(args.username, args.server_ip, args.port, not args.no_reconnect)
    else:
        run_gui_client(args.username, args.server_ip, args.port)


if __name__ == "__main__":
    main()
