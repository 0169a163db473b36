#!/usr/bin/env python3
"""
TalkSync Chat Relay Server - Main Entry Point

Runs the single-room chat relay.

Usage:
    python main_server.py

Optional arguments:
    --host HOST           Bind address (default: 0.0.0.0)
    --port PORT           TCP port (default: $PORT or 3001)
    --log-dir DIR         Write a chat transcript into DIR (default: off)
"""

from talksync_server.main_server import main


if __name__ == "__main__":
    main()
