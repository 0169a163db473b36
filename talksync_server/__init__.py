"""
Server package for the TalkSync chat relay.

This package contains all server-side functionality including:
- Presence registry, typing set and message log
- Event dispatch and broadcast
- Client connection management
- Configuration and utilities
"""
