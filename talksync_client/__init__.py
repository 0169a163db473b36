"""
Client package for the TalkSync chat relay.

This package contains all client-side functionality including:
- Connection lifecycle and offline fallback
- Chat view model and typing indicator
- Desktop user interface
- Configuration and utilities
"""
