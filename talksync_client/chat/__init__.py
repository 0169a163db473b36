"""
Chat module for client-side functionality.

Handles:
- Connection state transitions
- Typing start/stop debouncing
- Message delivery (server echo or local echo)
- Local view of messages, online users and typing users
"""
