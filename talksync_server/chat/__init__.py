"""
Chat module for server-side relay functionality.

Handles:
- User presence tracking
- Typing indicators
- Message history management
- Broadcast fan-out
"""
