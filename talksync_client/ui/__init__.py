"""
Desktop user interface for the TalkSync client (PyQt6).

Handles:
- Name prompt and chat window
- Connection status, online users and typing indicator
- Image attachments
"""
