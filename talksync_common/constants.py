"""
Shared constants for the TalkSync chat relay.

This module contains all constants used across client and server components.
"""

# Network Configuration
DEFAULT_HOST = 'localhost'
DEFAULT_SERVER_HOST = '0.0.0.0'
DEFAULT_PORT = 3001
PORT_ENV_VAR = 'PORT'

# Buffer Sizes
MAX_LINE_BYTES = 2 * 1024 * 1024  # One event per line, image data URIs included
HISTORY_PAGE_BYTES = MAX_LINE_BYTES - 64 * 1024  # Records per message_history line
MAX_IMAGE_BYTES = MAX_LINE_BYTES - 64 * 1024  # A stored message must fit one line
OUTBOX_MAX_EVENTS = 256  # Events queued for a slow client before it misses updates

# Input Limits
MAX_NAME_LENGTH = 20
MAX_TEXT_LENGTH = 500

# Client Timing (seconds)
CONNECT_TIMEOUT = 5.0
FALLBACK_GRACE_DELAY = 2.0
CONNECT_RETRY_INTERVAL = 0.5
TYPING_QUIET_PERIOD = 1.0
RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY_BASE = 1.0

# Images
MAX_IMAGE_WIDTH = 800
MAX_IMAGE_HEIGHT = 600
IMAGE_JPEG_QUALITY = 80
IMAGE_DATA_URI_PREFIX = 'data:image/'

# Logging
CHAT_LOG_FILE = 'chat_history.log'


# Event Types
class EventTypes:
    # Client to Server
    JOIN = 'join'
    MESSAGE = 'message'
    TYPING = 'typing'
    STOP_TYPING = 'stop_typing'

    # Server to Client
    MESSAGE_HISTORY = 'message_history'
    NEW_MESSAGE = 'new_message'
    USER_TYPING = 'user_typing'
    USER_STOP_TYPING = 'user_stop_typing'
    USER_JOINED = 'user_joined'
    USER_LEFT = 'user_left'
    ERROR = 'error'

    # Transport level, never sent on the wire
    DISCONNECT = 'disconnect'
