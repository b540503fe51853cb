"""
Shared constants for the chat relay.

This module contains all constants used across client and server components.
"""

# Network Configuration
DEFAULT_HOST = 'localhost'
DEFAULT_SERVER_HOST = '0.0.0.0'
DEFAULT_PORT = 9000

# Limits
MAX_MESSAGE_SIZE = 1024 * 1024  # 1MB per JSON line
OUTBOX_SIZE = 1000  # Queued events per connection before it counts as a slow consumer

# Timeouts
RECOVERY_GRACE_SECONDS = 120  # 2 minutes
RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY_BASE = 1.0

# Identity
COLOR_PATTERN = r'^#[0-9A-Fa-f]{6}$'
MENTION_PATTERN = r'@([A-Za-z0-9_]+)'
DEFAULT_COLOR = '#3366FF'

# Logging
LOG_DIR = 'logs'
CHAT_LOG_FILE = 'chat_history.log'


# Message Types
class MessageTypes:
    # Client to Server
    CLAIM_IDENTITY = 'claim_identity'
    CHAT_MESSAGE = 'chat_message'
    TYPING = 'typing'
    STOP_TYPING = 'stop_typing'
    RESUME = 'resume'
    LOGOUT = 'logout'

    # Server to Client
    CLAIM_RESULT = 'claim_result'
    RESUME_RESULT = 'resume_result'
    PAST_MESSAGES = 'past_messages'
    USER_JOINED = 'user_joined'
    USER_LEFT = 'user_left'
    USER_TYPING = 'user_typing'
    USER_STOP_TYPING = 'user_stop_typing'
    ACTIVE_USERS = 'active_users'
    ERROR = 'error'
