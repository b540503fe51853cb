"""
Client configuration module.

This module handles client-side configuration settings.
"""

from common.constants import DEFAULT_HOST, DEFAULT_PORT, DEFAULT_COLOR, RECONNECT_ATTEMPTS, RECONNECT_DELAY_BASE


class ClientConfig:
    """Client configuration class."""

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, username: str = None,
                 color: str = DEFAULT_COLOR):
        self.host = host
        self.port = port
        self.username = username or f"user_{id(self) % 10000}"
        self.color = color

        # Connection settings
        self.reconnect_attempts = RECONNECT_ATTEMPTS
        self.reconnect_delay_base = RECONNECT_DELAY_BASE
        self.typing_timeout = 1.0  # seconds of inactivity before stop_typing is sent
