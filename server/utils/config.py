"""
Server configuration module.

This module handles server-side configuration settings.
"""

from typing import Optional

from common.constants import (
    DEFAULT_SERVER_HOST, DEFAULT_PORT, RECOVERY_GRACE_SECONDS, MAX_MESSAGE_SIZE, OUTBOX_SIZE, LOG_DIR
)


class ServerConfig:
    """Server configuration class."""

    def __init__(self, host: str = DEFAULT_SERVER_HOST, port: int = DEFAULT_PORT,
                 recovery_grace_seconds: float = RECOVERY_GRACE_SECONDS,
                 max_message_size: int = MAX_MESSAGE_SIZE, outbox_size: int = OUTBOX_SIZE,
                 logs_dir: Optional[str] = LOG_DIR):
        self.host = host
        self.port = port

        # Connection settings
        self.recovery_grace_seconds = recovery_grace_seconds  # 0 disables session recovery
        self.max_message_size = max_message_size
        self.outbox_size = outbox_size

        # Logging configuration
        self.logs_dir = logs_dir

    @property
    def recovery_enabled(self) -> bool:
        return self.recovery_grace_seconds > 0
