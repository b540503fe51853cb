"""
Server logging module.

This module handles server-side logging functionality.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from common.constants import LOG_DIR, CHAT_LOG_FILE


class ServerLogger:
    """Server logging class."""

    def __init__(self, logs_dir: Optional[str] = LOG_DIR, log_level: int = logging.INFO):
        # Set up main logger
        self.logger = logging.getLogger('chat_relay_server')
        self.logger.setLevel(log_level)

        # Remove existing handlers
        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)

        # Create console handler
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)

        # Create formatter
        formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_handler.setFormatter(formatter)

        # Add handler to logger
        self.logger.addHandler(console_handler)

        self.configure_transcript(logs_dir)

    def configure_transcript(self, logs_dir: Optional[str]):
        """Point the chat transcript at ``logs_dir``; None disables it."""
        self.logs_dir = Path(logs_dir) if logs_dir else None
        self.chat_log_path = self.logs_dir / CHAT_LOG_FILE if self.logs_dir else None

    def set_level(self, log_level: int):
        self.logger.setLevel(log_level)
        for handler in self.logger.handlers:
            handler.setLevel(log_level)

    def info(self, message: str):
        """Log info message."""
        self.logger.info(message)

    def error(self, message: str):
        """Log error message."""
        self.logger.error(message)

    def warning(self, message: str):
        """Log warning message."""
        self.logger.warning(message)

    def debug(self, message: str):
        """Log debug message."""
        self.logger.debug(message)

    def log_connection(self, addr: tuple, connection_id: str):
        """Log client connection."""
        self.info(f"New connection from {addr}, assigned connection={connection_id}")

    def log_claim(self, username: str, color: str, connection_id: str, previous: Optional[str] = None):
        """Log a successful identity claim."""
        if previous and previous != username:
            self.info(f"User '{previous}' is now '{username}' ({color}) on connection={connection_id}")
        else:
            self.info(f"User '{username}' ({color}) has joined/set their name on connection={connection_id}")

    def log_claim_rejected(self, connection_id: str, reason: str):
        """Log a rejected identity claim."""
        self.info(f"Claim rejected for connection={connection_id}: {reason}")

    def log_disconnect(self, username: Optional[str], connection_id: str):
        """Log user disconnect."""
        if username:
            self.info(f"User {username} (connection={connection_id}) disconnected and removed")
        else:
            self.info(f"Connection {connection_id} disconnected")

    def log_suspend(self, username: str, connection_id: str, grace_seconds: float):
        """Log a recoverable disconnect."""
        self.info(f"User {username} (connection={connection_id}) temporarily disconnected, "
                  f"holding identity for {grace_seconds}s")

    def log_resume(self, username: str, connection_id: str, replayed: int):
        """Log a resumed session."""
        self.info(f"User {username} (connection={connection_id}) resumed, replaying {replayed} missed message(s)")

    def log_chat(self, username: str, connection_id: str, message: str):
        """Log chat message."""
        self.info(f"Message from {username} (connection={connection_id}): {message}")
        self._write_to_file(self.chat_log_path, f"{datetime.now().isoformat()} | {username} ({connection_id}) | {message}")

    def log_error(self, operation: str, error: Exception):
        """Log error with operation context."""
        self.error(f"Error in {operation}: {error}")

    def _write_to_file(self, file_path: Optional[Path], content: str):
        """Write content to log file."""
        if file_path is None:
            return
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, 'a', encoding='utf-8') as f:
                f.write(content + '\n')
        except OSError as e:
            self.error(f"Failed to write to log file {file_path}: {e}")


# Global logger instance
logger = ServerLogger(logs_dir=None)  # transcript enabled by ChatRelayServer.start()
