"""
Client logging module.

This module handles client-side logging functionality.
"""

import logging
import sys


class ClientLogger:
    """Client logging class."""

    def __init__(self, log_level: int = logging.INFO):
        self.logger = logging.getLogger('chat_relay_client')
        self.logger.setLevel(log_level)

        # Remove existing handlers
        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)

        # Create console handler
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)

        # Create formatter
        formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_handler.setFormatter(formatter)

        # Add handler to logger
        self.logger.addHandler(console_handler)

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

    def log_connection(self, host: str, port: int, success: bool):
        """Log connection attempt."""
        status = "Connected" if success else "Failed to connect"
        self.info(f"{status} to {host}:{port}")

    def log_claim(self, username: str, color: str, success: bool, reason: str = ""):
        """Log identity claim attempt."""
        if success:
            self.info(f"[SUCCESS] Chatting as '{username}' ({color})")
        else:
            self.warning(f"[WARN] Could not claim '{username}': {reason}")

    def show_participants(self, users: list):
        """Show active user list."""
        self.info(f"[INFO] Active users ({len(users)}):")
        for u in users:
            self.info(f"  - {u.get('username')} ({u.get('color')})")

    def show_user_joined(self, username: str, current_username: str):
        """Show user joined notification."""
        if username != current_username:
            self.info(f"[EVENT] User '{username}' joined")

    def show_user_left(self, username: str):
        """Show user left notification."""
        self.info(f"[EVENT] User '{username}' left")

    def show_interactive_mode_info(self):
        """Show interactive mode information."""
        self.info("[INFO] Type messages to chat (Ctrl+C to exit)")
        self.info("[INFO] Commands: /name NAME  /color #RRGGBB  /users  /quit")

    def log_reconnect_attempt(self, delay: float, attempt: int, total: int):
        """Log a scheduled reconnect."""
        self.info(f"[INFO] Attempting to reconnect in {delay}s (attempt {attempt}/{total})...")

    def log_session_restored(self, username: str, resumed: bool):
        """Log the outcome of restoring a session after reconnecting."""
        if resumed:
            self.info(f"[INFO] Session resumed as '{username}'")
        else:
            self.info(f"[INFO] Previous session expired, claiming '{username}' again")

    def show_typing(self, summary: str):
        """Show the typing indicator line."""
        if summary:
            self.info(f"[TYPING] {summary}...")

    def show_server_error(self, message: dict):
        """Show an error frame sent by the server."""
        code = message.get('code')
        suffix = f" ({code})" if code else ""
        self.error(f"[ERROR] Server error: {message.get('message', 'Unknown error')}{suffix}")

    def log_error(self, operation: str, error: Exception):
        """Log error with operation context."""
        self.error(f"Error in {operation}: {error}")


# Global logger instance
logger = ClientLogger()
