"""
Chat client module.

This module handles client-side chat messaging functionality.
"""

import asyncio
import json
import re
import uuid
from typing import Dict, List, Optional, Set

from common.constants import MessageTypes, MENTION_PATTERN
from common.protocol_definitions import (
    ReplyRef, create_chat_message, create_claim_identity_message, create_resume_message,
    create_stop_typing_message, create_typing_message
)

_MENTION_RE = re.compile(MENTION_PATTERN)


class ChatClient:
    """Client-side chat functionality."""

    def __init__(self, writer: Optional[asyncio.StreamWriter] = None):
        self.writer = writer
        self.username: Optional[str] = None
        self.color: Optional[str] = None
        self.session_token: Optional[str] = None
        self.active_users: List[dict] = []
        self.typing_users: Set[str] = set()
        self._pending: Dict[str, asyncio.Future] = {}  # request_id -> response future

    def set_writer(self, writer: asyncio.StreamWriter):
        """Set the writer for sending messages."""
        self.writer = writer

    async def send_message(self, message: dict) -> bool:
        """Send a JSON message to the server."""
        if not self.writer:
            print("[ERROR] Not connected to server")
            return False

        try:
            msg_data = json.dumps(message).encode('utf-8') + b'\n'
            self.writer.write(msg_data)
            await self.writer.drain()
            return True
        except (ConnectionError, OSError) as e:
            print(f"[ERROR] Failed to send message: {e}")
            return False

    async def _request(self, message: dict, timeout: float) -> dict:
        """Send a request frame and wait for the matching result frame."""
        request_id = uuid.uuid4().hex
        message["request_id"] = request_id
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            if not await self.send_message(message):
                return {"success": False, "message": "Not connected to server"}
            return await asyncio.wait_for(future, timeout)
        finally:
            self._pending.pop(request_id, None)

    async def claim(self, username: str, color: str, timeout: float = 5.0) -> dict:
        """Claim a username and color. Returns the server's claim result."""
        return await self._request(create_claim_identity_message(username, color), timeout)

    async def resume(self, timeout: float = 5.0) -> dict:
        """Resume the previous session after a reconnect."""
        if not self.session_token:
            return {"success": False, "message": "No session to resume"}
        return await self._request(create_resume_message(self.session_token), timeout)

    def extract_mentions(self, text: str) -> List[str]:
        """Names mentioned in ``text`` that are currently active (or ourselves)."""
        known = {u.get('username') for u in self.active_users}
        mentions = []
        for name in _MENTION_RE.findall(text):
            if (name in known or name == self.username) and name not in mentions:
                mentions.append(name)
        return mentions

    async def send_chat(self, text: str, reply_to: Optional[ReplyRef] = None) -> bool:
        """Send a chat message, annotating mentions of active users."""
        return await self.send_message(create_chat_message(text, self.extract_mentions(text), reply_to))

    async def send_typing(self) -> bool:
        return await self.send_message(create_typing_message())

    async def send_stop_typing(self) -> bool:
        return await self.send_message(create_stop_typing_message())

    def typing_summary(self) -> str:
        """Human readable typing indicator."""
        users = sorted(self.typing_users)
        if not users:
            return ""
        if len(users) == 1:
            return f"{users[0]} is typing"
        if len(users) == 2:
            return f"{users[0]} and {users[1]} are typing"
        return "Multiple users are typing"

    async def handle_message(self, message: dict):
        """Handle different types of chat messages from server."""
        msg_type = message.get('type', '')

        if msg_type in (MessageTypes.CLAIM_RESULT, MessageTypes.RESUME_RESULT):
            self._handle_result(message)
        elif msg_type == MessageTypes.CHAT_MESSAGE:
            self._handle_chat_message(message)
        elif msg_type == MessageTypes.PAST_MESSAGES:
            self._handle_history_message(message)
        elif msg_type == MessageTypes.ACTIVE_USERS:
            self.active_users = message.get('users', [])
        elif msg_type == MessageTypes.USER_TYPING:
            if message.get('username') != self.username:
                self.typing_users.add(message.get('username'))
        elif msg_type == MessageTypes.USER_STOP_TYPING:
            self.typing_users.discard(message.get('username'))

    def _handle_result(self, message: dict):
        if message.get('success'):
            self.username = message.get('username', self.username)
            self.color = message.get('color', self.color)
            if message.get('session_token'):
                self.session_token = message['session_token']
        future = self._pending.get(message.get('request_id'))
        if future is not None and not future.done():
            future.set_result(message)

    def _handle_chat_message(self, message: dict):
        """Handle incoming chat message."""
        username = message.get('username')
        text = message.get('message', '')
        self.typing_users.discard(username)

        prefix = ""
        if message.get('reply_to_user'):
            prefix = f"(re {message['reply_to_user']}: {message.get('reply_to_text') or ''}) "
        marker = " *" if self.username in message.get('mentions', []) else ""
        print(f"[CHAT] {username}: {prefix}{text}{marker}")

    def _handle_history_message(self, message: dict):
        """Handle chat history replay."""
        messages = message.get('messages', [])
        count = message.get('count', 0)

        if count > 0:
            print(f"\n[HISTORY] Loading {count} previous message(s):")
            print("-" * 50)
            for msg in messages:
                timestamp = msg.get('timestamp', '')
                print(f"[{timestamp[:19]}] {msg.get('username', 'unknown')}: {msg.get('message', '')}")
            print("-" * 50)
        else:
            print("[HISTORY] No previous messages")
