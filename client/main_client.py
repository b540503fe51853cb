#!/usr/bin/env python3
"""
Chat Relay Client

Connects to the relay over TCP, claims an identity and exchanges chat and typing
events. On a dropped connection it reconnects with exponential backoff and
resumes its previous session when the server still holds it.
"""

import asyncio
import json
import sys
import os
from typing import Optional

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from client.chat.chat_client import ChatClient
from client.utils.config import ClientConfig
from client.utils.logger import logger
from common.constants import MessageTypes, DEFAULT_COLOR, MAX_MESSAGE_SIZE
from common.protocol_definitions import ReplyRef, create_logout_message


class ChatRelayClient:
    """Main client class that owns the connection and the chat module."""

    def __init__(self, host: str = 'localhost', port: int = 9000, username: str = None,
                 color: str = DEFAULT_COLOR, record_events: bool = False):
        self.config = ClientConfig(host, port, username, color)
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self.running = False
        self.chat_client = ChatClient()
        # Every received frame is kept here when record_events is set
        self.events: Optional[asyncio.Queue] = asyncio.Queue() if record_events else None
        self.listener_task: Optional[asyncio.Task] = None
        self._typing_task: Optional[asyncio.Task] = None
        self._restore_task: Optional[asyncio.Task] = None

    async def connect(self, retry_count: int = 1, base_delay: float = 1.0) -> bool:
        """Establish connection to the server with retry logic and exponential backoff."""
        attempt = 0

        while attempt < retry_count:
            try:
                self.reader, self.writer = await asyncio.open_connection(
                    self.config.host, self.config.port, limit=MAX_MESSAGE_SIZE + 1
                )
                logger.log_connection(self.config.host, self.config.port, True)
                self.running = True
                self.chat_client.set_writer(self.writer)
                return True
            except OSError as e:
                attempt += 1
                logger.log_connection(self.config.host, self.config.port, False)
                logger.log_error("connection", e)

                if attempt < retry_count:
                    delay = base_delay * (2 ** (attempt - 1))  # Exponential backoff
                    logger.info(f"[INFO] Retrying connection in {delay}s (attempt {attempt}/{retry_count})...")
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"[ERROR] Failed to connect after {retry_count} attempts")
        return False

    async def start(self, retry_count: int = 1) -> bool:
        """Connect and start the background listener."""
        if not await self.connect(retry_count=retry_count):
            return False
        self.listener_task = asyncio.create_task(self.listen_for_messages())
        return True

    async def listen_for_messages(self):
        """Listen for incoming messages from server with automatic reconnection."""
        while self.running:
            try:
                data = await self.reader.readline()
                if not data:
                    if not self.running:
                        break
                    logger.info("[INFO] Server closed connection, attempting to reconnect...")
                    if not await self._reconnect():
                        break
                    continue

                try:
                    message = json.loads(data.decode('utf-8').strip())
                except json.JSONDecodeError as e:
                    logger.error(f"[ERROR] Malformed JSON received: {e}")
                    continue
                await self.handle_message(message)

            except asyncio.CancelledError:
                break
            except (ConnectionError, OSError) as e:
                logger.error(f"[ERROR] Connection lost: {e}")
                if not self.running or not await self._reconnect():
                    break
        self.running = False

    async def _reconnect(self) -> bool:
        """Reconnect to the server with exponential backoff."""
        for attempt in range(self.config.reconnect_attempts):
            delay = self.config.reconnect_delay_base * (2 ** attempt)
            logger.log_reconnect_attempt(delay, attempt + 1, self.config.reconnect_attempts)
            await asyncio.sleep(delay)

            if await self.connect(retry_count=1):
                logger.info("[INFO] Reconnected successfully!")
                # The listener must keep reading for the resume result to arrive
                self._restore_task = asyncio.create_task(self._restore_session())
                return True

        logger.error("[ERROR] Failed to reconnect after multiple attempts")
        self.running = False
        return False

    async def _restore_session(self):
        """Resume the held session, or claim the identity again if it expired."""
        try:
            result = await self.chat_client.resume()
        except asyncio.TimeoutError:
            result = {"success": False}
        if result.get('success'):
            logger.log_session_restored(self.chat_client.username, True)
            return
        if self.chat_client.username:
            logger.log_session_restored(self.chat_client.username, False)
            await self.claim(self.chat_client.username, self.chat_client.color)

    async def handle_message(self, message: dict):
        """Handle different types of messages from server."""
        msg_type = message.get('type', '')
        await self.chat_client.handle_message(message)

        if msg_type == MessageTypes.ACTIVE_USERS:
            logger.debug(f"[INFO] {len(message.get('users', []))} active user(s)")
        elif msg_type == MessageTypes.USER_JOINED:
            logger.show_user_joined(message.get('username'), self.chat_client.username)
        elif msg_type == MessageTypes.USER_LEFT:
            logger.show_user_left(message.get('username'))
        elif msg_type in (MessageTypes.USER_TYPING, MessageTypes.USER_STOP_TYPING):
            logger.show_typing(self.chat_client.typing_summary())
        elif msg_type == MessageTypes.ERROR:
            logger.show_server_error(message)

        if self.events is not None:
            self.events.put_nowait(message)

    async def next_event(self, *types: str, timeout: float = 5.0) -> dict:
        """Wait for the next recorded frame of one of ``types``, skipping others."""
        if self.events is None:
            raise RuntimeError("Client was created without record_events")

        async def _next():
            while True:
                message = await self.events.get()
                if not types or message.get('type') in types:
                    return message

        return await asyncio.wait_for(_next(), timeout)

    async def claim(self, username: str = None, color: str = None) -> dict:
        """Claim an identity, defaulting to the configured one."""
        username = username or self.config.username
        color = color or self.config.color
        try:
            result = await self.chat_client.claim(username, color)
        except asyncio.TimeoutError:
            result = {"success": False, "message": "Timed out waiting for the server"}
        logger.log_claim(username, color, bool(result.get('success')), result.get('message', ''))
        return result

    async def send_chat(self, text: str, reply_to: Optional[ReplyRef] = None) -> bool:
        """Send a chat message; the server clears our typing state."""
        if self._typing_task is not None:
            self._typing_task.cancel()
            self._typing_task = None
        return await self.chat_client.send_chat(text, reply_to)

    async def notify_typing(self):
        """
        Report a keystroke. Sends ``typing`` once, then ``stop_typing`` after
        ``typing_timeout`` seconds without further keystrokes.
        """
        if self._typing_task is None:
            await self.chat_client.send_typing()
        else:
            self._typing_task.cancel()
        self._typing_task = asyncio.create_task(self._stop_typing_later())

    async def _stop_typing_later(self):
        await asyncio.sleep(self.config.typing_timeout)
        self._typing_task = None
        await self.chat_client.send_stop_typing()

    async def logout(self):
        """Leave for good: the server releases our name immediately."""
        self.running = False
        await self.chat_client.send_message(create_logout_message())

    async def close(self):
        """Stop background tasks and close the connection."""
        self.running = False
        for task in (self._typing_task, self._restore_task, self.listener_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        if self.writer:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except (ConnectionError, OSError):
                pass
        logger.info("[INFO] Disconnected from server")

    async def _handle_command(self, line: str) -> bool:
        """Handle a slash command. Returns False when the user wants to quit."""
        command, _, arg = line.partition(' ')
        arg = arg.strip()
        if command == '/quit':
            return False
        if command == '/name' and arg:
            await self.claim(arg, self.chat_client.color)
        elif command == '/color' and arg:
            await self.claim(self.chat_client.username, arg)
        elif command == '/users':
            logger.show_participants(self.chat_client.active_users)
        else:
            logger.show_interactive_mode_info()
        return True

    async def interactive_mode(self):
        """Run client with interactive chat input."""
        if not await self.start(retry_count=self.config.reconnect_attempts):
            return

        result = await self.claim()
        if not result.get('success'):
            logger.info("[INFO] Use /name NAME to pick another username")

        logger.show_interactive_mode_info()
        loop = asyncio.get_running_loop()

        try:
            while self.running:
                user_input = await loop.run_in_executor(None, sys.stdin.readline)
                if not user_input:
                    break
                line = user_input.strip()
                if not line:
                    continue
                if line.startswith('/'):
                    if not await self._handle_command(line):
                        break
                else:
                    await self.send_chat(line)
        except asyncio.CancelledError:
            pass
        finally:
            await self.logout()
            await asyncio.sleep(0.5)  # Give server time to process
            await self.close()
