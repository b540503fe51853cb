#!/usr/bin/env python3
"""
Chat Relay Server - TCP transport

Accepts client connections, reads line-delimited JSON frames and dispatches them
to the ChatServer. Each connection gets a reader loop (this module) and a writer
task that drains the connection's outbox.
"""

import asyncio
import json
from typing import Dict, Optional, Set

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from server.chat.chat_server import ChatServer
from server.chat.router import BroadcastRouter, CLOSE
from server.utils.config import ServerConfig
from server.utils.logger import logger
from common.constants import MessageTypes
from common.protocol_definitions import create_error_message


class ChatRelayServer:
    """Main server class that binds the chat coordinator to TCP connections."""

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.writers: Dict[str, asyncio.StreamWriter] = {}  # connection_id -> writer
        self.router = BroadcastRouter(self.config.outbox_size, on_overflow=self._drop_slow_consumer)
        self.chat_server = ChatServer(self.config, self.router)
        self.server: Optional[asyncio.AbstractServer] = None
        self.handlers: Set[asyncio.Task] = set()  # running handle_client tasks

    def _drop_slow_consumer(self, connection_id: str):
        """Close the transport of a connection whose outbox overflowed."""
        writer = self.writers.get(connection_id)
        if writer is not None:
            writer.close()

    async def _pump_outbox(self, connection_id: str, outbox: asyncio.Queue, writer: asyncio.StreamWriter):
        """Write queued frames to the socket until told to close."""
        try:
            while True:
                data = await outbox.get()
                if data is CLOSE:
                    break
                writer.write(data)
                await writer.drain()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Writer for connection={connection_id} stopped: {e}")

    async def _dispatch(self, connection_id: str, message: dict) -> Optional[str]:
        """
        Route one client frame. Returns the (possibly changed) connection id,
        or None when the client logged out.
        """
        msg_type = message.get('type', '')

        if msg_type == MessageTypes.CLAIM_IDENTITY:
            await self.chat_server.handle_claim(connection_id, message)
        elif msg_type == MessageTypes.CHAT_MESSAGE:
            await self.chat_server.handle_chat(connection_id, message)
        elif msg_type == MessageTypes.TYPING:
            await self.chat_server.handle_typing(connection_id, message)
        elif msg_type == MessageTypes.STOP_TYPING:
            await self.chat_server.handle_stop_typing(connection_id, message)
        elif msg_type == MessageTypes.RESUME:
            resumed_id = await self.chat_server.handle_resume(connection_id, message)
            if resumed_id != connection_id:
                self.writers[resumed_id] = self.writers.pop(connection_id)
            return resumed_id
        elif msg_type == MessageTypes.LOGOUT:
            logger.info(f"Logout request from connection={connection_id}")
            return None
        else:
            logger.warning(f"Unknown message type '{msg_type}' from connection={connection_id}")
        return connection_id

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """Handle individual client connection."""
        addr = writer.get_extra_info('peername')
        self.handlers.add(asyncio.current_task())

        session, outbox = await self.chat_server.connect()
        connection_id = session.connection_id
        self.writers[connection_id] = writer
        logger.log_connection(addr, connection_id)

        writer_task = asyncio.create_task(self._pump_outbox(connection_id, outbox, writer))
        recoverable = True

        try:
            while True:
                # Read line-delimited JSON
                data = await self._read_frame(reader)
                if data is None:
                    logger.warning(f"Message too large from connection={connection_id}")
                    self.router.send(connection_id, create_error_message("Message too large"))
                    await self._discard_line(reader)
                    continue
                if not data:
                    break

                try:
                    message = json.loads(data.decode('utf-8').strip())
                except (json.JSONDecodeError, UnicodeDecodeError) as e:
                    logger.error(f"Malformed JSON from connection={connection_id}: {e}")
                    self.router.send(connection_id, create_error_message("Malformed JSON"))
                    continue

                if not isinstance(message, dict) or not isinstance(message.get('type'), str):
                    logger.warning(f"Received message with invalid type from connection={connection_id}")
                    continue

                logger.debug(f"Received from connection={connection_id}: {message['type']}")
                next_id = await self._dispatch(connection_id, message)
                if next_id is None:
                    recoverable = False
                    break
                connection_id = next_id

        except asyncio.CancelledError:
            logger.info(f"Connection cancelled for connection={connection_id}")
            recoverable = False
            raise
        except (ConnectionError, OSError) as e:
            logger.error(f"Socket error for connection={connection_id}: {e}")
        finally:
            await self.chat_server.disconnect(connection_id, recoverable=recoverable)
            self.writers.pop(connection_id, None)
            try:
                await asyncio.wait_for(writer_task, timeout=1.0)
            except asyncio.TimeoutError:
                writer_task.cancel()
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            self.handlers.discard(asyncio.current_task())

    async def _read_frame(self, reader: asyncio.StreamReader) -> Optional[bytes]:
        """
        Read one line. Returns b'' at EOF, or None when the line is longer
        than the stream limit (the part already buffered stays unread).
        """
        try:
            return await reader.readuntil(b'\n')
        except asyncio.IncompleteReadError as e:
            return e.partial
        except asyncio.LimitOverrunError:
            return None

    async def _discard_line(self, reader: asyncio.StreamReader):
        """Skip input up to and including the next newline, or until EOF."""
        while True:
            try:
                await reader.readuntil(b'\n')
                return
            except asyncio.LimitOverrunError as e:
                await reader.readexactly(e.consumed)
            except asyncio.IncompleteReadError:
                return

    async def start(self):
        """Start listening. Returns once the socket is bound."""
        logger.configure_transcript(self.config.logs_dir)
        self.server = await asyncio.start_server(
            self.handle_client,
            self.config.host,
            self.config.port,
            limit=self.config.max_message_size + 1
        )

        addr = ', '.join(str(sock.getsockname()) for sock in self.server.sockets)
        logger.info(f"Server listening on {addr}")
        return self.server

    @property
    def bound_port(self) -> int:
        return self.server.sockets[0].getsockname()[1]

    async def serve_forever(self):
        """Start the server and serve until cancelled."""
        if self.server is None:
            await self.start()
        async with self.server:
            try:
                await self.server.serve_forever()
            finally:
                await self.chat_server.shutdown()

    async def stop(self):
        """Stop accepting connections, let handlers finish, then cancel recovery timers."""
        if self.server is not None:
            self.server.close()
            for writer in list(self.writers.values()):
                writer.close()
            if self.handlers:
                await asyncio.wait(list(self.handlers), timeout=2.0)
            await self.server.wait_closed()
        await self.chat_server.shutdown()
