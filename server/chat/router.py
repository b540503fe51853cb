"""
Broadcast router.

Each connection owns a bounded outbox queue of encoded frames. Fan-out only
enqueues, so it can run under the ChatServer lock and every connection sees
events in commit order; the socket writes happen in the connection's writer
task (see server.main_server).
"""

import asyncio
import json
from typing import Callable, Dict, Optional

from server.utils.logger import logger

CLOSE = None  # outbox sentinel: writer task should close the transport


def encode_message(message: dict) -> bytes:
    """Serialize one frame as a JSON line."""
    return json.dumps(message).encode('utf-8') + b'\n'


class BroadcastRouter:
    """Fans events out to connection outboxes."""

    def __init__(self, outbox_size: int = 0, on_overflow: Optional[Callable[[str], None]] = None):
        self.outbox_size = outbox_size
        self.on_overflow = on_overflow
        self._outboxes: Dict[str, asyncio.Queue] = {}

    def attach(self, connection_id: str) -> asyncio.Queue:
        """Create the outbox for a new connection."""
        queue = asyncio.Queue(maxsize=self.outbox_size)
        self._outboxes[connection_id] = queue
        return queue

    def detach(self, connection_id: str, close: bool = True):
        """Forget a connection's outbox, optionally telling its writer to stop."""
        queue = self._outboxes.pop(connection_id, None)
        if queue is not None and close:
            self._put(connection_id, queue, CLOSE, force=True)

    def rebind(self, old_id: str, new_id: str):
        """Move an outbox to a new connection id (session resume)."""
        queue = self._outboxes.pop(old_id, None)
        if queue is not None:
            self._outboxes[new_id] = queue

    def is_attached(self, connection_id: str) -> bool:
        return connection_id in self._outboxes

    def send(self, connection_id: str, message: dict) -> bool:
        """Queue a frame for a single connection."""
        queue = self._outboxes.get(connection_id)
        if queue is None:
            return False
        return self._put(connection_id, queue, encode_message(message))

    def broadcast(self, message: dict, exclude: Optional[str] = None) -> int:
        """
        Queue a frame for every attached connection.
        Optionally exclude a specific connection. Returns the number of recipients.
        """
        data = encode_message(message)
        delivered = 0
        for connection_id, queue in list(self._outboxes.items()):
            if exclude is not None and connection_id == exclude:
                continue
            if self._put(connection_id, queue, data):
                delivered += 1
        return delivered

    def _put(self, connection_id: str, queue: asyncio.Queue, item, force: bool = False) -> bool:
        try:
            queue.put_nowait(item)
            return True
        except asyncio.QueueFull:
            if force:
                # Drop the backlog so the close sentinel always gets through
                while not queue.empty():
                    queue.get_nowait()
                queue.put_nowait(item)
                return True
            logger.warning(f"Outbox full for connection={connection_id}, dropping slow consumer")
            self._outboxes.pop(connection_id, None)
            self._put(connection_id, queue, CLOSE, force=True)
            if self.on_overflow is not None:
                self.on_overflow(connection_id)
            return False

    def __len__(self) -> int:
        return len(self._outboxes)
