"""
Append-only in-memory message log.

The log is unbounded for the lifetime of the process. Appends must happen under
the ChatServer lock so sequence numbers are assigned without races.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from common.protocol_definitions import ChatMessage, Identity, ReplyRef


class MessageLog:
    """Ordered chat history replayed to new joiners."""

    def __init__(self):
        self._messages: List[ChatMessage] = []

    def append(self, author: Identity, text: str, reply_to: Optional[ReplyRef] = None,
               mentions: Optional[List[str]] = None) -> ChatMessage:
        """Stamp and store a new message."""
        seq = len(self._messages) + 1
        message = ChatMessage(
            id=f"{seq:08x}-{uuid.uuid4().hex[:8]}",
            seq=seq,
            author=author,
            text=text,
            timestamp=datetime.now().isoformat(),
            reply_to=reply_to,
            mentions=list(mentions or [])
        )
        self._messages.append(message)
        return message

    def history(self) -> List[ChatMessage]:
        """Copy of the full log in append order."""
        return list(self._messages)

    def since(self, seq: int) -> List[ChatMessage]:
        """Messages appended after ``seq``."""
        return self._messages[max(seq, 0):]

    @property
    def last_seq(self) -> int:
        return len(self._messages)

    def __len__(self) -> int:
        return len(self._messages)
