"""
Protocol definitions for the chat relay.

This module defines the message structures and data formats used in communication
between client and server components. Every frame on the wire is a single JSON
object terminated by a newline, with a ``type`` field from ``MessageTypes``.
"""

from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, asdict
from datetime import datetime

from common.constants import MessageTypes


@dataclass(frozen=True)
class Identity:
    """Display identity claimed by a connection."""
    name: str
    color: str


@dataclass(frozen=True)
class ReplyRef:
    """Reply metadata as supplied by the sender."""
    id: Optional[str] = None
    author: Optional[str] = None
    text: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> Optional['ReplyRef']:
        """Build a reply reference from chat payload fields, or None if absent."""
        reply_id = data.get('reply_to_id') or None
        author = data.get('reply_to_user') or None
        text = data.get('reply_to_text') or None
        if reply_id is None and author is None and text is None:
            return None
        return cls(id=reply_id, author=author, text=text)


@dataclass(frozen=True)
class ChatMessage:
    """Chat message structure. Immutable once appended to the log."""
    id: str
    seq: int
    author: Identity
    text: str
    timestamp: str
    reply_to: Optional[ReplyRef] = None
    mentions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        reply = self.reply_to or ReplyRef()
        return {
            "type": MessageTypes.CHAT_MESSAGE,
            "id": self.id,
            "seq": self.seq,
            "username": self.author.name,
            "color": self.author.color,
            "message": self.text,
            "timestamp": self.timestamp,
            "reply_to_id": reply.id,
            "reply_to_text": reply.text,
            "reply_to_user": reply.author,
            "mentions": list(self.mentions)
        }


@dataclass(frozen=True)
class PresenceEntry:
    """One row of the active users list."""
    id: str
    username: str
    color: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def create_claim_identity_message(username: str, color: str, request_id: Optional[str] = None) -> Dict[str, Any]:
    """Create a claim identity request."""
    return {
        "type": MessageTypes.CLAIM_IDENTITY,
        "request_id": request_id,
        "username": username,
        "color": color
    }


def create_chat_message(text: str, mentions: Optional[List[str]] = None,
                        reply_to: Optional[ReplyRef] = None) -> Dict[str, Any]:
    """Create a chat message."""
    reply = reply_to or ReplyRef()
    return {
        "type": MessageTypes.CHAT_MESSAGE,
        "message": text,
        "mentions": list(mentions or []),
        "reply_to_id": reply.id,
        "reply_to_text": reply.text,
        "reply_to_user": reply.author
    }


def create_typing_message() -> Dict[str, Any]:
    """Create a typing notification."""
    return {"type": MessageTypes.TYPING}


def create_stop_typing_message() -> Dict[str, Any]:
    """Create a stop typing notification."""
    return {"type": MessageTypes.STOP_TYPING}


def create_resume_message(session_token: str, request_id: Optional[str] = None) -> Dict[str, Any]:
    """Create a session resume request."""
    return {
        "type": MessageTypes.RESUME,
        "request_id": request_id,
        "session_token": session_token
    }


def create_logout_message() -> Dict[str, Any]:
    """Create a logout message."""
    return {
        "type": MessageTypes.LOGOUT
    }


def create_error_message(message: str, code: Optional[str] = None) -> Dict[str, Any]:
    """Create an error message."""
    return {
        "type": MessageTypes.ERROR,
        "message": message,
        "code": code
    }


def create_claim_result_message(request_id: Optional[str], success: bool, message: str,
                                identity: Optional[Identity] = None, code: Optional[str] = None,
                                session_token: Optional[str] = None) -> Dict[str, Any]:
    """Create the response to a claim identity request."""
    result = {
        "type": MessageTypes.CLAIM_RESULT,
        "request_id": request_id,
        "success": success,
        "message": message,
        "code": code
    }
    if identity is not None:
        result["username"] = identity.name
        result["color"] = identity.color
        result["session_token"] = session_token
    return result


def create_resume_result_message(request_id: Optional[str], success: bool, message: str,
                                 identity: Optional[Identity] = None) -> Dict[str, Any]:
    """Create the response to a resume request."""
    result = {
        "type": MessageTypes.RESUME_RESULT,
        "request_id": request_id,
        "success": success,
        "message": message
    }
    if identity is not None:
        result["username"] = identity.name
        result["color"] = identity.color
    return result


def create_past_messages_message(messages: List[ChatMessage]) -> Dict[str, Any]:
    """Create a history replay message."""
    return {
        "type": MessageTypes.PAST_MESSAGES,
        "messages": [m.to_dict() for m in messages],
        "count": len(messages)
    }


def create_active_users_message(entries: List[PresenceEntry]) -> Dict[str, Any]:
    """Create an active users list message."""
    return {
        "type": MessageTypes.ACTIVE_USERS,
        "users": [e.to_dict() for e in entries]
    }


def create_user_joined_message(identity: Identity, previous_username: Optional[str] = None) -> Dict[str, Any]:
    """Create a user joined message."""
    return {
        "type": MessageTypes.USER_JOINED,
        "username": identity.name,
        "color": identity.color,
        "previous_username": previous_username,
        "timestamp": datetime.now().isoformat()
    }


def create_user_left_message(username: str) -> Dict[str, Any]:
    """Create a user left message."""
    return {
        "type": MessageTypes.USER_LEFT,
        "username": username,
        "timestamp": datetime.now().isoformat()
    }


def create_user_typing_message(username: str) -> Dict[str, Any]:
    """Create a user typing broadcast."""
    return {
        "type": MessageTypes.USER_TYPING,
        "username": username
    }


def create_user_stop_typing_message(username: str) -> Dict[str, Any]:
    """Create a user stop typing broadcast."""
    return {
        "type": MessageTypes.USER_STOP_TYPING,
        "username": username
    }
