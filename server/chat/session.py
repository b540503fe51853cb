"""
Per-connection session state.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from common.protocol_definitions import Identity


class SessionPhase(str, Enum):
    CONNECTED = 'connected'
    IDENTIFIED = 'identified'
    SUSPENDED = 'suspended'  # transport dropped, waiting for resume within the grace window
    DISCONNECTED = 'disconnected'


def new_connection_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class ConnectionSession:
    """State of one logical connection."""
    connection_id: str
    identity: Optional[Identity] = None
    typing: bool = False
    phase: SessionPhase = SessionPhase.CONNECTED
    session_token: Optional[str] = None
    history_sent: bool = False
    suspended_at_seq: int = 0
    connected_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def is_identified(self) -> bool:
        return self.identity is not None and self.phase in (SessionPhase.IDENTIFIED, SessionPhase.SUSPENDED)

    @property
    def is_live(self) -> bool:
        """True while the session has a transport attached."""
        return self.phase in (SessionPhase.CONNECTED, SessionPhase.IDENTIFIED)

    @property
    def name(self) -> Optional[str]:
        return self.identity.name if self.identity else None

    def identify(self, identity: Identity):
        """Enter (or re-enter) the identified phase."""
        self.identity = identity
        self.phase = SessionPhase.IDENTIFIED
        if self.session_token is None:
            self.session_token = uuid.uuid4().hex

    def suspend(self, last_seq: int):
        self.phase = SessionPhase.SUSPENDED
        self.typing = False
        self.suspended_at_seq = last_seq

    def resume(self):
        self.phase = SessionPhase.IDENTIFIED

    def close(self):
        self.phase = SessionPhase.DISCONNECTED
        self.typing = False
