"""
Typing aggregator.

Typing state is ephemeral and client-driven: the client sends ``stop_typing``
after its own inactivity timeout. There is no server-side expiry, so a flag
only goes stale until the owning session disconnects.
"""

from typing import Iterable, List

from server.chat.session import ConnectionSession


class TypingAggregator:
    """Sets and clears per-session typing flags."""

    def start(self, session: ConnectionSession) -> bool:
        """Set the flag. Returns True if it was not already set."""
        if not session.is_identified:
            return False
        changed = not session.typing
        session.typing = True
        return changed

    def stop(self, session: ConnectionSession) -> bool:
        """Clear the flag. Returns True if it was set."""
        changed = session.typing
        session.typing = False
        return changed

    def typing_names(self, sessions: Iterable[ConnectionSession]) -> List[str]:
        return [s.identity.name for s in sessions if s.typing and s.is_identified]
