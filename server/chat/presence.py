"""
Presence directory.

A pure projection over the live sessions: nothing here is stored separately.
"""

import re
from typing import Iterable, List, Set

from common.constants import MENTION_PATTERN
from common.protocol_definitions import PresenceEntry
from server.chat.session import ConnectionSession

_MENTION_RE = re.compile(MENTION_PATTERN)


class PresenceDirectory:
    """Active user list and mention resolution."""

    def snapshot(self, sessions: Iterable[ConnectionSession]) -> List[PresenceEntry]:
        """Presence entries for every identified session, in insertion order."""
        return [
            PresenceEntry(id=s.connection_id, username=s.identity.name, color=s.identity.color)
            for s in sessions
            if s.is_identified
        ]

    def names(self, sessions: Iterable[ConnectionSession]) -> Set[str]:
        return {s.identity.name for s in sessions if s.is_identified}

    def resolve_mentions(self, text: str, raw_mentions, author_name: str,
                         sessions: Iterable[ConnectionSession]) -> List[str]:
        """
        Validate mention candidates against the current presence.

        Candidates are the client-supplied names that appear as a whole
        ``@name`` token in the text, plus ``@word`` tokens parsed from the
        text. A candidate survives if it is an active name or the author's own name;
        anything else is dropped silently.
        """
        valid = self.names(sessions)
        valid.add(author_name)

        candidates: List[str] = []
        if isinstance(raw_mentions, (list, tuple)):
            for raw in raw_mentions:
                if isinstance(raw, str) and raw and re.search(rf'@{re.escape(raw)}(?![A-Za-z0-9_])', text):
                    candidates.append(raw)
        candidates.extend(_MENTION_RE.findall(text))

        mentions: List[str] = []
        for name in candidates:
            if name in valid and name not in mentions:
                mentions.append(name)
        return mentions
