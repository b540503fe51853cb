"""
Identity registry.

Tracks which display names are claimed and by which connection. Methods are
synchronous and must only be called while the owning ChatServer holds its lock,
which makes claim/release linearizable.
"""

import re
from typing import Dict, Optional

from common.constants import COLOR_PATTERN
from common.errors import InvalidInput, NameTaken
from common.protocol_definitions import Identity

_COLOR_RE = re.compile(COLOR_PATTERN)


def validate_identity(name, color) -> Identity:
    """Validate raw claim input and return the normalized identity."""
    if not isinstance(name, str) or not name.strip():
        raise InvalidInput('Invalid username.')
    if not isinstance(color, str) or not _COLOR_RE.match(color):
        raise InvalidInput('Invalid color code.')
    return Identity(name=name.strip(), color=color)


class IdentityRegistry:
    """Name -> owning connection map with global uniqueness."""

    def __init__(self):
        self._owners: Dict[str, str] = {}  # name -> connection_id
        self._names: Dict[str, str] = {}  # connection_id -> name

    def claim(self, connection_id: str, name, color) -> Identity:
        """
        Reserve ``name`` for ``connection_id``.

        Re-claiming the name this connection already holds only updates the
        color. Claiming a different name swaps the old reservation for the new
        one in a single step.
        """
        identity = validate_identity(name, color)

        owner = self._owners.get(identity.name)
        if owner is not None and owner != connection_id:
            raise NameTaken('Username is already taken.')

        previous = self._names.get(connection_id)
        if previous is not None and previous != identity.name:
            del self._owners[previous]

        self._owners[identity.name] = connection_id
        self._names[connection_id] = identity.name
        return identity

    def release(self, connection_id: str) -> Optional[str]:
        """Free whatever name this connection holds. Idempotent."""
        name = self._names.pop(connection_id, None)
        if name is not None:
            self._owners.pop(name, None)
        return name

    def owner_of(self, name: str) -> Optional[str]:
        return self._owners.get(name)

    def name_of(self, connection_id: str) -> Optional[str]:
        return self._names.get(connection_id)

    def __contains__(self, name: str) -> bool:
        return name in self._owners

    def __len__(self) -> int:
        return len(self._owners)
