"""
Client-side copy of the session, and the pure rule deciding when authoritative state replaces it.

The mirror is never edited in place: every change produces a new ClientMirror.
"""

from dataclasses import dataclass, replace
from typing import Optional

from src.core.models import Position, SessionState
from src.core.shared_types import Role


@dataclass(frozen=True)
class ClientMirror:
    """
    Last authoritative state the client adopted, plus an optional optimistic position on top of it.
    """

    role: Role
    state: SessionState
    speculative_position: Optional[Position] = None

    @property
    def position(self) -> Position:
        """What the client shows: the speculation if there is one, else the authoritative position."""
        return self.speculative_position or self.state.position

    @property
    def version(self) -> int:
        return self.state.version

    @property
    def is_speculating(self) -> bool:
        return self.speculative_position is not None

    def speculate(self, position: Position) -> "ClientMirror":
        return replace(self, speculative_position=position)


def reconcile(
    mirror: ClientMirror, incoming: SessionState, discard_speculation: bool = False
) -> ClientMirror:
    """
    Take the Session Agent's word, but only its most recent word.
    ----

    * newer version --> replace wholesale, the speculation goes with it
    * same version --> nothing new, unless the speculation was explicitly rejected
    * older version --> a late response overtaken by a push, ignore it
    """
    if incoming.version > mirror.version:
        return ClientMirror(role=mirror.role, state=incoming)
    if incoming.version == mirror.version and discard_speculation and mirror.is_speculating:
        return replace(mirror, speculative_position=None)
    return mirror
