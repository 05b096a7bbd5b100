"""
Boundary layer data model(s).

These objects are passed between the Session Agent, the client controller and the API layer.
(Decouples the pydantic models of the API layer and the python-chess objects of the rules layer from the information needed to send across boundaries)
"""

from dataclasses import dataclass, field, replace
from string import ascii_lowercase
from types import MappingProxyType
from typing import Mapping, Optional, Self

from src.core.exceptions import InvalidRequestError
from src.core.shared_types import PieceType, RejectReason, Role, Status

# Type aliases to make the models easier to read
Position = str  # FEN string
ParticipantId = str


def is_algebraic_square(value: str) -> bool:
    """'e4' style square names on an 8x8 board."""
    if len(value) != 2:
        return False
    file, rank = value[0], value[1]
    return file in ascii_lowercase[:8] and rank in "12345678"


def require_identifier(value: str, what: str = "participant_id") -> str:
    """Reject missing / blank identifiers before they reach any session logic."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequestError(f"{what} must be a non-empty string, got {value!r}.")
    return value


@dataclass(frozen=True)
class Move:
    """A move as a client proposes it: from-square, to-square and an optional promotion choice."""

    from_square: str
    to_square: str
    promotion: Optional[PieceType] = None

    def to_uci(self) -> str:
        suffix = self.promotion.value if self.promotion else ""
        return f"{self.from_square}{self.to_square}{suffix}"


@dataclass(frozen=True)
class SessionState:
    """
    Authoritative snapshot of one session. A new snapshot is produced for every committed change.
    ----
    roles is a read-only view over a private copy: whoever holds a snapshot cannot rewrite the role map.
    """

    session_id: str
    position: Position
    roles: Mapping[ParticipantId, Role]
    status: Status
    version: int = 0
    moves: tuple[str, ...] = ()
    winner: Optional[Role] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "roles", MappingProxyType(dict(self.roles)))

    def role_of(self, participant_id: ParticipantId) -> Optional[Role]:
        return self.roles.get(participant_id)

    def evolve(self, **changes) -> Self:
        """Copy with changes. The new snapshot takes its own copy of the role map."""
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        return cls(
            session_id=data["session_id"],
            position=data["position"],
            roles={pid: Role(role) for pid, role in data["roles"].items()},
            status=Status(data["status"]),
            version=int(data["version"]),
            moves=tuple(data.get("moves", ())),
            winner=Role(data["winner"]) if data.get("winner") else None,
        )


@dataclass(frozen=True)
class JoinResult:
    role: Role
    state: SessionState


@dataclass(frozen=True)
class MoveResult:
    """
    Outcome of a move proposal (or a resignation).
    ----
    ok=True  --> state is the newly committed state
    ok=False --> state is the current authoritative state, reason says why the proposal was rejected
    """

    ok: bool
    state: SessionState
    reason: Optional[RejectReason] = None
    detail: str = field(default="", compare=False)
