"""Requests and Response models"""

from typing import Optional, Self

from pydantic import BaseModel, field_validator

from src.core.exceptions import InvalidRequestError
from src.core.models import JoinResult, MoveResult, SessionState, is_algebraic_square
from src.core.shared_types import PieceType, PreferredRole, RejectReason, Role, Status

ParticipantId = str


def _validate_identifier(value: str) -> str:
    if not value.strip():
        raise InvalidRequestError("participant_id must not be empty.")
    return value


# --- REQUEST MODELS ---
class JoinRequest(BaseModel):
    participant_id: ParticipantId
    preferred_role: PreferredRole = PreferredRole.ANY

    @field_validator("participant_id")
    @classmethod
    def validate_participant_id(cls, value: str) -> str:
        return _validate_identifier(value)


class MoveRequest(BaseModel):
    participant_id: ParticipantId
    from_square: str
    to_square: str
    promote_to: Optional[PieceType] = None
    claimed_base_position: str

    @field_validator("participant_id")
    @classmethod
    def validate_participant_id(cls, value: str) -> str:
        return _validate_identifier(value)

    @field_validator(*["from_square", "to_square"])
    @classmethod
    def validate_square(cls, value: str) -> str:
        if not is_algebraic_square(value):
            raise InvalidRequestError(
                f"Cannot interpret {value!r} as a valid square name."
            )
        return value

    @field_validator("claimed_base_position")
    @classmethod
    def validate_base_position(cls, value: str) -> str:
        parts = value.strip().split(" ")
        if len(parts) != 6:
            raise InvalidRequestError(
                "FEN string must contain 6 space-separated parts."
            )
        return value


class ResignRequest(BaseModel):
    participant_id: ParticipantId

    @field_validator("participant_id")
    @classmethod
    def validate_participant_id(cls, value: str) -> str:
        return _validate_identifier(value)


# --- RESPONSE MODELS ---
class SessionStateResponse(BaseModel):
    session_id: str
    position: str
    roles: dict[ParticipantId, Role]
    status: Status
    version: int
    moves: list[str]
    winner: Optional[Role] = None

    @classmethod
    def from_state(cls, state: SessionState) -> Self:
        return cls(
            session_id=state.session_id,
            position=state.position,
            roles=dict(state.roles),
            status=state.status,
            version=state.version,
            moves=list(state.moves),
            winner=state.winner,
        )


class JoinResponse(BaseModel):
    role: Role
    state: SessionStateResponse

    @classmethod
    def from_result(cls, result: JoinResult) -> Self:
        return cls(role=result.role, state=SessionStateResponse.from_state(result.state))


class MoveResponse(BaseModel):
    ok: bool
    state: SessionStateResponse
    reason: Optional[RejectReason] = None
    detail: Optional[str] = None

    @classmethod
    def from_result(cls, result: MoveResult) -> Self:
        return cls(
            ok=result.ok,
            state=SessionStateResponse.from_state(result.state),
            reason=result.reason,
            detail=result.detail or None,
        )


class LegalMovesResponse(BaseModel):
    session_id: str
    participant_id: ParticipantId
    legal_moves: list[str]
