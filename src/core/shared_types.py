"""
Type definitions used across layers
"""

from enum import StrEnum


class Status(StrEnum):
    IN_PROGRESS = "inProgress"
    CHECK = "check"
    CHECKMATE = "checkmate"
    STALEMATE = "stalemate"
    DRAW = "draw"
    RESIGNED = "resigned"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self not in (Status.IN_PROGRESS, Status.CHECK)


class Role(StrEnum):
    FIRST_SIDE = "firstSide"
    SECOND_SIDE = "secondSide"
    OBSERVER = "observer"

    @property
    def is_side(self) -> bool:
        return self != Role.OBSERVER

    def opponent(self) -> "Role":
        """Other side of the board. Observers have no opponent."""
        if self == Role.FIRST_SIDE:
            return Role.SECOND_SIDE
        if self == Role.SECOND_SIDE:
            return Role.FIRST_SIDE
        raise ValueError("An observer has no opponent.")


# --- the seats a joining participant can ask for. "any" takes the first free side.
class PreferredRole(StrEnum):
    FIRST_SIDE = "firstSide"
    SECOND_SIDE = "secondSide"
    ANY = "any"


class RejectReason(StrEnum):
    NOT_YOUR_TURN = "NotYourTurn"
    STALE_STATE = "StaleState"
    ILLEGAL_MOVE = "IllegalMove"
    GAME_OVER = "GameOver"


class PieceType(StrEnum):
    """Promotion choices (UCI suffix letters)."""

    KNIGHT = "n"
    BISHOP = "b"
    ROOK = "r"
    QUEEN = "q"


SIDES: tuple[Role, Role] = (Role.FIRST_SIDE, Role.SECOND_SIDE)
