"""Protocol rules engine (python-chess backed for now, could be any deterministic rules implementation)."""

from typing import Optional, Protocol

from src.core.models import Move, Position
from src.core.shared_types import Role, Status


class RulesEngine(Protocol):
    """
    Legality / turn-order oracle for one game type.
    ----
    Implementations must be deterministic and side-effect-free: positions go in, new positions come out.
    """

    def initial_position(self) -> Position:
        """Position a fresh session starts from."""
        ...

    def apply(self, position: Position, move: Move) -> Position:
        """Position after the move. Raises IllegalMoveError if the move is not legal in this position."""
        ...

    def side_to_move(self, position: Position) -> Role:
        """FIRST_SIDE or SECOND_SIDE."""
        ...

    def status(self, position: Position) -> Status:
        """Status as far as the position alone can tell (never RESIGNED / ABANDONED)."""
        ...

    def owner_of(self, position: Position, square: str) -> Optional[Role]:
        """Side owning the piece on the square, None for an empty square."""
        ...

    def legal_moves(self, position: Position) -> list[str]:
        """Legal moves (UCI) for the side to move."""
        ...
