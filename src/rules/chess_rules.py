"""Implementation of the RulesEngine using python-chess"""

from typing import Optional

import chess

from src.core.exceptions import IllegalMoveError
from src.core.models import Move, Position, is_algebraic_square
from src.core.shared_types import Role, Status

COLOR_TO_ROLE: dict[chess.Color, Role] = {
    chess.WHITE: Role.FIRST_SIDE,
    chess.BLACK: Role.SECOND_SIDE,
}


class ChessRules:
    """Standard chess. White is the first side, black the second."""

    def initial_position(self) -> Position:
        return chess.STARTING_FEN

    def apply(self, position: Position, move: Move) -> Position:
        """
        Play the move on a fresh board built from the position.
        ----

        1. the squares must be proper algebraic names
        2. the move must be in the set of legal moves (this covers wrong pieces, blocked paths, leaving the king in check, promotions)
        3. return the FEN of the resulting position
        """
        board = self._board(position)

        if not (is_algebraic_square(move.from_square) and is_algebraic_square(move.to_square)):
            raise IllegalMoveError(f"Cannot interpret {move.to_uci()!r} as a move.")

        try:
            candidate = chess.Move.from_uci(move.to_uci())
        except ValueError as exc:
            raise IllegalMoveError(f"Cannot interpret {move.to_uci()!r} as a move.") from exc
        if not board.is_legal(candidate):
            raise IllegalMoveError(f"Move not allowed: {move.to_uci()}")

        board.push(candidate)
        return board.fen()

    def side_to_move(self, position: Position) -> Role:
        return COLOR_TO_ROLE[self._board(position).turn]

    def status(self, position: Position) -> Status:
        """NOTE repetition draws need the game history, a single position cannot tell."""
        board = self._board(position)
        if board.is_checkmate():
            return Status.CHECKMATE
        if board.is_stalemate():
            return Status.STALEMATE
        if board.is_insufficient_material() or board.is_fifty_moves():
            return Status.DRAW
        if board.is_check():
            return Status.CHECK
        return Status.IN_PROGRESS

    def owner_of(self, position: Position, square: str) -> Optional[Role]:
        if not is_algebraic_square(square):
            return None
        piece = self._board(position).piece_at(chess.parse_square(square))
        if piece is None:
            return None
        return COLOR_TO_ROLE[piece.color]

    def legal_moves(self, position: Position) -> list[str]:
        return [move.uci() for move in self._board(position).legal_moves]

    # -- Internal helpers --
    def _board(self, position: Position) -> chess.Board:
        try:
            return chess.Board(position)
        except ValueError as exc:
            raise IllegalMoveError(f"Cannot interpret {position!r} as a position.") from exc
