"""
Custom exceptions shared by all layers.

Everything derives from GameError so callers can catch the whole family at once.
"""

from src.core.shared_types import RejectReason


class GameError(Exception):
    """Top-level exception for anything going wrong in a game session."""


class InvalidRequestError(GameError):
    """Malformed input caught at the boundary (empty identifiers, bad square names, ...)."""


class SessionNotFoundError(GameError):
    """No session registered under the requested identifier."""


class TransportError(GameError):
    """A client link could not reach the session (connection failure, timeout, bad status)."""


# --- move rejections. The Session Agent raises these while validating and turns them into a rejected MoveResult.
class MoveRejectedError(GameError):
    reason: RejectReason


class NotYourTurnError(MoveRejectedError):
    reason = RejectReason.NOT_YOUR_TURN


class StaleStateError(MoveRejectedError):
    reason = RejectReason.STALE_STATE


class IllegalMoveError(MoveRejectedError):
    reason = RejectReason.ILLEGAL_MOVE


class GameOverError(MoveRejectedError):
    reason = RejectReason.GAME_OVER
