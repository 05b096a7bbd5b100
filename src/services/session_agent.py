"""
The Session Agent is the single authority over one game.

It owns the canonical position, the role assignment and the status, and it is the only component that ever writes them.
Every operation runs under the agent's own lock, so joins, proposals and resignations against one game are totally ordered.
Committed states are fanned out to all attached push channels from inside that lock, hence every client observes the same sequence.
"""

import asyncio
import logging
from typing import Mapping, Optional

from src.core.exceptions import (
    GameOverError,
    InvalidRequestError,
    MoveRejectedError,
    NotYourTurnError,
    StaleStateError,
)
from src.core.models import (
    JoinResult,
    Move,
    MoveResult,
    ParticipantId,
    Position,
    SessionState,
    require_identifier,
)
from src.core.shared_types import SIDES, PreferredRole, Role, Status
from src.rules.engine import RulesEngine

logger = logging.getLogger(__name__)


def assign_role(roles: Mapping[ParticipantId, Role], preferred: PreferredRole) -> Role:
    """
    Seat for a participant that does not have one yet.
    ----

    1. the preferred side, if it names a side and that side is free
    2. otherwise the first free side
    3. otherwise observer
    """
    taken = set(roles.values())
    if preferred != PreferredRole.ANY:
        wanted = Role(preferred.value)
        if wanted not in taken:
            return wanted
    return next((side for side in SIDES if side not in taken), Role.OBSERVER)


class PushChannel:
    """One attached listener. Receives every committed SessionState, in commit order."""

    def __init__(self, agent: "SessionAgent") -> None:
        self._agent = agent
        self._queue: asyncio.Queue[Optional[SessionState]] = asyncio.Queue()
        self.closed = False

    def deliver(self, state: SessionState) -> None:
        if not self.closed:
            self._queue.put_nowait(state)

    async def get(self) -> Optional[SessionState]:
        """Next pushed state, None once the channel is closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        """Detach from the agent. A reader blocked in get() wakes up with None."""
        if self.closed:
            return
        self.closed = True
        self._agent._detach(self)
        self._queue.put_nowait(None)

    def __aiter__(self) -> "PushChannel":
        return self

    async def __anext__(self) -> SessionState:
        state = await self.get()
        if state is None:
            raise StopAsyncIteration
        return state


class SessionAgent:
    """Authoritative session for one game identifier."""

    def __init__(self, session_id: str, rules: RulesEngine) -> None:
        self.rules = rules
        position = rules.initial_position()
        self._state = SessionState(
            session_id=session_id,
            position=position,
            roles={},
            status=rules.status(position),
        )
        self._lock = asyncio.Lock()
        self._channels: set[PushChannel] = set()

    @property
    def session_id(self) -> str:
        return self._state.session_id

    def snapshot(self) -> SessionState:
        """Current authoritative state. Snapshots are immutable, no need to take the lock."""
        return self._state

    # -- Session operations --
    async def join(
        self, participant_id: ParticipantId, preferred: PreferredRole = PreferredRole.ANY
    ) -> JoinResult:
        """Assign (or recover) the participant's role. Nobody else gets a push for this."""
        require_identifier(participant_id)
        preferred = PreferredRole(preferred)

        async with self._lock:
            existing = self._state.role_of(participant_id)
            if existing is not None:
                logger.debug(
                    "Session %s: %s rejoined as %s", self.session_id, participant_id, existing
                )
                return JoinResult(role=existing, state=self._state)

            role = assign_role(self._state.roles, preferred)
            roles = dict(self._state.roles)
            roles[participant_id] = role
            self._state = self._state.evolve(roles=roles)
            logger.info(
                "Session %s: %s joined as %s (preferred %s)",
                self.session_id,
                participant_id,
                role,
                preferred,
            )
            return JoinResult(role=role, state=self._state)

    async def propose_move(
        self,
        participant_id: ParticipantId,
        move: Move,
        claimed_base_position: Position,
    ) -> MoveResult:
        """
        Validate a proposal against the authoritative state and either commit or reject it.
        ----

        Nothing is mutated before all checks passed, so a rejected proposal never touches the session.
        A rejection carries the current authoritative state so the proposer can resync right away.
        """
        require_identifier(participant_id)
        if not isinstance(move, Move):
            raise InvalidRequestError(f"Expected a Move, got {move!r}.")
        if not isinstance(claimed_base_position, str):
            raise InvalidRequestError("claimed_base_position is required.")

        async with self._lock:
            try:
                new_position = self._validate_move(participant_id, move, claimed_base_position)
            except MoveRejectedError as exc:
                logger.info(
                    "Session %s: rejected %s from %s (%s)",
                    self.session_id,
                    move.to_uci(),
                    participant_id,
                    exc.reason,
                )
                return MoveResult(ok=False, state=self._state, reason=exc.reason, detail=str(exc))

            mover = self._state.role_of(participant_id)
            status = self.rules.status(new_position)
            new_state = self._state.evolve(
                position=new_position,
                status=status,
                version=self._state.version + 1,
                moves=self._state.moves + (move.to_uci(),),
                winner=mover if status == Status.CHECKMATE else None,
            )
            self._commit(new_state)
            logger.info(
                "Session %s: committed %s by %s (version %d, %s)",
                self.session_id,
                move.to_uci(),
                participant_id,
                new_state.version,
                new_state.status,
            )
            return MoveResult(ok=True, state=new_state)

    async def resign(self, participant_id: ParticipantId) -> MoveResult:
        """A side holder gives up. The opponent wins."""
        require_identifier(participant_id)

        async with self._lock:
            try:
                role = self._assert_side_holder(participant_id)
                self._assert_not_finished()
            except MoveRejectedError as exc:
                return MoveResult(ok=False, state=self._state, reason=exc.reason, detail=str(exc))

            new_state = self._state.evolve(
                status=Status.RESIGNED,
                version=self._state.version + 1,
                winner=role.opponent(),
            )
            self._commit(new_state)
            logger.info("Session %s: %s (%s) resigned", self.session_id, participant_id, role)
            return MoveResult(ok=True, state=new_state)

    async def abandon(self) -> SessionState:
        """Hosting layer gave up on this game. No-op for games that already ended."""
        async with self._lock:
            if self._state.status.is_terminal:
                return self._state
            new_state = self._state.evolve(
                status=Status.ABANDONED, version=self._state.version + 1
            )
            self._commit(new_state)
            logger.info("Session %s: abandoned at version %d", self.session_id, new_state.version)
            return new_state

    def legal_moves(self, participant_id: ParticipantId) -> list[str]:
        """Legal moves for the participant. Empty when it is not (or no longer) their turn."""
        require_identifier(participant_id)
        state = self._state
        role = state.role_of(participant_id)
        if role is None or not role.is_side or state.status.is_terminal:
            return []
        if self.rules.side_to_move(state.position) != role:
            return []
        return self.rules.legal_moves(state.position)

    # -- Push channel --
    def subscribe(self) -> PushChannel:
        channel = PushChannel(self)
        self._channels.add(channel)
        logger.debug("Session %s: push channel attached (%d open)", self.session_id, len(self._channels))
        return channel

    def _detach(self, channel: PushChannel) -> None:
        self._channels.discard(channel)
        logger.debug("Session %s: push channel detached (%d open)", self.session_id, len(self._channels))

    # -- Internal helpers --
    def _commit(self, new_state: SessionState) -> None:
        """Replace the authoritative state and fan it out. Only ever called with the lock held."""
        self._state = new_state
        for channel in list(self._channels):
            channel.deliver(new_state)

    def _validate_move(
        self, participant_id: ParticipantId, move: Move, claimed_base_position: Position
    ) -> Position:
        """
        Checks, in order
        ----

        1. only side holders may move
        2. no moves once the game ended
        3. it must be your side to move in the authoritative position
        4. your base position must be the authoritative position (optimistic-concurrency token)
        5. the rules engine must accept the move
        """
        role = self._assert_side_holder(participant_id)
        self._assert_not_finished()

        position = self._state.position
        side_to_move = self.rules.side_to_move(position)
        if role != side_to_move:
            raise NotYourTurnError(f"It is not your turn. Waiting for {side_to_move} to move.")

        if claimed_base_position != position:
            raise StaleStateError("Proposal was based on an outdated position.")

        return self.rules.apply(position, move)

    def _assert_side_holder(self, participant_id: ParticipantId) -> Role:
        role = self._state.role_of(participant_id)
        if role is None or not role.is_side:
            raise NotYourTurnError("Only the two seated players can move.")
        return role

    def _assert_not_finished(self) -> None:
        if self._state.status.is_terminal:
            raise GameOverError(f"Game has ended. status: {self._state.status}")
