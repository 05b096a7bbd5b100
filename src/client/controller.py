"""
Client Synchronization Controller: one per connected client.

Keeps the ClientMirror, shows the local participant's own moves right away (optimistic update)
and reconciles with whatever the Session Agent asserts afterwards.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Optional

from src.client.links import SessionLink, Unsubscribe
from src.client.mirror import ClientMirror, reconcile
from src.core.config import settings
from src.core.exceptions import GameError, IllegalMoveError, TransportError
from src.core.models import Move, MoveResult, ParticipantId, Position, SessionState
from src.core.shared_types import PreferredRole, Role, Status
from src.rules.engine import RulesEngine

logger = logging.getLogger(__name__)


class ClientSyncController:
    """
    Local mirror + a single outstanding move.
    ----

    attempt_local_move() is synchronous on purpose: the rendering layer gets its answer before any network round trip.
    The proposal itself runs as a separate asyncio task.
    """

    def __init__(
        self,
        link: SessionLink,
        rules: RulesEngine,
        participant_id: ParticipantId,
        proposal_timeout: Optional[float] = None,
        on_change: Optional[Callable[[ClientMirror], None]] = None,
    ) -> None:
        self.link = link
        self.rules = rules
        self.participant_id = participant_id
        self.proposal_timeout = proposal_timeout or settings.proposal_timeout_seconds
        self.on_change = on_change

        self.mirror: Optional[ClientMirror] = None
        self.pending = False
        self._unresolved_base_version: Optional[int] = None
        self._in_flight: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Unsubscribe] = None

    # --- read access for the rendering layer ---
    @property
    def attached(self) -> bool:
        return self.mirror is not None

    @property
    def role(self) -> Optional[Role]:
        return self.mirror.role if self.mirror else None

    @property
    def position(self) -> Optional[Position]:
        return self.mirror.position if self.mirror else None

    @property
    def status(self) -> Optional[Status]:
        return self.mirror.state.status if self.mirror else None

    @property
    def version(self) -> Optional[int]:
        return self.mirror.version if self.mirror else None

    # --- lifecycle ---
    async def attach(self, preferred: PreferredRole = PreferredRole.ANY) -> Role:
        """
        Join the session, build the mirror from the answer and start listening for pushes.
        Attaching again replaces the previous subscription instead of stacking a second one.
        """
        if self._unsubscribe is not None:
            await self.detach()
        result = await self.link.join(self.participant_id, preferred)
        self._replace_mirror(ClientMirror(role=result.role, state=result.state))
        self._unsubscribe = await self.link.subscribe(self.on_push)
        logger.info(
            "%s attached to %s as %s", self.participant_id, result.state.session_id, result.role
        )
        return result.role

    async def detach(self) -> None:
        if self._in_flight is not None and not self._in_flight.done():
            self._in_flight.cancel()
        if self._unsubscribe is not None:
            await self._unsubscribe()
            self._unsubscribe = None
        self.mirror = None
        self.pending = False
        self._unresolved_base_version = None

    # --- moves ---
    def attempt_local_move(self, move: Move) -> bool:
        """
        Try to play the local participant's move.
        ----

        Refuse (False, nothing changes) when:
        1. not attached, or a move is still pending
        2. we only watch, or the game ended
        3. it is not our side to move, or the piece on from_square is not ours
        4. the rules engine rejects the move on the mirror position

        Otherwise show the move immediately and send the proposal in the background.
        """
        mirror = self.mirror
        if mirror is None or self.pending:
            return False
        if not mirror.role.is_side or mirror.state.status.is_terminal:
            return False

        base_position = mirror.position
        if self.rules.side_to_move(base_position) != mirror.role:
            return False
        if self.rules.owner_of(base_position, move.from_square) != mirror.role:
            return False

        try:
            new_position = self.rules.apply(base_position, move)
        except IllegalMoveError:
            return False

        # raises outside a running loop, before anything is shown
        loop = asyncio.get_running_loop()

        self._replace_mirror(mirror.speculate(new_position))
        self.pending = True
        self._in_flight = loop.create_task(self._send_proposal(move, base_position, mirror.version))
        return True

    def on_push(self, state: SessionState) -> None:
        """Pushed states always win over older ones, whether or not a move is pending."""
        if self.mirror is None:
            return
        self._replace_mirror(reconcile(self.mirror, state))

        # a proposal whose outcome we never learned is settled by any newer committed state
        if self._unresolved_base_version is not None and state.version > self._unresolved_base_version:
            logger.info("%s: unresolved proposal settled by push (version %d)", self.participant_id, state.version)
            self._unresolved_base_version = None
            self.pending = False

    async def resync(self) -> SessionState:
        """Fetch the authoritative state and drop any speculation it does not confirm."""
        state = await self.link.fetch_state()
        if self.mirror is not None:
            self._replace_mirror(reconcile(self.mirror, state, discard_speculation=True))
        return state

    async def resign(self) -> MoveResult:
        result = await self.link.resign(self.participant_id)
        if self.mirror is not None:
            self._replace_mirror(reconcile(self.mirror, result.state))
        return result

    async def wait_idle(self) -> None:
        """Wait until the outstanding proposal (if any) got its answer."""
        if self._in_flight is not None:
            await asyncio.shield(self._in_flight)

    # -- Internal helpers --
    async def _send_proposal(self, move: Move, base_position: Position, base_version: int) -> None:
        try:
            result = await asyncio.wait_for(
                self.link.propose_move(self.participant_id, move, base_position),
                timeout=self.proposal_timeout,
            )
        except (asyncio.TimeoutError, TransportError) as exc:
            logger.warning(
                "%s: outcome of %s unknown (%r), resyncing", self.participant_id, move.to_uci(), exc
            )
            await self._recover_unknown_outcome(base_version)
            return
        except GameError as exc:
            logger.warning("%s: %s not delivered (%r)", self.participant_id, move.to_uci(), exc)
            await self._abandon_proposal()
            return

        if self.mirror is None:
            return
        if result.ok:
            self._replace_mirror(reconcile(self.mirror, result.state))
        else:
            logger.info("%s: %s rejected (%s)", self.participant_id, move.to_uci(), result.reason)
            self._replace_mirror(reconcile(self.mirror, result.state, discard_speculation=True))
        self.pending = False

    async def _recover_unknown_outcome(self, base_version: int) -> None:
        """
        The agent may or may not have committed the move. Never assume either:
        take a fresh authoritative state, or keep the move pending until a newer push settles it.
        """
        try:
            await asyncio.wait_for(self.resync(), timeout=self.proposal_timeout)
        except (asyncio.TimeoutError, TransportError) as exc:
            if self.mirror is not None and self.mirror.version > base_version:
                self.pending = False
                return
            logger.warning("%s: resync failed (%r), waiting for a push", self.participant_id, exc)
            self._unresolved_base_version = base_version
            return
        except GameError as exc:
            # the session itself is gone, so the move cannot have survived either
            logger.warning("%s: resync refused (%r)", self.participant_id, exc)
            self._discard_speculation()
        self.pending = False

    async def _abandon_proposal(self) -> None:
        """The link refused the proposal outright (unknown session, malformed request): nothing was committed."""
        self._discard_speculation()
        try:
            await asyncio.wait_for(self.resync(), timeout=self.proposal_timeout)
        except (asyncio.TimeoutError, GameError) as exc:
            logger.warning("%s: resync failed (%r)", self.participant_id, exc)
        self.pending = False

    def _discard_speculation(self) -> None:
        if self.mirror is not None and self.mirror.is_speculating:
            self._replace_mirror(replace(self.mirror, speculative_position=None))

    def _replace_mirror(self, mirror: ClientMirror) -> None:
        if mirror is self.mirror:
            return
        self.mirror = mirror
        if self.on_change is not None:
            self.on_change(mirror)
