"""
Protocol SessionLink: how a client controller reaches its Session Agent.

Two implementations:
* LocalSessionLink -- the agent lives in the same process (tests, bots, embedded hosting)
* HttpSessionLink  -- the agent sits behind the FastAPI surface in src/api/app.py
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

import httpx

from src.core.exceptions import InvalidRequestError, SessionNotFoundError, TransportError
from src.core.models import (
    JoinResult,
    Move,
    MoveResult,
    ParticipantId,
    Position,
    SessionState,
)
from src.core.shared_types import PreferredRole, RejectReason, Role
from src.services.arena import SessionArena

logger = logging.getLogger(__name__)

PushCallback = Callable[[SessionState], None]
Unsubscribe = Callable[[], Awaitable[None]]


class SessionLink(Protocol):
    """Client side view of one session."""

    async def join(self, participant_id: ParticipantId, preferred: PreferredRole) -> JoinResult:
        ...

    async def propose_move(
        self, participant_id: ParticipantId, move: Move, claimed_base_position: Position
    ) -> MoveResult:
        ...

    async def resign(self, participant_id: ParticipantId) -> MoveResult:
        ...

    async def fetch_state(self) -> SessionState:
        ...

    async def subscribe(self, callback: PushCallback) -> Unsubscribe:
        """Start delivering pushed states to the callback. Returns the coroutine function that stops it."""
        ...


class LocalSessionLink:
    """Talks to a SessionAgent in the same process. Pushes are pumped by a background task."""

    def __init__(self, arena: SessionArena, session_id: str) -> None:
        self.arena = arena
        self.session_id = session_id

    async def join(self, participant_id: ParticipantId, preferred: PreferredRole) -> JoinResult:
        agent = await self.arena.get_or_create(self.session_id)
        return await agent.join(participant_id, preferred)

    async def propose_move(
        self, participant_id: ParticipantId, move: Move, claimed_base_position: Position
    ) -> MoveResult:
        agent = self.arena.get(self.session_id)
        return await agent.propose_move(participant_id, move, claimed_base_position)

    async def resign(self, participant_id: ParticipantId) -> MoveResult:
        return await self.arena.get(self.session_id).resign(participant_id)

    async def fetch_state(self) -> SessionState:
        return self.arena.get(self.session_id).snapshot()

    async def subscribe(self, callback: PushCallback) -> Unsubscribe:
        channel = self.arena.get(self.session_id).subscribe()

        async def pump() -> None:
            async for state in channel:
                callback(state)

        task = asyncio.create_task(pump())

        async def unsubscribe() -> None:
            channel.close()
            await task

        return unsubscribe


class HttpSessionLink:
    """
    Talks to the FastAPI surface.
    ----
    Pushes are emulated by polling GET /sessions/{id}: a state is only handed to the callback when its version is new.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        session_id: str,
        poll_interval: float = 0.5,
    ) -> None:
        self.client = client
        self.session_id = session_id
        self.poll_interval = poll_interval

    async def join(self, participant_id: ParticipantId, preferred: PreferredRole) -> JoinResult:
        data = await self._request(
            "POST",
            f"/sessions/{self.session_id}/join",
            json={"participant_id": participant_id, "preferred_role": PreferredRole(preferred).value},
        )
        return JoinResult(role=Role(data["role"]), state=SessionState.from_dict(data["state"]))

    async def propose_move(
        self, participant_id: ParticipantId, move: Move, claimed_base_position: Position
    ) -> MoveResult:
        data = await self._request(
            "POST",
            f"/sessions/{self.session_id}/moves",
            json={
                "participant_id": participant_id,
                "from_square": move.from_square,
                "to_square": move.to_square,
                "promote_to": move.promotion.value if move.promotion else None,
                "claimed_base_position": claimed_base_position,
            },
        )
        return self._to_move_result(data)

    async def resign(self, participant_id: ParticipantId) -> MoveResult:
        data = await self._request(
            "POST",
            f"/sessions/{self.session_id}/resign",
            json={"participant_id": participant_id},
        )
        return self._to_move_result(data)

    async def fetch_state(self) -> SessionState:
        data = await self._request("GET", f"/sessions/{self.session_id}")
        return SessionState.from_dict(data)

    async def subscribe(self, callback: PushCallback) -> Unsubscribe:
        last_version: Optional[int] = None

        async def poll() -> None:
            nonlocal last_version
            while True:
                await asyncio.sleep(self.poll_interval)
                try:
                    state = await self.fetch_state()
                except TransportError as exc:
                    logger.warning("Polling session %s failed: %s", self.session_id, exc)
                    continue
                if last_version is None or state.version > last_version:
                    last_version = state.version
                    callback(state)

        task = asyncio.create_task(poll())

        async def unsubscribe() -> None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        return unsubscribe

    # -- Internal helpers --
    async def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {url} failed: {exc!r}") from exc

        if response.status_code == 404:
            raise SessionNotFoundError(response.json().get("detail", "Session not found."))
        if response.status_code == 422:
            raise InvalidRequestError(response.json().get("detail", "Invalid request."))
        if response.is_error:
            raise TransportError(f"{method} {url} returned {response.status_code}.")
        return response.json()

    def _to_move_result(self, data: dict) -> MoveResult:
        return MoveResult(
            ok=data["ok"],
            state=SessionState.from_dict(data["state"]),
            reason=RejectReason(data["reason"]) if data.get("reason") else None,
            detail=data.get("detail") or "",
        )
