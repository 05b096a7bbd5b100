"""
FastAPI application exposing the session protocol.

Endpoints:
    POST   /sessions/{session_id}/join          Join (creates the session on first use)
    POST   /sessions/{session_id}/moves         Propose a move
    POST   /sessions/{session_id}/resign        Resign
    GET    /sessions/{session_id}               Current authoritative state
    GET    /sessions/{session_id}/legal-moves   Legal moves for a participant
    WS     /sessions/{session_id}/ws            Push channel (current state, then every committed state)

Start with::

    uvicorn src.api.app:app --port 8000
"""

import asyncio
import logging
from contextlib import suppress
from typing import Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.models import (
    JoinRequest,
    JoinResponse,
    LegalMovesResponse,
    MoveRequest,
    MoveResponse,
    ResignRequest,
    SessionStateResponse,
)
from src.core.config import Settings, settings
from src.core.exceptions import GameError, InvalidRequestError, SessionNotFoundError
from src.core.models import Move
from src.services.arena import SessionArena

logging.basicConfig(
    level=logging.DEBUG if settings.debug else settings.log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(
    arena: Optional[SessionArena] = None, app_settings: Optional[Settings] = None
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        arena: Optional SessionArena (creates an empty one if not provided)
        app_settings: Optional Settings (module-level settings if not provided)
    """
    arena = arena if arena is not None else SessionArena()
    app_settings = app_settings or settings

    app = FastAPI(
        title="Board Sync API",
        description="Authoritative chess sessions with optimistic clients.",
        version="0.1.0",
    )
    app.state.arena = arena

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- error mapping ---
    @app.exception_handler(InvalidRequestError)
    async def _invalid_request(_: Request, exc: InvalidRequestError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(SessionNotFoundError)
    async def _not_found(_: Request, exc: SessionNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(GameError)
    async def _game_error(_: Request, exc: GameError) -> JSONResponse:
        logger.warning("Unhandled game error: %s", exc)
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    # --- routes ---
    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "sessions": len(arena)}

    @app.post("/sessions/{session_id}/join", response_model=JoinResponse)
    async def join(session_id: str, body: JoinRequest) -> JoinResponse:
        agent = await arena.get_or_create(session_id)
        result = await agent.join(body.participant_id, body.preferred_role)
        return JoinResponse.from_result(result)

    @app.post("/sessions/{session_id}/moves", response_model=MoveResponse)
    async def propose_move(session_id: str, body: MoveRequest) -> MoveResponse:
        """A rejected proposal is still a 200: the rejection is part of the protocol, not a transport failure."""
        agent = arena.get(session_id)
        move = Move(
            from_square=body.from_square,
            to_square=body.to_square,
            promotion=body.promote_to,
        )
        result = await agent.propose_move(body.participant_id, move, body.claimed_base_position)
        return MoveResponse.from_result(result)

    @app.post("/sessions/{session_id}/resign", response_model=MoveResponse)
    async def resign(session_id: str, body: ResignRequest) -> MoveResponse:
        result = await arena.get(session_id).resign(body.participant_id)
        return MoveResponse.from_result(result)

    @app.get("/sessions/{session_id}", response_model=SessionStateResponse)
    async def get_state(session_id: str) -> SessionStateResponse:
        """Also the polling endpoint for clients without a websocket."""
        return SessionStateResponse.from_state(arena.get(session_id).snapshot())

    @app.get("/sessions/{session_id}/legal-moves", response_model=LegalMovesResponse)
    async def legal_moves(session_id: str, participant_id: str) -> LegalMovesResponse:
        agent = arena.get(session_id)
        return LegalMovesResponse(
            session_id=session_id,
            participant_id=participant_id,
            legal_moves=agent.legal_moves(participant_id),
        )

    @app.websocket("/sessions/{session_id}/ws")
    async def push_channel(websocket: WebSocket, session_id: str) -> None:
        await websocket.accept()
        agent = await arena.get_or_create(session_id)
        # subscribe before the snapshot: a state may arrive twice, never not at all
        channel = agent.subscribe()

        async def forward() -> None:
            await websocket.send_json(
                SessionStateResponse.from_state(agent.snapshot()).model_dump(mode="json")
            )
            async for state in channel:
                await websocket.send_json(
                    SessionStateResponse.from_state(state).model_dump(mode="json")
                )

        forwarder = asyncio.create_task(forward())
        try:
            # clients never send anything meaningful, reading only detects the disconnect
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.debug("Push channel for %s closed by client", session_id)
        finally:
            channel.close()
            forwarder.cancel()
            with suppress(asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
                await forwarder

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
