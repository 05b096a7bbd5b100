"""Registry of live sessions, keyed by the identifier whoever started the game chose."""

import asyncio
import logging
from typing import Callable, Optional

from src.core.exceptions import SessionNotFoundError
from src.core.models import require_identifier
from src.rules.chess_rules import ChessRules
from src.rules.engine import RulesEngine
from src.services.session_agent import SessionAgent

logger = logging.getLogger(__name__)


class SessionArena:
    """
    In-memory sessions, one SessionAgent per game identifier.
    ----

    The arena lock only guards the registry itself. Every agent serializes its own operations,
    so unrelated games never wait on each other.
    """

    def __init__(self, rules_factory: Optional[Callable[[], RulesEngine]] = None) -> None:
        self._rules_factory = rules_factory or ChessRules
        self._sessions: dict[str, SessionAgent] = {}
        self._lock = asyncio.Lock()

    async def get_or_create(self, session_id: str) -> SessionAgent:
        """Joining with a previously unseen identifier implicitly creates a fresh session."""
        require_identifier(session_id, "session_id")
        async with self._lock:
            agent = self._sessions.get(session_id)
            if agent is None:
                agent = SessionAgent(session_id, self._rules_factory())
                self._sessions[session_id] = agent
                logger.info("Created session %s", session_id)
            return agent

    def get(self, session_id: str) -> SessionAgent:
        """Attempt to find the session and raise error if it fails."""
        require_identifier(session_id, "session_id")
        agent = self._sessions.get(session_id)
        if agent is None:
            raise SessionNotFoundError(f"Session with {session_id=} not found.")
        return agent

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)
