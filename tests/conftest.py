"""
Pytest will auto-discover / import this file called 'conftest.py'.
This file defines fixtures required for testing multiple layers.
"""

import pytest

from src.rules.chess_rules import ChessRules
from src.services.arena import SessionArena
from src.services.session_agent import SessionAgent


@pytest.fixture
def rules() -> ChessRules:
    return ChessRules()


@pytest.fixture
def agent(rules: ChessRules) -> SessionAgent:
    """Fresh session nobody joined yet."""
    return SessionAgent("game-1", rules)


@pytest.fixture
def arena() -> SessionArena:
    """Empty registry. Sessions get created by the first join."""
    return SessionArena()
