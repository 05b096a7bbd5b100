"""Unit tests for src/services/session_agent.py"""

import asyncio

import pytest

from src.core.exceptions import InvalidRequestError
from src.core.models import Move
from src.core.shared_types import PreferredRole, RejectReason, Role, Status
from src.services.session_agent import PushChannel, SessionAgent, assign_role

STARTING_FEN = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"
AFTER_E4_FEN = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"
FOOLS_MATE = [Move("f2", "f3"), Move("e7", "e5"), Move("g2", "g4"), Move("d8", "h4")]

ALICE = "alice"
BOB = "bob"
CAROL = "carol"


async def seated(agent: SessionAgent) -> SessionAgent:
    """Alice plays the first side, Bob the second."""
    await agent.join(ALICE, PreferredRole.ANY)
    await agent.join(BOB, PreferredRole.ANY)
    return agent


async def no_push(channel: PushChannel) -> bool:
    """True if nothing was pushed on the channel."""
    try:
        await asyncio.wait_for(channel.get(), timeout=0.05)
    except asyncio.TimeoutError:
        return True
    return False


# --- ROLE ASSIGNMENT ----
@pytest.mark.parametrize(
    "roles, preferred, expected",
    [
        ({}, PreferredRole.ANY, Role.FIRST_SIDE),
        ({}, PreferredRole.SECOND_SIDE, Role.SECOND_SIDE),
        ({"x": Role.FIRST_SIDE}, PreferredRole.FIRST_SIDE, Role.SECOND_SIDE),
        ({"x": Role.SECOND_SIDE}, PreferredRole.ANY, Role.FIRST_SIDE),
        ({"x": Role.FIRST_SIDE, "y": Role.SECOND_SIDE}, PreferredRole.FIRST_SIDE, Role.OBSERVER),
        ({"x": Role.OBSERVER}, PreferredRole.ANY, Role.FIRST_SIDE),
    ],
)
def test_assign_role(roles: dict, preferred: PreferredRole, expected: Role) -> None:
    assert assign_role(roles, preferred) == expected


# --- JOIN ----
@pytest.mark.asyncio
async def test_join_assigns_sides_then_observers(agent: SessionAgent) -> None:
    first = await agent.join(ALICE, PreferredRole.ANY)
    second = await agent.join(BOB, PreferredRole.ANY)
    third = await agent.join(CAROL, PreferredRole.FIRST_SIDE)

    assert first.role == Role.FIRST_SIDE
    assert second.role == Role.SECOND_SIDE
    assert third.role == Role.OBSERVER

    # every joiner gets the current state with the response
    assert third.state.position == STARTING_FEN
    assert third.state.roles == {
        ALICE: Role.FIRST_SIDE,
        BOB: Role.SECOND_SIDE,
        CAROL: Role.OBSERVER,
    }


@pytest.mark.asyncio
async def test_preferred_side_is_honoured(agent: SessionAgent) -> None:
    result = await agent.join(ALICE, PreferredRole.SECOND_SIDE)
    assert result.role == Role.SECOND_SIDE

    # side taken --> first free side
    result = await agent.join(BOB, PreferredRole.SECOND_SIDE)
    assert result.role == Role.FIRST_SIDE


@pytest.mark.asyncio
async def test_rejoin_recovers_role(agent: SessionAgent) -> None:
    """Rejoining is idempotent, whatever the participant asks for the second time."""
    await seated(agent)
    await agent.propose_move(ALICE, Move("e2", "e4"), STARTING_FEN)
    before = agent.snapshot()

    result = await agent.join(BOB, PreferredRole.FIRST_SIDE)

    assert result.role == Role.SECOND_SIDE
    assert result.state == before


@pytest.mark.asyncio
async def test_join_does_not_push(agent: SessionAgent) -> None:
    channel = agent.subscribe()
    await agent.join(ALICE, PreferredRole.ANY)
    assert await no_push(channel)
    assert agent.snapshot().version == 0


@pytest.mark.asyncio
async def test_concurrent_joins_never_share_a_side(agent: SessionAgent) -> None:
    participants = [f"player-{i}" for i in range(12)]
    results = await asyncio.gather(
        *(agent.join(pid, PreferredRole.ANY) for pid in participants)
    )
    roles = [result.role for result in results]

    assert roles.count(Role.FIRST_SIDE) == 1
    assert roles.count(Role.SECOND_SIDE) == 1
    assert roles.count(Role.OBSERVER) == len(participants) - 2


@pytest.mark.asyncio
@pytest.mark.parametrize("participant_id", ["", "   "])
async def test_join_with_malformed_identity(agent: SessionAgent, participant_id: str) -> None:
    with pytest.raises(InvalidRequestError):
        _ = await agent.join(participant_id, PreferredRole.ANY)
    assert agent.snapshot().roles == {}


@pytest.mark.asyncio
async def test_handed_out_roles_are_read_only(agent: SessionAgent) -> None:
    """Only the agent assigns roles: snapshots and results cannot be used to rewrite them."""
    joined = await agent.join(ALICE, PreferredRole.ANY)
    snapshot = agent.snapshot()

    with pytest.raises(TypeError):
        snapshot.roles[ALICE] = Role.OBSERVER
    with pytest.raises(TypeError):
        joined.state.roles["mallory"] = Role.SECOND_SIDE

    assert dict(agent.snapshot().roles) == {ALICE: Role.FIRST_SIDE}
    assert (await agent.join(BOB, PreferredRole.ANY)).role == Role.SECOND_SIDE


@pytest.mark.asyncio
async def test_joining_finished_game_is_allowed(agent: SessionAgent) -> None:
    await seated(agent)
    await agent.resign(ALICE)
    result = await agent.join(CAROL, PreferredRole.ANY)
    assert result.role == Role.OBSERVER
    assert result.state.status == Status.RESIGNED


# --- PROPOSE MOVE ----
@pytest.mark.asyncio
async def test_opening_move_then_stale_reply(agent: SessionAgent) -> None:
    """A plays from the initial position, B answers based on the same (now outdated) position."""
    alice = await agent.join(ALICE, PreferredRole.ANY)
    bob = await agent.join(BOB, PreferredRole.ANY)
    assert (alice.role, bob.role) == (Role.FIRST_SIDE, Role.SECOND_SIDE)

    result = await agent.propose_move(ALICE, Move("e2", "e4"), STARTING_FEN)
    assert result.ok
    assert result.reason is None
    assert result.state.status == Status.IN_PROGRESS
    assert result.state.position == AFTER_E4_FEN
    assert result.state.version == 1
    assert result.state.moves == ("e2e4",)
    assert agent.rules.side_to_move(result.state.position) == Role.SECOND_SIDE

    stale = await agent.propose_move(BOB, Move("e7", "e5"), STARTING_FEN)
    assert not stale.ok
    assert stale.reason == RejectReason.STALE_STATE
    assert stale.state.position == AFTER_E4_FEN
    assert stale.state.version == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "participant_id",
    [
        BOB,  # second side, but first side is to move
        CAROL,  # observer
        "stranger",  # never joined
    ],
)
async def test_not_your_turn(agent: SessionAgent, participant_id: str) -> None:
    await seated(agent)
    await agent.join(CAROL, PreferredRole.ANY)

    result = await agent.propose_move(participant_id, Move("e7", "e5"), STARTING_FEN)

    assert not result.ok
    assert result.reason == RejectReason.NOT_YOUR_TURN
    assert result.state == agent.snapshot()
    assert result.state.version == 0


@pytest.mark.asyncio
async def test_illegal_move_leaves_state_untouched(agent: SessionAgent) -> None:
    await seated(agent)
    channel = agent.subscribe()

    result = await agent.propose_move(ALICE, Move("e2", "e5"), STARTING_FEN)

    assert not result.ok
    assert result.reason == RejectReason.ILLEGAL_MOVE
    assert result.detail
    assert result.state.position == STARTING_FEN
    assert result.state.version == 0
    assert await no_push(channel)


@pytest.mark.asyncio
async def test_stale_mirror_cannot_sneak_in_a_move(agent: SessionAgent) -> None:
    """Legal against the client's outdated position, but that position is not the authoritative one."""
    await seated(agent)
    await agent.propose_move(ALICE, Move("e2", "e4"), STARTING_FEN)
    await agent.propose_move(BOB, Move("e7", "e5"), AFTER_E4_FEN)

    # d2d4 is legal from the starting position, but Alice's claimed base is two moves old
    result = await agent.propose_move(ALICE, Move("d2", "d4"), STARTING_FEN)

    assert not result.ok
    assert result.reason in (RejectReason.STALE_STATE, RejectReason.ILLEGAL_MOVE)
    assert result.state.version == 2


@pytest.mark.asyncio
async def test_concurrent_proposals_on_same_base(agent: SessionAgent) -> None:
    """Two proposals claiming the same base position: exactly one commits, the other sees the commit."""
    await seated(agent)

    committed, rejected = await asyncio.gather(
        agent.propose_move(ALICE, Move("e2", "e4"), STARTING_FEN),
        agent.propose_move(BOB, Move("e7", "e5"), STARTING_FEN),
    )

    assert committed.ok
    assert not rejected.ok
    assert rejected.reason == RejectReason.STALE_STATE
    assert rejected.state == committed.state
    assert agent.snapshot().version == 1


@pytest.mark.asyncio
async def test_duplicate_proposals_commit_once(agent: SessionAgent) -> None:
    """Same participant firing twice from the same base (two tabs): the second one finds the turn gone."""
    await seated(agent)

    results = await asyncio.gather(
        agent.propose_move(ALICE, Move("e2", "e4"), STARTING_FEN),
        agent.propose_move(ALICE, Move("d2", "d4"), STARTING_FEN),
    )

    assert [result.ok for result in results].count(True) == 1
    assert agent.snapshot().version == 1
    assert agent.snapshot().moves == ("e2e4",)


@pytest.mark.asyncio
async def test_malformed_proposal_is_rejected_at_the_boundary(agent: SessionAgent) -> None:
    await seated(agent)
    with pytest.raises(InvalidRequestError):
        _ = await agent.propose_move("", Move("e2", "e4"), STARTING_FEN)
    with pytest.raises(InvalidRequestError):
        _ = await agent.propose_move(ALICE, "e2e4", STARTING_FEN)  # type: ignore[arg-type]
    with pytest.raises(InvalidRequestError):
        _ = await agent.propose_move(ALICE, Move("e2", "e4"), None)  # type: ignore[arg-type]
    assert agent.snapshot().version == 0


# --- END OF GAME ----
@pytest.mark.asyncio
async def test_checkmate_ends_the_game(agent: SessionAgent) -> None:
    await seated(agent)
    players = [ALICE, BOB, ALICE, BOB]

    result = None
    for player, move in zip(players, FOOLS_MATE):
        result = await agent.propose_move(player, move, agent.snapshot().position)
        assert result.ok

    assert result is not None
    assert result.state.status == Status.CHECKMATE
    assert result.state.winner == Role.SECOND_SIDE
    assert result.state.version == 4

    # side to move is still reported, but no further moves are accepted from anyone
    position = agent.snapshot().position
    for player in (ALICE, BOB):
        rejected = await agent.propose_move(player, Move("a2", "a3"), position)
        assert not rejected.ok
        assert rejected.reason == RejectReason.GAME_OVER
    assert agent.snapshot().version == 4


@pytest.mark.asyncio
async def test_resign(agent: SessionAgent) -> None:
    await seated(agent)
    channel = agent.subscribe()

    result = await agent.resign(ALICE)

    assert result.ok
    assert result.state.status == Status.RESIGNED
    assert result.state.winner == Role.SECOND_SIDE
    assert result.state.version == 1
    assert await channel.get() == result.state

    again = await agent.resign(BOB)
    assert not again.ok
    assert again.reason == RejectReason.GAME_OVER

    move = await agent.propose_move(ALICE, Move("e2", "e4"), STARTING_FEN)
    assert move.reason == RejectReason.GAME_OVER


@pytest.mark.asyncio
async def test_observer_cannot_resign(agent: SessionAgent) -> None:
    await seated(agent)
    await agent.join(CAROL, PreferredRole.ANY)
    result = await agent.resign(CAROL)
    assert not result.ok
    assert result.reason == RejectReason.NOT_YOUR_TURN
    assert result.state.status == Status.IN_PROGRESS


@pytest.mark.asyncio
async def test_abandon(agent: SessionAgent) -> None:
    await seated(agent)
    state = await agent.abandon()
    assert state.status == Status.ABANDONED
    assert state.version == 1

    # already over --> nothing changes
    assert await agent.abandon() == state


# --- LEGAL MOVES ----
@pytest.mark.asyncio
async def test_legal_moves_only_for_the_side_to_move(agent: SessionAgent) -> None:
    await seated(agent)
    await agent.join(CAROL, PreferredRole.ANY)

    assert len(agent.legal_moves(ALICE)) == 20
    assert agent.legal_moves(BOB) == []
    assert agent.legal_moves(CAROL) == []
    assert agent.legal_moves("stranger") == []


# --- PUSH CHANNEL ----
@pytest.mark.asyncio
async def test_every_channel_sees_commits_in_order(agent: SessionAgent) -> None:
    await seated(agent)
    first, second = agent.subscribe(), agent.subscribe()

    await agent.propose_move(ALICE, Move("e2", "e4"), STARTING_FEN)
    await agent.propose_move(BOB, Move("e7", "e5"), AFTER_E4_FEN)

    for channel in (first, second):
        versions = [(await channel.get()).version, (await channel.get()).version]
        assert versions == [1, 2]


@pytest.mark.asyncio
async def test_closed_channel_is_detached(agent: SessionAgent) -> None:
    await seated(agent)
    channel = agent.subscribe()
    channel.close()

    await agent.propose_move(ALICE, Move("e2", "e4"), STARTING_FEN)

    assert await channel.get() is None
    assert [state async for state in channel] == []
