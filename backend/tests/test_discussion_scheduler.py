"""Discussion timer state machine, driven by explicit timestamps."""

import asyncio

import pytest

from agents.discussion_scheduler import (
    DiscussionScheduler,
    advance_if_due,
    build_view,
    skip_current,
    start_state,
    time_remaining,
)
from models.errors import AuthorizationError, NotFoundError, ValidationError
from models.game import DiscussionPhase

T0 = 1_000.0
GUARD = 1.5


def fresh():
    return start_state(T0, speaker_duration=60, delay_duration=5)


# ── Pure transitions ──────────────────────────────────────────────────────────

def test_start_is_initial_delay():
    state = fresh()
    assert state.phase == DiscussionPhase.INITIAL_DELAY
    assert state.current_speaker_index == 0
    assert state.delay_start_time == T0


def test_delay_not_elapsed_keeps_state():
    state = fresh()
    assert advance_if_due(state, T0 + 3, 3, guard=GUARD) == state


def test_delay_elapsed_starts_first_speaker():
    state = advance_if_due(fresh(), T0 + 5, 3, guard=GUARD)
    assert state.phase == DiscussionPhase.SPEAKING
    assert state.current_speaker_index == 0
    assert state.speaker_start_time == T0 + 5


def test_speaker_timeout_moves_to_next():
    speaking = advance_if_due(fresh(), T0 + 5, 3, guard=GUARD)
    nxt = advance_if_due(speaking, T0 + 65, 3, guard=GUARD)
    assert nxt.current_speaker_index == 1
    assert nxt.phase == DiscussionPhase.SPEAKING


def test_last_speaker_finishes():
    state = advance_if_due(fresh(), T0 + 5, 2, guard=GUARD)
    state = advance_if_due(state, T0 + 65, 2, guard=GUARD)
    state = advance_if_due(state, T0 + 125, 2, guard=GUARD)
    assert state.finished
    assert advance_if_due(state, T0 + 1_000, 2, guard=GUARD) == state


def test_no_speakers_finishes_after_delay():
    state = advance_if_due(fresh(), T0 + 5, 0, guard=GUARD)
    assert state.finished


def test_advance_is_idempotent_at_same_instant():
    once = advance_if_due(fresh(), T0 + 5, 3, guard=GUARD)
    twice = advance_if_due(once, T0 + 5, 3, guard=GUARD)
    assert once == twice


def test_lazy_read_advances_at_most_one_step():
    state = advance_if_due(fresh(), T0 + 5 + 60 * 3, 3, guard=GUARD)
    assert state.phase == DiscussionPhase.SPEAKING
    assert state.current_speaker_index == 0


def test_skip_within_guard_is_ignored():
    speaking = advance_if_due(fresh(), T0 + 5, 3, guard=GUARD)
    assert skip_current(speaking, T0 + 5.5, 3, guard=GUARD) == speaking
    skipped = skip_current(speaking, T0 + 7, 3, guard=GUARD)
    assert skipped.current_speaker_index == 1
    # Duplicate skip right after: absorbed
    assert skip_current(skipped, T0 + 7.2, 3, guard=GUARD) == skipped


def test_skip_outside_speaking_is_noop():
    state = fresh()
    assert skip_current(state, T0 + 3, 3, guard=GUARD) == state


def test_time_remaining():
    state = fresh()
    assert time_remaining(state, T0 + 0.2) == 5
    speaking = advance_if_due(state, T0 + 5, 3, guard=GUARD)
    assert time_remaining(speaking, T0 + 15.5) == 49
    assert time_remaining(speaking, T0 + 500) == 0


def test_view_marks_current_speaker():
    speaking = advance_if_due(fresh(), T0 + 5, 2, guard=GUARD)
    view = build_view(speaking, ["0xAbC", "0xdef"], "0xabc", T0 + 6)
    assert view["currentSpeakerAddress"] == "0xAbC"
    assert view["isMyTurn"] is True
    assert view["totalSpeakers"] == 2
    assert view["active"] is True
    assert build_view(speaking, ["0xAbC", "0xdef"], "0xdef", T0 + 6)["isMyTurn"] is False


# ── Scheduler over store + chain ──────────────────────────────────────────────

ROOM = 11


@pytest.fixture
def scheduler(store, chain, wallets):
    chain.seat(ROOM, wallets)
    return DiscussionScheduler(store=store, chain=chain)


def test_view_before_start(scheduler):
    view = asyncio.run(scheduler.get_view(ROOM, 1, now=T0))
    assert view == {"active": False, "finished": False, "message": "Discussion not started"}


def test_start_then_poll_advances(scheduler, wallets):
    asyncio.run(scheduler.start(ROOM, 1, wallets[0].address, now=T0))
    view = asyncio.run(scheduler.get_view(ROOM, 1, now=T0 + 6))
    order = asyncio.run(scheduler.speaker_order(ROOM))
    assert view["phase"] == "speaking"
    assert view["currentSpeakerAddress"] == order[0]
    assert view["totalSpeakers"] == len(wallets)


def test_start_twice_does_not_reset(scheduler, wallets):
    asyncio.run(scheduler.start(ROOM, 1, wallets[0].address, now=T0))
    asyncio.run(scheduler.get_view(ROOM, 1, now=T0 + 6))
    view = asyncio.run(scheduler.start(ROOM, 1, wallets[0].address, now=T0 + 10))
    assert view["phase"] == "speaking"


def test_days_are_independent(scheduler, wallets):
    asyncio.run(scheduler.start(ROOM, 1, wallets[0].address, now=T0))
    view = asyncio.run(scheduler.get_view(ROOM, 2, now=T0 + 6))
    assert view["message"] == "Discussion not started"


def test_speaker_can_skip(scheduler, wallets):
    asyncio.run(scheduler.start(ROOM, 1, None, now=T0))
    order = asyncio.run(scheduler.speaker_order(ROOM))
    asyncio.run(scheduler.get_view(ROOM, 1, now=T0 + 6))
    view = asyncio.run(scheduler.skip(ROOM, 1, order[0], now=T0 + 10))
    assert view["currentSpeakerIndex"] == 1
    assert view["currentSpeakerAddress"] == order[1]


def test_host_can_skip(scheduler, chain, wallets):
    asyncio.run(scheduler.start(ROOM, 1, None, now=T0))
    asyncio.run(scheduler.get_view(ROOM, 1, now=T0 + 6))
    host = chain.rooms[ROOM].host
    view = asyncio.run(scheduler.skip(ROOM, 1, host.lower(), now=T0 + 10))
    assert view["currentSpeakerIndex"] == 1


def test_other_player_cannot_skip(scheduler, chain, wallets):
    asyncio.run(scheduler.start(ROOM, 1, None, now=T0))
    order = asyncio.run(scheduler.speaker_order(ROOM))
    asyncio.run(scheduler.get_view(ROOM, 1, now=T0 + 6))
    host = chain.rooms[ROOM].host
    outsider = next(w.address for w in wallets if w.address not in (order[0], host))
    with pytest.raises(AuthorizationError):
        asyncio.run(scheduler.skip(ROOM, 1, outsider, now=T0 + 10))


def test_skip_errors(scheduler, wallets):
    with pytest.raises(ValidationError):
        asyncio.run(scheduler.skip(ROOM, 1, None, now=T0))
    with pytest.raises(NotFoundError):
        asyncio.run(scheduler.skip(ROOM, 1, wallets[0].address, now=T0))
    asyncio.run(scheduler.start(ROOM, 1, None, now=T0))
    with pytest.raises(ValidationError):
        # Still in the initial delay
        asyncio.run(scheduler.skip(ROOM, 1, wallets[0].address, now=T0 + 2))


def test_dead_players_are_not_speakers(scheduler, chain, wallets):
    chain.kill(ROOM, wallets[1])
    order = asyncio.run(scheduler.speaker_order(ROOM))
    assert wallets[1].address not in order
    assert len(order) == len(wallets) - 1
