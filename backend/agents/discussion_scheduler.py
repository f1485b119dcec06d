"""
Discussion Scheduler — pure deterministic Python, no background timers.

State machine per (room, day):

    initial_delay ──(delay elapsed)──▶ speaking[0] ──▶ speaking[1] ──▶ … ──▶ finished
                                           (speaker time elapsed, or skip)

Nothing runs on a clock. Every handler first calls advance_if_due(state, now)
and persists the result, so whoever polls first moves the discussion along.
Racing or duplicated calls are absorbed by a guard: no transition happens
within ADVANCE_GUARD seconds of the previous one. Applying "advance if due"
twice is therefore safe.

Speaker order is not stored; it is the room-seeded shuffle of the alive
players (utils/speaker_order.py), which clients recompute on their own.
"""
import logging
import math
import time
from typing import Any, Dict, List, Optional

from config import settings
from models.errors import AuthorizationError, NotFoundError, ValidationError
from models.game import ChainPlayer, DiscussionPhase, DiscussionState
from services.chain_service import ChainService, get_chain_service
from services.store import CoordinatorStore, get_store
from utils.speaker_order import shuffle_for_room

logger = logging.getLogger(__name__)


# ── Pure transitions ──────────────────────────────────────────────────────────

def start_state(
    now: float,
    speaker_duration: Optional[float] = None,
    delay_duration: Optional[float] = None,
) -> DiscussionState:
    return DiscussionState(
        phase=DiscussionPhase.INITIAL_DELAY,
        current_speaker_index=0,
        speaker_start_time=now,
        speaker_duration=(
            settings.speaker_duration_seconds if speaker_duration is None else speaker_duration
        ),
        delay_start_time=now,
        delay_duration=settings.initial_delay_seconds if delay_duration is None else delay_duration,
        last_transition_time=now,
    )


def _within_guard(state: DiscussionState, now: float, guard: float) -> bool:
    return now - state.last_transition_time < guard


def _step(state: DiscussionState, now: float, total_speakers: int) -> DiscussionState:
    """One forward transition, unconditionally."""
    if state.phase == DiscussionPhase.INITIAL_DELAY:
        if total_speakers <= 0:
            return state.model_copy(update={
                "phase": DiscussionPhase.FINISHED,
                "last_transition_time": now,
            })
        return state.model_copy(update={
            "phase": DiscussionPhase.SPEAKING,
            "current_speaker_index": 0,
            "speaker_start_time": now,
            "last_transition_time": now,
        })
    if state.phase == DiscussionPhase.SPEAKING:
        next_index = state.current_speaker_index + 1
        return state.model_copy(update={
            "phase": DiscussionPhase.FINISHED if next_index >= total_speakers else DiscussionPhase.SPEAKING,
            "current_speaker_index": next_index,
            "speaker_start_time": now,
            "last_transition_time": now,
        })
    return state


def is_due(state: DiscussionState, now: float) -> bool:
    if state.phase == DiscussionPhase.INITIAL_DELAY:
        return now - state.delay_start_time >= state.delay_duration
    if state.phase == DiscussionPhase.SPEAKING:
        return now - state.speaker_start_time >= state.speaker_duration
    return False


def advance_if_due(
    state: DiscussionState,
    now: float,
    total_speakers: int,
    guard: Optional[float] = None,
) -> DiscussionState:
    """Advance by at most one step if the current timer has run out."""
    guard = settings.advance_guard_seconds if guard is None else guard
    if state.finished or _within_guard(state, now, guard) or not is_due(state, now):
        return state
    return _step(state, now, total_speakers)


def skip_current(
    state: DiscussionState,
    now: float,
    total_speakers: int,
    guard: Optional[float] = None,
) -> DiscussionState:
    """Force the current speaker's turn to end (guarded like any other advance)."""
    guard = settings.advance_guard_seconds if guard is None else guard
    if state.phase != DiscussionPhase.SPEAKING or _within_guard(state, now, guard):
        return state
    return _step(state, now, total_speakers)


def time_remaining(state: DiscussionState, now: float) -> int:
    if state.phase == DiscussionPhase.SPEAKING:
        return max(0, math.floor(state.speaker_duration - (now - state.speaker_start_time)))
    if state.phase == DiscussionPhase.INITIAL_DELAY:
        return max(0, math.ceil(state.delay_duration - (now - state.delay_start_time)))
    return 0


def current_speaker(state: DiscussionState, order: List[str]) -> Optional[str]:
    if state.phase != DiscussionPhase.SPEAKING:
        return None
    if 0 <= state.current_speaker_index < len(order):
        return order[state.current_speaker_index]
    return None


def build_view(
    state: DiscussionState, order: List[str], player_address: Optional[str], now: float
) -> Dict[str, Any]:
    speaker = current_speaker(state, order)
    return {
        "active": not state.finished,
        "finished": state.finished,
        "phase": state.phase.value,
        "currentSpeakerIndex": state.current_speaker_index,
        "currentSpeakerAddress": speaker,
        "totalSpeakers": len(order),
        "timeRemaining": time_remaining(state, now),
        "speakerDuration": state.speaker_duration,
        "isMyTurn": bool(player_address and speaker and speaker.lower() == player_address.lower()),
    }


# ── Scheduler (store + chain) ─────────────────────────────────────────────────

class DiscussionScheduler:
    """
    Request-scoped handlers. Each one reads alive players from the chain,
    applies advance_if_due, persists if anything changed, and returns the view.
    """

    def __init__(
        self,
        store: Optional[CoordinatorStore] = None,
        chain: Optional[ChainService] = None,
    ):
        self._store = store
        self._chain = chain

    @property
    def store(self) -> CoordinatorStore:
        return self._store or get_store()

    @property
    def chain(self) -> ChainService:
        return self._chain or get_chain_service()

    async def speaker_order(self, room_id: int) -> List[str]:
        alive: List[ChainPlayer] = await self.chain.get_alive_players(room_id)
        return shuffle_for_room(room_id, [p.wallet for p in alive])

    async def _load_advanced(
        self, room_id: int, day_count: int, order: List[str], now: float
    ) -> Optional[DiscussionState]:
        state = await self.store.get_discussion_state(room_id, day_count)
        if state is None:
            return None
        advanced = advance_if_due(state, now, len(order))
        if advanced != state:
            await self.store.set_discussion_state(room_id, day_count, advanced)
            logger.info(
                f"[room {room_id}] Day {day_count}: {state.phase.value}#{state.current_speaker_index}"
                f" → {advanced.phase.value}#{advanced.current_speaker_index} (timer)"
            )
        return advanced

    async def get_view(
        self,
        room_id: int,
        day_count: int = 1,
        player_address: Optional[str] = None,
        now: Optional[float] = None,
    ) -> Dict[str, Any]:
        now = time.time() if now is None else now
        order = await self.speaker_order(room_id)
        state = await self._load_advanced(room_id, day_count, order, now)
        if state is None:
            return {"active": False, "finished": False, "message": "Discussion not started"}
        return build_view(state, order, player_address, now)

    async def start(
        self,
        room_id: int,
        day_count: int = 1,
        player_address: Optional[str] = None,
        now: Optional[float] = None,
    ) -> Dict[str, Any]:
        now = time.time() if now is None else now
        order = await self.speaker_order(room_id)
        state = await self._load_advanced(room_id, day_count, order, now)
        if state is None:
            state = start_state(now)
            await self.store.set_discussion_state(room_id, day_count, state)
            logger.info(
                f"[room {room_id}] Day {day_count}: discussion started by {player_address or 'unknown'}"
                f" ({len(order)} speakers)"
            )
        return build_view(state, order, player_address, now)

    async def skip(
        self,
        room_id: int,
        day_count: int = 1,
        player_address: Optional[str] = None,
        now: Optional[float] = None,
    ) -> Dict[str, Any]:
        now = time.time() if now is None else now
        if not player_address:
            raise ValidationError("Missing playerAddress")
        order = await self.speaker_order(room_id)
        state = await self._load_advanced(room_id, day_count, order, now)
        if state is None:
            raise NotFoundError("Discussion not started")
        if state.phase != DiscussionPhase.SPEAKING:
            raise ValidationError("Discussion not active")

        room = await self.chain.get_room(room_id)
        speaker = current_speaker(state, order)
        is_speaker = bool(speaker) and speaker.lower() == player_address.lower()
        is_host = room.host.lower() == player_address.lower()
        if not is_speaker and not is_host:
            raise AuthorizationError("Not your turn to speak (and you are not Host)")

        skipped = skip_current(state, now, len(order))
        if skipped != state:
            await self.store.set_discussion_state(room_id, day_count, skipped)
            logger.info(
                f"[room {room_id}] Day {day_count}: speaker skipped by {'HOST' if is_host else 'PLAYER'},"
                f" index {state.current_speaker_index} → {skipped.current_speaker_index}"
            )
        return build_view(skipped, order, player_address, now)


_discussion_scheduler: Optional[DiscussionScheduler] = None


def get_discussion_scheduler() -> DiscussionScheduler:
    global _discussion_scheduler
    if _discussion_scheduler is None:
        _discussion_scheduler = DiscussionScheduler()
    return _discussion_scheduler
