"""
Game coordination HTTP endpoints.

Routes:
  GET  /api/game/discussion       — Discussion state (self-advancing on read)
  POST /api/game/discussion       — start | skip
  POST /api/game/reveal-secret    — Signed role/salt reveal for win tallying
  POST /api/game/investigate      — Detective learns a role after on-chain CHECK proof
  GET  /api/game/night-summary    — How many night reveals to expect (counts only)
  POST /api/game/check-win        — Tally + Groth16 proof when a side has won
  POST /api/game/clear-room       — Host-signed removal of stored room data

Errors are raised as CoordinatorError subclasses and rendered by the
handler in main.py as {"error", "kind"} with the matching status code.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from agents.discussion_scheduler import DiscussionScheduler, get_discussion_scheduler
from agents.investigation_verifier import InvestigationVerifier, get_investigation_verifier
from agents.secret_keeper import SecretKeeper, get_secret_keeper
from agents.win_detector import WinDetector, get_win_detector
from models.errors import ValidationError
from models.game import (
    CheckWinRequest,
    ClearRoomRequest,
    DiscussionActionRequest,
    InvestigateRequest,
    RevealSecretRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["game"])

DEFAULT_DAY = 1


def _parse_room_id(raw: str) -> int:
    raw = (raw or "").strip()
    try:
        value = int(raw, 16) if raw.lower().startswith("0x") else int(raw)
    except ValueError:
        raise ValidationError("roomId must be an integer")
    if value < 0:
        raise ValidationError("roomId must be non-negative")
    return value


# ── Discussion ────────────────────────────────────────────────────────────────

@router.get("/game/discussion")
async def get_discussion(
    room_id: str = Query(..., alias="roomId"),
    day_count: Optional[int] = Query(None, alias="dayCount", ge=0),
    player_address: Optional[str] = Query(None, alias="playerAddress"),
    scheduler: DiscussionScheduler = Depends(get_discussion_scheduler),
):
    """Current speaker, time remaining, and whether it is the caller's turn."""
    return await scheduler.get_view(
        _parse_room_id(room_id),
        DEFAULT_DAY if day_count is None else day_count,
        player_address or None,
    )


@router.post("/game/discussion")
async def discussion_action(
    body: DiscussionActionRequest,
    scheduler: DiscussionScheduler = Depends(get_discussion_scheduler),
):
    day = DEFAULT_DAY if body.day_count is None else body.day_count
    if body.action == "start":
        return await scheduler.start(body.room_id, day, body.player_address)
    return await scheduler.skip(body.room_id, day, body.player_address)


# ── Secrets ───────────────────────────────────────────────────────────────────

@router.post("/game/reveal-secret")
async def reveal_secret(
    body: RevealSecretRequest,
    keeper: SecretKeeper = Depends(get_secret_keeper),
):
    return await keeper.reveal_secret(
        body.room_id,
        body.address,
        body.role,
        body.salt,
        body.signature,
        body.delegate_address,
    )


@router.get("/game/night-summary")
async def night_summary(
    room_id: str = Query(..., alias="roomId"),
    keeper: SecretKeeper = Depends(get_secret_keeper),
):
    """
    Number of alive town (detective + doctor) and mafia players, so clients
    know how many night reveals to wait for without learning who holds what.
    """
    return await keeper.night_summary(_parse_room_id(room_id))


@router.post("/game/clear-room")
async def clear_room(
    body: ClearRoomRequest,
    keeper: SecretKeeper = Depends(get_secret_keeper),
):
    logger.info(f"[room {body.room_id}] Clear requested")
    return await keeper.clear_room_signed(body.room_id, body.signature, body.delegate_address)


# ── Investigation ─────────────────────────────────────────────────────────────

@router.post("/game/investigate")
async def investigate(
    body: InvestigateRequest,
    verifier: InvestigationVerifier = Depends(get_investigation_verifier),
):
    return await verifier.investigate(
        body.room_id,
        body.detective_address,
        body.target_address,
        body.signature,
        body.delegate_address,
    )


# ── Win check ─────────────────────────────────────────────────────────────────

@router.post("/game/check-win")
async def check_win(
    body: CheckWinRequest,
    detector: WinDetector = Depends(get_win_detector),
):
    return await detector.check_win(body.room_id)
