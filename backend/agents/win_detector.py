"""
Win Detector — tally, decide, prove.

Stateless and safe to retry: each call recomputes the tally from a fresh
snapshot of chain liveness and stored secrets, and nothing is persisted, not
even on success. A proof timeout simply means "call again".

Decision rule (alive players only):
  mafia == 0            → TOWN_WIN
  mafia >= town         → MAFIA_WIN
  otherwise             → game continues

A decision is only made when every alive player has a stored secret. Partial
information never produces a winner.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from models.game import ChainPlayer, GamePhase, PlayerSecret, WinResult
from services.chain_service import ChainService, get_chain_service
from services.proof_service import ProofService, get_proof_service
from services.store import CoordinatorStore, get_store

logger = logging.getLogger(__name__)

INACTIVE_PHASES = (GamePhase.LOBBY, GamePhase.ENDED)


@dataclass
class Tally:
    mafia_count: int = 0
    town_count: int = 0
    missing: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.missing


def tally_alive(players: List[ChainPlayer], secrets: Dict[str, PlayerSecret]) -> Tally:
    tally = Tally()
    for player in players:
        if not player.alive:
            continue
        secret = secrets.get(player.address)
        if secret is None:
            tally.missing.append(player.address)
        elif secret.role.is_mafia:
            tally.mafia_count += 1
        else:
            tally.town_count += 1
    return tally


def decide(tally: Tally) -> Optional[WinResult]:
    if not tally.complete:
        return None
    if tally.mafia_count == 0:
        return WinResult.TOWN_WIN
    if tally.mafia_count >= tally.town_count:
        return WinResult.MAFIA_WIN
    return None


class WinDetector:

    def __init__(
        self,
        store: Optional[CoordinatorStore] = None,
        chain: Optional[ChainService] = None,
        proofs: Optional[ProofService] = None,
    ):
        self._store = store
        self._chain = chain
        self._proofs = proofs

    @property
    def store(self) -> CoordinatorStore:
        return self._store or get_store()

    @property
    def chain(self) -> ChainService:
        return self._chain or get_chain_service()

    @property
    def proofs(self) -> ProofService:
        return self._proofs or get_proof_service()

    async def check_win(self, room_id: int) -> Dict[str, Any]:
        logger.info(f"[room {room_id}] Checking win condition")

        room = await self.chain.get_room(room_id)
        if room.phase in INACTIVE_PHASES:
            return {
                "winDetected": False,
                "phase": int(room.phase),
                "message": "Game not in active phase or already ended",
            }

        # Snapshot both sources together; the store has no cross-address transaction.
        players, secrets = await asyncio.gather(
            self.chain.get_players(room_id),
            self.store.get_room_secrets(room_id),
        )
        if not secrets:
            return {"winDetected": False, "message": "No secrets found for this room"}

        tally = tally_alive(players, secrets)
        if tally.missing:
            logger.info(f"[room {room_id}] MISSING SECRETS for: {', '.join(tally.missing)}")
        logger.info(
            f"[room {room_id}] Mafia={tally.mafia_count}, Town={tally.town_count},"
            f" Missing Secrets={len(tally.missing)}"
        )

        result = decide(tally)
        if result is None:
            return {
                "winDetected": False,
                "message": "Waiting for secrets to sync" if tally.missing else "Game continues",
            }

        logger.info(f"[room {room_id}] {result.value} detected, generating proof")
        _, _, artifact = await self.proofs.generate(room_id, tally.mafia_count, tally.town_count)
        return {
            "winDetected": True,
            "result": result.value,
            "formattedProof": artifact.model_dump(),
        }


_win_detector: Optional[WinDetector] = None


def get_win_detector() -> WinDetector:
    global _win_detector
    if _win_detector is None:
        _win_detector = WinDetector()
    return _win_detector
