"""
Investigation Verifier — event reconciliation before disclosure.

A detective learns a target's role only after proving, on-chain, that they
revealed a CHECK on that target. Order of checks:

  1. Signature over investigate:{roomId}:{target} (primary or session key)
  2. NightActionRevealed logs, scanned backward in bounded chunks
  3. revealedActions / revealedTargets mapping, as a fallback

The two sources complement each other: the event may not be indexed yet, or
the mapping may already be cleared by a later transaction (the contract resets
it when the night ends) while the event still exists.

Authorization always precedes disclosure: a stored secret is never read for a
claim the chain does not confirm.
"""
import logging
from typing import Any, Dict, Optional

from config import settings
from models.errors import AuthorizationError, NotFoundError, TransientChainError
from models.game import NightActionType, RevealEvent
from services.chain_service import ChainService, get_chain_service
from services.signature_service import SignatureService, get_signature_service, investigate_message
from services.store import CoordinatorStore, get_store
from utils.block_ranges import backward_block_ranges

logger = logging.getLogger(__name__)


def _matches(event: RevealEvent, detective: str, target: str) -> bool:
    return (
        event.player.lower() == detective.lower()
        and event.action == NightActionType.CHECK
        and event.target.lower() == target.lower()
    )


class InvestigationVerifier:

    def __init__(
        self,
        store: Optional[CoordinatorStore] = None,
        chain: Optional[ChainService] = None,
        signatures: Optional[SignatureService] = None,
        chunk_size: Optional[int] = None,
        max_lookback: Optional[int] = None,
    ):
        self._store = store
        self._chain = chain
        self._signatures = signatures
        self.chunk_size = chunk_size or settings.log_chunk_size
        self.max_lookback = max_lookback or settings.log_max_lookback

    @property
    def store(self) -> CoordinatorStore:
        return self._store or get_store()

    @property
    def chain(self) -> ChainService:
        return self._chain or get_chain_service()

    @property
    def signatures(self) -> SignatureService:
        return self._signatures or get_signature_service()

    # ── On-chain confirmation ─────────────────────────────────────────────────

    async def find_reveal_event(
        self, room_id: int, detective: str, target: str
    ) -> Optional[RevealEvent]:
        """
        Newest-first chunked scan. A failing chunk counts as "not in this chunk".
        Raises TransientChainError when the head block is unreadable or when the
        lookback is exhausted without a single chunk answering.
        """
        head = await self.chain.get_block_number()
        searched = failed = 0
        for from_block, to_block in backward_block_ranges(head, self.chunk_size, self.max_lookback):
            searched += 1
            try:
                events = await self.chain.get_reveal_events(room_id, from_block, to_block)
            except Exception as exc:
                failed += 1
                logger.warning(
                    f"[room {room_id}] Log query {from_block}-{to_block} failed, continuing: {exc}"
                )
                continue
            for event in events:
                if _matches(event, detective, target):
                    return event
        if searched and failed == searched:
            raise TransientChainError(f"Log search exhausted: all {failed} block-range queries failed")
        logger.info(
            f"[room {room_id}] No CHECK event for {detective.lower()} → {target.lower()}"
            f" in last {self.max_lookback} blocks"
        )
        return None

    async def confirm_check(self, room_id: int, detective: str, target: str) -> str:
        """Return "event" or "mapping" for whichever source confirmed; raise otherwise."""
        search_error: Optional[TransientChainError] = None
        try:
            if await self.find_reveal_event(room_id, detective, target) is not None:
                return "event"
        except TransientChainError as exc:
            search_error = exc

        revealed = await self.chain.get_revealed_action(room_id, detective)
        if _matches(revealed, detective, target):
            return "mapping"
        if search_error is not None:
            # Could not actually look at the logs; "not verified" would be a guess
            raise search_error

        logger.info(f"[room {room_id}] Verification failed for {detective.lower()}: no event, mapping mismatch")
        raise AuthorizationError(
            "Detective action not verified on-chain (No event or mapping match)",
            details={"revealedAction": revealed.action, "revealedTarget": revealed.target},
        )

    # ── Entry point ───────────────────────────────────────────────────────────

    async def investigate(
        self,
        room_id: int,
        detective: str,
        target: str,
        signature: str,
        delegate_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        logger.info(f"[room {room_id}] Detective {detective.lower()} checking {target.lower()}")
        await self.signatures.authenticate(
            room_id, detective, investigate_message(room_id, target), signature, delegate_address
        )

        source = await self.confirm_check(room_id, detective, target)
        logger.info(f"[room {room_id}] Verification SUCCESS via {source}")

        secrets = await self.store.get_room_secrets(room_id)
        secret = (secrets or {}).get(target.lower())
        if secret is None:
            raise NotFoundError("Target role not found in server records")

        return {
            "success": True,
            "role": int(secret.role),
            "isMafia": secret.role.is_mafia,
        }


_investigation_verifier: Optional[InvestigationVerifier] = None


def get_investigation_verifier() -> InvestigationVerifier:
    global _investigation_verifier
    if _investigation_verifier is None:
        _investigation_verifier = InvestigationVerifier()
    return _investigation_verifier
