"""
Signed-request authentication.

Clients sign a fixed text message with EIP-191 personal_sign, either from the
primary wallet or from a session key (delegate) the wallet registered on-chain
for this room. The signer is accepted under one of two roles:

  PRIMARY  — signature recovers to the claimed player address
  DELEGATE — signature recovers to delegate_address, and the contract maps
             that session key back to the player with an active, unexpired,
             room-bound registration
"""
import logging
import time
from enum import Enum
from typing import Callable, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from models.errors import AuthenticationError
from models.game import ZERO_ADDRESS
from services.chain_service import ChainService, get_chain_service

logger = logging.getLogger(__name__)


class SignerRole(str, Enum):
    PRIMARY = "primary"
    DELEGATE = "delegate"


# ── Canonical messages ────────────────────────────────────────────────────────

def reveal_secret_message(room_id: int, role: int, salt: str) -> str:
    return f"reveal-secret:{room_id}:{role}:{salt}"


def investigate_message(room_id: int, target: str) -> str:
    return f"investigate:{room_id}:{target.lower()}"


def clear_room_message(room_id: int) -> str:
    return f"clear-room:{room_id}"


def recover_signer(message: str, signature: str) -> Optional[str]:
    """Lowercased address that produced signature over message, or None if unrecoverable."""
    try:
        return Account.recover_message(encode_defunct(text=message), signature=signature).lower()
    except Exception as exc:  # malformed hex, wrong length, bad v value
        logger.debug(f"Signature recovery failed: {exc}")
        return None


class SignatureService:

    def __init__(self, chain: Optional[ChainService] = None, clock: Callable[[], float] = time.time):
        self._chain = chain
        self._clock = clock

    @property
    def chain(self) -> ChainService:
        return self._chain or get_chain_service()

    async def _delegate_registered(self, room_id: int, player: str, delegate: str) -> bool:
        owner = await self.chain.get_session_owner(delegate)
        if owner.lower() != player.lower() or owner.lower() == ZERO_ADDRESS:
            return False
        session = await self.chain.get_session_key(player)
        if not session.is_active or session.session_address.lower() != delegate.lower():
            return False
        if session.expires_at and session.expires_at <= int(self._clock()):
            return False
        return session.room_id in (0, room_id)

    async def authenticate(
        self,
        room_id: int,
        player: str,
        message: str,
        signature: str,
        delegate_address: Optional[str] = None,
    ) -> SignerRole:
        """
        Return the role under which the signature is accepted for player.
        Raises AuthenticationError when neither primary nor delegate matches.
        """
        signer = recover_signer(message, signature)
        if signer is None:
            raise AuthenticationError("Malformed signature")

        if signer == player.lower():
            return SignerRole.PRIMARY

        if delegate_address and signer == delegate_address.lower():
            if await self._delegate_registered(room_id, player, delegate_address):
                return SignerRole.DELEGATE
            logger.info(f"[room {room_id}] Delegate {signer} not registered for {player.lower()}")

        raise AuthenticationError("Signature does not match player or a registered session key")


_signature_service: Optional[SignatureService] = None


def get_signature_service() -> SignatureService:
    global _signature_service
    if _signature_service is None:
        _signature_service = SignatureService()
    return _signature_service
