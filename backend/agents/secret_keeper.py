"""
Secret Keeper — off-chain custody of revealed (role, salt) pairs.

Responsibilities:
- Validate and store a player's revealed secret after a signed request
- Serve per-room secret snapshots to the win detector and investigator
- Produce night summaries (how many reveals to expect, never who)
- Explicit room clear (host-signed)

Roles are never broadcast from here; only counts leave this module, except
through the investigation verifier after on-chain proof of a CHECK.
"""
import logging
from typing import Any, Dict, Iterable, Optional

from eth_abi import encode as abi_encode
from eth_utils import keccak

from config import settings
from models.errors import AuthorizationError, ValidationError
from models.game import PlayerSecret, Role
from services.chain_service import ChainService, get_chain_service
from services.signature_service import (
    SignatureService,
    clear_room_message,
    get_signature_service,
    reveal_secret_message,
)
from services.store import CoordinatorStore, get_store

logger = logging.getLogger(__name__)

TOWN_NIGHT_ROLES = (Role.DETECTIVE, Role.DOCTOR)


def parse_role(value: Any) -> Role:
    """Accept 1-4 as int or numeric string. Anything else is a ValidationError."""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid role: {value!r}")
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int):
        raise ValidationError(f"Invalid role: {value!r}")
    try:
        return Role(value)
    except ValueError:
        raise ValidationError(f"Invalid role: {value} (expected one of {[int(r) for r in Role]})")


def role_commit_hash(role: Role, salt: str) -> bytes:
    """keccak256(abi.encode(uint8 role, string salt)) with the salt stripped of 0x, as committed on-chain."""
    clean_salt = salt[2:] if salt.startswith("0x") else salt
    return keccak(abi_encode(["uint8", "string"], [int(role), clean_salt]))


class SecretKeeper:

    def __init__(
        self,
        store: Optional[CoordinatorStore] = None,
        signatures: Optional[SignatureService] = None,
        chain: Optional[ChainService] = None,
        verify_role_commits: Optional[bool] = None,
    ):
        self._store = store
        self._signatures = signatures
        self._chain = chain
        self.verify_role_commits = (
            settings.verify_role_commits if verify_role_commits is None else verify_role_commits
        )

    @property
    def store(self) -> CoordinatorStore:
        return self._store or get_store()

    @property
    def signatures(self) -> SignatureService:
        return self._signatures or get_signature_service()

    @property
    def chain(self) -> ChainService:
        return self._chain or get_chain_service()

    # ── Store / read / clear ──────────────────────────────────────────────────

    async def store_secret(self, room_id: int, address: str, role: Role, salt: str) -> None:
        """Upsert a validated secret. Signature must already have been checked."""
        if not isinstance(role, Role):
            role = parse_role(role)
        if not salt:
            raise ValidationError("Missing salt")
        await self.store.store_secret(room_id, address.lower(), PlayerSecret(role=role, salt=salt))

    async def reveal_secret(
        self,
        room_id: int,
        address: str,
        role: Any,
        salt: str,
        signature: str,
        delegate_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Handle POST reveal-secret. Role is validated before any signature work,
        so an invalid role is rejected regardless of the signature.
        """
        parsed = parse_role(role)
        signer_role = await self.signatures.authenticate(
            room_id,
            address,
            reveal_secret_message(room_id, int(parsed), salt),
            signature,
            delegate_address,
        )

        if self.verify_role_commits:
            committed = await self.chain.get_role_commit(room_id, address)
            if committed != role_commit_hash(parsed, salt):
                logger.warning(f"[room {room_id}] Role commit mismatch for {address.lower()}")
                raise AuthorizationError("Revealed role does not match on-chain commit")

        await self.store_secret(room_id, address, parsed, salt)
        logger.info(f"[room {room_id}] Secret accepted for {address.lower()} (signer={signer_role.value})")
        return {"success": True}

    async def get_room_secrets(self, room_id: int) -> Optional[Dict[str, PlayerSecret]]:
        return await self.store.get_room_secrets(room_id)

    async def clear_room(self, room_id: int) -> None:
        await self.store.clear_room(room_id)

    async def clear_room_signed(
        self, room_id: int, signature: str, delegate_address: Optional[str] = None
    ) -> Dict[str, Any]:
        """Host-only explicit clear."""
        room = await self.chain.get_room(room_id)
        await self.signatures.authenticate(
            room_id, room.host, clear_room_message(room_id), signature, delegate_address
        )
        await self.clear_room(room_id)
        return {"success": True}

    # ── Night summary ─────────────────────────────────────────────────────────

    @staticmethod
    def summarize(
        secrets: Optional[Dict[str, PlayerSecret]], alive_addresses: Iterable[str]
    ) -> Dict[str, Any]:
        if not secrets:
            return {
                "expectedTownReveals": 0,
                "expectedMafiaReveals": 0,
                "warning": "Secrets not yet stored",
            }
        town = mafia = 0
        for addr in alive_addresses:
            secret = secrets.get(addr.lower())
            if secret is None:
                continue
            if secret.role is Role.MAFIA:
                mafia += 1
            elif secret.role in TOWN_NIGHT_ROLES:
                town += 1
        return {"expectedTownReveals": town, "expectedMafiaReveals": mafia}

    async def night_summary(self, room_id: int) -> Dict[str, Any]:
        alive = await self.chain.get_alive_players(room_id)
        secrets = await self.get_room_secrets(room_id)
        return self.summarize(secrets, [p.address for p in alive])


_secret_keeper: Optional[SecretKeeper] = None


def get_secret_keeper() -> SecretKeeper:
    global _secret_keeper
    if _secret_keeper is None:
        _secret_keeper = SecretKeeper()
    return _secret_keeper
