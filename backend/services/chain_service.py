"""
Read-only access to the MafiaPortal game contract.

The chain is the source of truth for room phase, host, membership and
liveness. This layer never writes to it. Every RPC failure surfaces as
TransientChainError so route handlers can tell "retry later" apart from
"you are not allowed".

Reads used:
  rooms(roomId)                          — host, phase, counters
  getPlayers(roomId)                     — wallet, nickname, publicKey, flags
  revealedActions / revealedTargets      — current-night reveal mapping
  roleCommits(roomId, player)            — keccak(abi.encode(role, salt))
  sessionKeys(main) / sessionToMain(key) — delegate (session key) registry
  NightActionRevealed events             — reveal log, survives mapping resets
"""
import logging
from typing import Any, Awaitable, Dict, List, Optional

from web3 import AsyncWeb3
from web3.providers.rpc import AsyncHTTPProvider

from config import settings
from models.errors import TransientChainError, ValidationError
from models.game import ChainPlayer, GamePhase, RevealEvent, RoomInfo, SessionKey

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Contract ABI (subset of MafiaPortal actually read here)
# ---------------------------------------------------------------------------

MAFIA_PORTAL_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [{"name": "", "type": "uint256"}],
        "name": "rooms",
        "outputs": [
            {"name": "id", "type": "uint64"},
            {"name": "host", "type": "address"},
            {"name": "name", "type": "string"},
            {"name": "phase", "type": "uint8"},
            {"name": "maxPlayers", "type": "uint8"},
            {"name": "playersCount", "type": "uint8"},
            {"name": "aliveCount", "type": "uint8"},
            {"name": "dayCount", "type": "uint16"},
            {"name": "currentShufflerIndex", "type": "uint8"},
            {"name": "lastActionTimestamp", "type": "uint32"},
            {"name": "phaseDeadline", "type": "uint32"},
            {"name": "confirmedCount", "type": "uint8"},
            {"name": "votedCount", "type": "uint8"},
            {"name": "committedCount", "type": "uint8"},
            {"name": "revealedCount", "type": "uint8"},
            {"name": "keysSharedCount", "type": "uint8"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "roomId", "type": "uint256"}],
        "name": "getPlayers",
        "outputs": [
            {
                "components": [
                    {"name": "wallet", "type": "address"},
                    {"name": "nickname", "type": "string"},
                    {"name": "publicKey", "type": "bytes"},
                    {"name": "flags", "type": "uint32"},
                ],
                "name": "",
                "type": "tuple[]",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "", "type": "uint256"}, {"name": "", "type": "address"}],
        "name": "revealedActions",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "", "type": "uint256"}, {"name": "", "type": "address"}],
        "name": "revealedTargets",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "", "type": "uint256"}, {"name": "", "type": "address"}],
        "name": "roleCommits",
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "", "type": "address"}],
        "name": "sessionKeys",
        "outputs": [
            {"name": "sessionAddress", "type": "address"},
            {"name": "expiresAt", "type": "uint32"},
            {"name": "roomId", "type": "uint64"},
            {"name": "isActive", "type": "bool"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "", "type": "address"}],
        "name": "sessionToMain",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "roomId", "type": "uint256"},
            {"indexed": False, "name": "player", "type": "address"},
            {"indexed": False, "name": "action", "type": "uint8"},
            {"indexed": False, "name": "target", "type": "address"},
        ],
        "name": "NightActionRevealed",
        "type": "event",
    },
]


# ---------------------------------------------------------------------------
# Chain reader
# ---------------------------------------------------------------------------

class ChainService:
    """
    Thin async wrapper over the contract. Returns pydantic snapshots,
    never raw web3 tuples.
    """

    def __init__(self, rpc_url: str = "", contract_address: str = "", w3: Optional[AsyncWeb3] = None):
        self.rpc_url = rpc_url or settings.rpc_url
        self.contract_address = contract_address or settings.mafia_contract_address
        self._w3 = w3 or AsyncWeb3(
            AsyncHTTPProvider(self.rpc_url, request_kwargs={"timeout": settings.rpc_timeout_seconds})
        )
        self._contract = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(self.contract_address),
            abi=MAFIA_PORTAL_ABI,
        )

    @staticmethod
    def _checksum(address: str) -> str:
        try:
            return AsyncWeb3.to_checksum_address(address)
        except (TypeError, ValueError) as exc:
            # Malformed caller input, not a chain problem
            raise ValidationError(f"Invalid address: {address}") from exc

    async def _call(self, what: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except Exception as exc:
            logger.warning(f"[chain] {what} failed: {exc}")
            raise TransientChainError(f"Chain read failed: {what}") from exc

    # ── Room / players ────────────────────────────────────────────────────────

    async def get_room(self, room_id: int) -> RoomInfo:
        raw = await self._call(f"rooms({room_id})", self._contract.functions.rooms(room_id).call())
        return RoomInfo(
            id=int(raw[0]),
            host=str(raw[1]),
            phase=GamePhase(int(raw[3])),
            players_count=int(raw[5]),
            alive_count=int(raw[6]),
            day_count=int(raw[7]),
        )

    async def get_players(self, room_id: int) -> List[ChainPlayer]:
        raw = await self._call(
            f"getPlayers({room_id})", self._contract.functions.getPlayers(room_id).call()
        )
        return [ChainPlayer(wallet=str(p[0]), nickname=str(p[1]), flags=int(p[3])) for p in raw]

    async def get_alive_players(self, room_id: int) -> List[ChainPlayer]:
        """Alive players in contract join order."""
        return [p for p in await self.get_players(room_id) if p.alive]

    # ── Night reveals ─────────────────────────────────────────────────────────

    async def get_block_number(self) -> int:
        return int(await self._call("eth_blockNumber", self._w3.eth.block_number))

    async def get_reveal_events(self, room_id: int, from_block: int, to_block: int) -> List[RevealEvent]:
        logs = await self._call(
            f"NightActionRevealed logs {from_block}-{to_block}",
            self._contract.events.NightActionRevealed().get_logs(
                argument_filters={"roomId": room_id},
                from_block=from_block,
                to_block=to_block,
            ),
        )
        return [
            RevealEvent(
                room_id=int(log["args"]["roomId"]),
                player=str(log["args"]["player"]),
                action=int(log["args"]["action"]),
                target=str(log["args"]["target"]),
                block_number=log.get("blockNumber"),
            )
            for log in logs
        ]

    async def get_revealed_action(self, room_id: int, player: str) -> RevealEvent:
        """Current revealedActions/revealedTargets mapping entry for player."""
        addr = self._checksum(player)
        action = await self._call(
            f"revealedActions({room_id}, {addr})",
            self._contract.functions.revealedActions(room_id, addr).call(),
        )
        target = await self._call(
            f"revealedTargets({room_id}, {addr})",
            self._contract.functions.revealedTargets(room_id, addr).call(),
        )
        return RevealEvent(room_id=room_id, player=addr, action=int(action), target=str(target))

    # ── Role commits ──────────────────────────────────────────────────────────

    async def get_role_commit(self, room_id: int, player: str) -> bytes:
        addr = self._checksum(player)
        return bytes(await self._call(
            f"roleCommits({room_id}, {addr})",
            self._contract.functions.roleCommits(room_id, addr).call(),
        ))

    # ── Session keys ──────────────────────────────────────────────────────────

    async def get_session_key(self, main_wallet: str) -> SessionKey:
        addr = self._checksum(main_wallet)
        raw = await self._call(
            f"sessionKeys({addr})", self._contract.functions.sessionKeys(addr).call()
        )
        return SessionKey(
            session_address=str(raw[0]),
            expires_at=int(raw[1]),
            room_id=int(raw[2]),
            is_active=bool(raw[3]),
        )

    async def get_session_owner(self, session_address: str) -> str:
        addr = self._checksum(session_address)
        return str(await self._call(
            f"sessionToMain({addr})", self._contract.functions.sessionToMain(addr).call()
        ))


_chain_service: Optional[ChainService] = None


def get_chain_service() -> ChainService:
    """Lazy singleton. Use as a FastAPI dependency: Depends(get_chain_service)"""
    global _chain_service
    if _chain_service is None:
        _chain_service = ChainService()
    return _chain_service
