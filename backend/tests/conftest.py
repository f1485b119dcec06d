"""Shared fakes: an in-memory contract, a canned prover, and signing wallets."""

import asyncio
from typing import Dict, List, Optional, Set, Tuple

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from models.errors import TransientChainError
from models.game import (
    FLAG_ACTIVE,
    ZERO_ADDRESS,
    ChainPlayer,
    GamePhase,
    NightActionType,
    RevealEvent,
    RoomInfo,
    SessionKey,
)
from services.proof_service import Groth16Prover, ProofService
from services.signature_service import SignatureService
from services.store import MemoryStore


class Wallet:
    def __init__(self):
        self._account = Account.create()
        self.address = self._account.address

    def sign(self, message: str) -> str:
        signed = Account.sign_message(encode_defunct(text=message), private_key=self._account.key)
        sig = signed.signature.hex()
        return sig if sig.startswith("0x") else "0x" + sig


class FakeChain:
    """Same read surface as ChainService, backed by dicts."""

    def __init__(self):
        self.rooms: Dict[int, RoomInfo] = {}
        self.players: Dict[int, List[ChainPlayer]] = {}
        self.events: List[RevealEvent] = []
        self.revealed: Dict[Tuple[int, str], Tuple[int, str]] = {}
        self.role_commits: Dict[Tuple[int, str], bytes] = {}
        self.session_keys: Dict[str, SessionKey] = {}
        self.session_owners: Dict[str, str] = {}
        self.head = 10_000
        self.failing_ranges: Set[Tuple[int, int]] = set()
        self.fail_all_logs = False
        self.fail_head = False
        self.log_queries: List[Tuple[int, int]] = []

    # ── setup helpers ──

    def seat(self, room_id: int, wallets, host: Optional[str] = None, phase=GamePhase.DAY):
        self.players[room_id] = [
            ChainPlayer(wallet=w.address, nickname=f"p{i}", flags=FLAG_ACTIVE)
            for i, w in enumerate(wallets)
        ]
        self.rooms[room_id] = RoomInfo(
            id=room_id,
            host=host or wallets[0].address,
            phase=phase,
            players_count=len(wallets),
            alive_count=len(wallets),
            day_count=1,
        )

    def kill(self, room_id: int, wallet):
        for p in self.players[room_id]:
            if p.address == wallet.address.lower():
                p.flags &= ~FLAG_ACTIVE

    def emit_check(self, room_id: int, detective, target, block: int):
        self.events.append(RevealEvent(
            room_id=room_id,
            player=detective.address,
            action=int(NightActionType.CHECK),
            target=target.address,
            block_number=block,
        ))

    def register_session(self, player, delegate, room_id: int = 0, expires_at: int = 0, active=True):
        self.session_owners[delegate.address.lower()] = player.address
        self.session_keys[player.address.lower()] = SessionKey(
            session_address=delegate.address,
            expires_at=expires_at,
            room_id=room_id,
            is_active=active,
        )

    # ── ChainService surface ──

    async def get_room(self, room_id: int) -> RoomInfo:
        return self.rooms.get(room_id) or RoomInfo(id=0, host=ZERO_ADDRESS, phase=GamePhase.LOBBY)

    async def get_players(self, room_id: int) -> List[ChainPlayer]:
        return [p.model_copy() for p in self.players.get(room_id, [])]

    async def get_alive_players(self, room_id: int) -> List[ChainPlayer]:
        return [p for p in await self.get_players(room_id) if p.alive]

    async def get_block_number(self) -> int:
        if self.fail_head:
            raise TransientChainError("Chain read failed: eth_blockNumber")
        return self.head

    async def get_reveal_events(self, room_id: int, from_block: int, to_block: int) -> List[RevealEvent]:
        self.log_queries.append((from_block, to_block))
        if self.fail_all_logs or (from_block, to_block) in self.failing_ranges:
            raise TransientChainError(f"Chain read failed: logs {from_block}-{to_block}")
        return [
            e for e in self.events
            if e.room_id == room_id and from_block <= (e.block_number or 0) <= to_block
        ]

    async def get_revealed_action(self, room_id: int, player: str) -> RevealEvent:
        action, target = self.revealed.get((room_id, player.lower()), (0, ZERO_ADDRESS))
        return RevealEvent(room_id=room_id, player=player, action=action, target=target)

    async def get_role_commit(self, room_id: int, player: str) -> bytes:
        return self.role_commits.get((room_id, player.lower()), b"\x00" * 32)

    async def get_session_key(self, main_wallet: str) -> SessionKey:
        return self.session_keys.get(main_wallet.lower()) or SessionKey()

    async def get_session_owner(self, session_address: str) -> str:
        return self.session_owners.get(session_address.lower(), ZERO_ADDRESS)


SAMPLE_PROOF = {
    "pi_a": ["1", "2", "1"],
    "pi_b": [["3", "4"], ["5", "6"], ["1", "0"]],
    "pi_c": ["7", "8", "1"],
    "protocol": "groth16",
    "curve": "bn128",
}


class FakeProver(Groth16Prover):

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: List[Dict[str, str]] = []

    async def prove(self, inputs):
        self.calls.append(inputs)
        if self.delay:
            await asyncio.sleep(self.delay)
        return SAMPLE_PROOF, [inputs["roomId"], inputs["mafiaCount"], inputs["townCount"]]


@pytest.fixture
def wallets():
    return [Wallet() for _ in range(5)]


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def store():
    return MemoryStore(ttl_seconds=3600)


@pytest.fixture
def signatures(chain):
    return SignatureService(chain=chain)


@pytest.fixture
def prover():
    return FakeProver()


@pytest.fixture
def proofs(prover):
    return ProofService(prover=prover, timeout_seconds=5)


@pytest.fixture
def make_wallet():
    return Wallet


@pytest.fixture
def sample_proof():
    return SAMPLE_PROOF


@pytest.fixture
def slow_proofs():
    return ProofService(prover=FakeProver(delay=1.0), timeout_seconds=0.05)
