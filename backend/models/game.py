from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Any, Union
from enum import Enum, IntEnum


# ── Contract enums ────────────────────────────────────────────────────────────
# Must match MafiaPortal.sol and the client's role encoding.

class Role(IntEnum):
    MAFIA = 1
    DOCTOR = 2
    DETECTIVE = 3
    CIVILIAN = 4

    @property
    def is_mafia(self) -> bool:
        return self is Role.MAFIA


class GamePhase(IntEnum):
    LOBBY = 0
    SHUFFLING = 1
    REVEAL = 2
    DAY = 3
    VOTING = 4
    NIGHT = 5
    ENDED = 6


class NightActionType(IntEnum):
    NONE = 0
    KILL = 1
    HEAL = 2
    CHECK = 3


# Player.flags bitfield
FLAG_CONFIRMED_ROLE = 1
FLAG_ACTIVE = 2
FLAG_HAS_VOTED = 4
FLAG_HAS_COMMITTED = 8
FLAG_HAS_REVEALED = 16
FLAG_DECK_COMMITTED = 64

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class DiscussionPhase(str, Enum):
    INITIAL_DELAY = "initial_delay"
    SPEAKING = "speaking"
    FINISHED = "finished"


class WinResult(str, Enum):
    TOWN_WIN = "TOWN_WIN"
    MAFIA_WIN = "MAFIA_WIN"


# ── Chain snapshots (read-only) ───────────────────────────────────────────────

class ChainPlayer(BaseModel):
    wallet: str
    nickname: str = ""
    flags: int = 0

    @property
    def address(self) -> str:
        return self.wallet.lower()

    @property
    def alive(self) -> bool:
        return (self.flags & FLAG_ACTIVE) != 0


class RoomInfo(BaseModel):
    id: int
    host: str
    phase: GamePhase
    players_count: int = 0
    alive_count: int = 0
    day_count: int = 0


class RevealEvent(BaseModel):
    room_id: int
    player: str
    action: int
    target: str
    block_number: Optional[int] = None


class SessionKey(BaseModel):
    session_address: str = ZERO_ADDRESS
    expires_at: int = 0
    room_id: int = 0
    is_active: bool = False


# ── Coordinator-owned state ───────────────────────────────────────────────────

class PlayerSecret(BaseModel):
    role: Role
    salt: str


class DiscussionState(BaseModel):
    phase: DiscussionPhase = DiscussionPhase.INITIAL_DELAY
    current_speaker_index: int = 0
    speaker_start_time: float = 0.0
    speaker_duration: float = 60.0
    delay_start_time: float = 0.0
    delay_duration: float = 5.0
    last_transition_time: float = 0.0

    @property
    def finished(self) -> bool:
        return self.phase == DiscussionPhase.FINISHED


class ProofArtifact(BaseModel):
    """Groth16 proof in the layout the Solidity verifier takes as calldata."""
    a: List[str]
    b: List[List[str]]
    c: List[str]
    inputs: List[str]


# ── HTTP request models ───────────────────────────────────────────────────────
# Clients send camelCase (roomId, playerAddress, ...); Python side stays snake_case.

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _RoomRequest(_CamelModel):
    room_id: Union[int, str]

    @field_validator("room_id")
    @classmethod
    def room_id_is_uint(cls, v: Union[int, str]) -> int:
        raw = str(v).strip()
        try:
            value = int(raw, 16) if raw.lower().startswith("0x") else int(raw)
        except ValueError:
            raise ValueError("roomId must be an integer")
        if value < 0:
            raise ValueError("roomId must be non-negative")
        return value


class DiscussionActionRequest(_RoomRequest):
    day_count: Optional[int] = Field(default=None, ge=0)
    action: str = Field(..., pattern="^(start|skip)$")
    player_address: Optional[str] = None


class RevealSecretRequest(_RoomRequest):
    address: str = Field(..., min_length=1)
    role: Any = Field(..., description="Role number; validated by the secret keeper")
    salt: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
    delegate_address: Optional[str] = None


class InvestigateRequest(_RoomRequest):
    detective_address: str = Field(..., min_length=1)
    target_address: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
    delegate_address: Optional[str] = None


class CheckWinRequest(_RoomRequest):
    pass


class ClearRoomRequest(_RoomRequest):
    signature: str = Field(..., min_length=1)
    delegate_address: Optional[str] = None


class ProofRequest(_RoomRequest):
    mafia_count: int = Field(..., ge=0)
    town_count: int = Field(..., ge=0)
