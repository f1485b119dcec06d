"""
Coordinator storage.

Two backends behind one interface:
  FirestoreService (services/firestore_service.py) — shared, survives restarts,
      safe across multiple instances.
  MemoryStore — process-wide dicts guarded by a mutex. Behaves identically for a
      single instance but is dev-only: two workers would each see their own copy.

Both hold PlayerSecret maps (per room) and DiscussionState (per room + day),
with a TTL that is refreshed on every write.
"""
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

from config import settings
from models.game import DiscussionState, PlayerSecret

logger = logging.getLogger(__name__)


class CoordinatorStore(ABC):

    # ── Secrets ───────────────────────────────────────────────────────────────

    @abstractmethod
    async def store_secret(self, room_id: int, address: str, secret: PlayerSecret) -> None:
        """Upsert one player's secret and refresh the room's TTL."""

    @abstractmethod
    async def get_room_secrets(self, room_id: int) -> Optional[Dict[str, PlayerSecret]]:
        """Return {lowercased address: secret}, or None when the room has none."""

    @abstractmethod
    async def clear_room(self, room_id: int) -> None:
        ...

    # ── Discussion ────────────────────────────────────────────────────────────

    @abstractmethod
    async def get_discussion_state(self, room_id: int, day_count: int) -> Optional[DiscussionState]:
        ...

    @abstractmethod
    async def set_discussion_state(self, room_id: int, day_count: int, state: DiscussionState) -> None:
        ...


class MemoryStore(CoordinatorStore):
    """In-process fallback. Not shared between workers or instances."""

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.game_data_ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # room_id -> (expires_at, {address: secret})
        self._secrets: Dict[int, Tuple[float, Dict[str, PlayerSecret]]] = {}
        # (room_id, day_count) -> (expires_at, state)
        self._discussions: Dict[Tuple[int, int], Tuple[float, DiscussionState]] = {}

    def _expiry(self) -> float:
        return self._clock() + self.ttl_seconds

    def _alive(self, expires_at: float) -> bool:
        return self._clock() < expires_at

    async def store_secret(self, room_id: int, address: str, secret: PlayerSecret) -> None:
        with self._lock:
            entry = self._secrets.get(room_id)
            room = dict(entry[1]) if entry and self._alive(entry[0]) else {}
            room[address.lower()] = secret.model_copy()
            self._secrets[room_id] = (self._expiry(), room)
        logger.info(f"[room {room_id}] Stored secret for {address.lower()} (memory)")

    async def get_room_secrets(self, room_id: int) -> Optional[Dict[str, PlayerSecret]]:
        with self._lock:
            entry = self._secrets.get(room_id)
            if entry is None:
                return None
            if not self._alive(entry[0]):
                del self._secrets[room_id]
                return None
            room = {addr: s.model_copy() for addr, s in entry[1].items()}
        return room or None

    async def clear_room(self, room_id: int) -> None:
        with self._lock:
            self._secrets.pop(room_id, None)
            for key in [k for k in self._discussions if k[0] == room_id]:
                del self._discussions[key]
        logger.info(f"[room {room_id}] Cleared room data (memory)")

    async def get_discussion_state(self, room_id: int, day_count: int) -> Optional[DiscussionState]:
        with self._lock:
            entry = self._discussions.get((room_id, day_count))
            if entry is None:
                return None
            if not self._alive(entry[0]):
                del self._discussions[(room_id, day_count)]
                return None
            return entry[1].model_copy()

    async def set_discussion_state(self, room_id: int, day_count: int, state: DiscussionState) -> None:
        with self._lock:
            self._discussions[(room_id, day_count)] = (self._expiry(), state.model_copy())


_store: Optional[CoordinatorStore] = None


def get_store() -> CoordinatorStore:
    """Lazy singleton selected by STORE_BACKEND.
    Use as a FastAPI dependency: Depends(get_store)
    """
    global _store
    if _store is None:
        if settings.store_backend == "firestore":
            from services.firestore_service import get_firestore_service
            _store = get_firestore_service()
        else:
            if settings.store_backend != "memory":
                logger.warning(f"Unknown STORE_BACKEND '{settings.store_backend}', using memory")
            logger.warning("Using in-process MemoryStore; do not run more than one instance")
            _store = MemoryStore()
    return _store
