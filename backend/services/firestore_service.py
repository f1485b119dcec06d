import asyncio
import logging
import os
from typing import Optional, Dict, Any
from datetime import datetime, timedelta, timezone

from config import settings
from models.errors import StoreUnavailableError
from models.game import DiscussionState, PlayerSecret
from services.store import CoordinatorStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FirestoreService(CoordinatorStore):
    """
    Async-friendly Firestore wrapper using run_in_executor to avoid
    blocking the event loop.

    Layout:
      room_secrets/{room_id}         {secrets: {address: {role, salt}}, expire_at}
      discussions/{room_id}_{day}    {...DiscussionState, expire_at}

    expire_at is meant for a Firestore TTL policy. TTL deletion is lazy
    (can lag by hours), so reads treat past-expiry documents as absent and a
    write into an expired secrets document replaces it instead of merging.

    Any client error surfaces as StoreUnavailableError.
    """

    def __init__(self, db=None):
        if db is None:
            if settings.firestore_emulator_host:
                os.environ["FIRESTORE_EMULATOR_HOST"] = settings.firestore_emulator_host
            # Lazy import so the service can be instantiated before GCP creds exist
            from google.cloud import firestore
            db = firestore.Client(project=settings.google_cloud_project or None)
        self.db = db
        self.ttl = timedelta(seconds=settings.game_data_ttl_seconds)

    def _run(self, fn):
        """Run a sync Firestore call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, fn)

    async def _call(self, what: str, fn):
        try:
            return await self._run(fn)
        except Exception as exc:
            logger.warning(f"[firestore] {what} failed: {exc}")
            raise StoreUnavailableError(f"Store operation failed: {what}") from exc

    def _transaction(self, fn):
        """Run fn(transaction) under Firestore's retrying transactional wrapper."""
        from google.cloud import firestore
        return firestore.transactional(fn)(self.db.transaction())

    @staticmethod
    def _expired(data: Dict[str, Any]) -> bool:
        expire_at = data.get("expire_at")
        return expire_at is not None and expire_at <= _utcnow()

    # ── Collection helpers ────────────────────────────────────────────────────

    def _secrets_ref(self, room_id: int):
        return self.db.collection("room_secrets").document(str(room_id))

    def _discussion_ref(self, room_id: int, day_count: int):
        return self.db.collection("discussions").document(f"{room_id}_{day_count}")

    # ── Secrets ───────────────────────────────────────────────────────────────

    async def store_secret(self, room_id: int, address: str, secret: PlayerSecret) -> None:
        ref = self._secrets_ref(room_id)
        data = {
            "secrets": {address.lower(): {"role": int(secret.role), "salt": secret.salt}},
            "expire_at": _utcnow() + self.ttl,
        }

        def upsert(transaction):
            snapshot = ref.get(transaction=transaction)
            current = snapshot.to_dict() if snapshot.exists else None
            # merge=True deep-merges the secrets map, so writers for different
            # addresses do not clobber each other. An expired room starts over.
            fresh = current is None or self._expired(current)
            transaction.set(ref, data, merge=not fresh)

        await self._call(f"store_secret({room_id})", lambda: self._transaction(upsert))
        logger.info(f"[room {room_id}] Stored secret for {address.lower()} (firestore)")

    async def get_room_secrets(self, room_id: int) -> Optional[Dict[str, PlayerSecret]]:
        doc = await self._call(f"get_room_secrets({room_id})", lambda: self._secrets_ref(room_id).get())
        if not doc.exists:
            return None
        data = doc.to_dict() or {}
        if self._expired(data):
            return None
        secrets = {
            addr: PlayerSecret(**raw) for addr, raw in (data.get("secrets") or {}).items()
        }
        return secrets or None

    async def clear_room(self, room_id: int) -> None:
        await self._call(f"clear_room({room_id})", lambda: self._secrets_ref(room_id).delete())
        docs = await self._call(
            f"clear_room({room_id}) discussions",
            lambda: list(self.db.collection("discussions").where("room_id", "==", room_id).stream()),
        )
        for d in docs:
            await self._call(f"clear_room({room_id}) {d.id}", d.reference.delete)
        logger.info(f"[room {room_id}] Cleared room data (firestore, {len(docs)} discussion docs)")

    # ── Discussion ────────────────────────────────────────────────────────────

    async def get_discussion_state(self, room_id: int, day_count: int) -> Optional[DiscussionState]:
        doc = await self._call(
            f"get_discussion_state({room_id}, {day_count})",
            lambda: self._discussion_ref(room_id, day_count).get(),
        )
        if not doc.exists:
            return None
        data = doc.to_dict() or {}
        if self._expired(data):
            return None
        data.pop("expire_at", None)
        data.pop("room_id", None)
        return DiscussionState(**data)

    async def set_discussion_state(self, room_id: int, day_count: int, state: DiscussionState) -> None:
        data = state.model_dump(mode="json")
        data["room_id"] = room_id
        data["expire_at"] = _utcnow() + self.ttl
        await self._call(
            f"set_discussion_state({room_id}, {day_count})",
            lambda: self._discussion_ref(room_id, day_count).set(data),
        )


_firestore_service: Optional["FirestoreService"] = None


def get_firestore_service() -> "FirestoreService":
    """Lazy singleton — initialised on first call, not at import time.
    This prevents credential errors from crashing the app before FastAPI boots.
    """
    global _firestore_service
    if _firestore_service is None:
        _firestore_service = FirestoreService()
    return _firestore_service
