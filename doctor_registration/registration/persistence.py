"""
Draft persistence.

A registration draft is stored as one JSON snapshot
{data, progress, timestamp, sessionId} under a storage key. Saves are
debounced; the snapshot is taken when save() is called so later edits never
leak into a pending write.
"""
import json
import logging
from datetime import timedelta, timezone
from typing import Callable, Dict, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..core.scheduler import DebounceScheduler
from .models import RegistrationDraftRecord
from .schemas import PersistedDraft, RegistrationDraft, RegistrationProgress, utcnow

# Set up logging
logger = logging.getLogger(__name__)


class DraftStore:
    """Keyed storage for serialized snapshots."""

    def read(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def write(self, key: str, payload: str, session_id: Optional[str] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class InMemoryDraftStore(DraftStore):
    def __init__(self):
        self.records: Dict[str, str] = {}

    def read(self, key: str) -> Optional[str]:
        return self.records.get(key)

    def write(self, key: str, payload: str, session_id: Optional[str] = None) -> None:
        self.records[key] = payload

    def delete(self, key: str) -> None:
        self.records.pop(key, None)


class DatabaseDraftStore(DraftStore):
    """Snapshots stored in the registration_drafts table."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def read(self, key: str) -> Optional[str]:
        db = self.session_factory()
        try:
            record = db.query(RegistrationDraftRecord).filter(RegistrationDraftRecord.storage_key == key).first()
            return record.payload if record else None
        finally:
            db.close()

    def write(self, key: str, payload: str, session_id: Optional[str] = None) -> None:
        db = self.session_factory()
        try:
            record = db.query(RegistrationDraftRecord).filter(RegistrationDraftRecord.storage_key == key).first()
            if record is None:
                record = RegistrationDraftRecord(storage_key=key, session_id=session_id, payload=payload)
                db.add(record)
            else:
                record.payload = payload
                record.saved_at = utcnow()
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def delete(self, key: str) -> None:
        db = self.session_factory()
        try:
            db.query(RegistrationDraftRecord).filter(RegistrationDraftRecord.storage_key == key).delete()
            db.commit()
        finally:
            db.close()


def _comparable(snapshot: PersistedDraft) -> str:
    """Serialized data and progress, used to detect unchanged snapshots."""
    return json.dumps(
        {
            "data": snapshot.data.model_dump(mode="json"),
            "progress": snapshot.progress.model_dump(mode="json", exclude={"last_updated"}),
        },
        sort_keys=True
    )


class PersistenceManager:
    """
    Debounced autosave of one registration draft.

    Args:
        store: Snapshot storage
        scheduler: Scheduler owning the autosave timer
        storage_key: Key of the snapshot in the store
        session_id: Registration session written into the snapshot
        delay_seconds: Quiet period before a save is written
        expiration_hours: Snapshots older than this are discarded on load
    """
    def __init__(
        self,
        store: DraftStore,
        scheduler: DebounceScheduler,
        storage_key: str,
        session_id: str,
        delay_seconds: float = 1.0,
        expiration_hours: int = 24
    ):
        self.store = store
        self.scheduler = scheduler
        self.storage_key = storage_key
        self.session_id = session_id
        self.delay_seconds = delay_seconds
        self.expiration_hours = expiration_hours
        self._last_saved: Optional[str] = None
        self._pending: Optional[PersistedDraft] = None

    def save(self, draft: RegistrationDraft, progress: RegistrationProgress) -> None:
        """Schedule a save of the current draft and progress."""
        snapshot = self._snapshot(draft, progress)
        self._pending = snapshot
        self.scheduler.schedule(self._timer_key, self.delay_seconds, self._write_pending)

    def save_now(self, draft: RegistrationDraft, progress: RegistrationProgress) -> bool:
        """Write immediately, replacing any pending save. Returns False when nothing changed."""
        self.scheduler.cancel(self._timer_key)
        self._pending = None
        return self._write(self._snapshot(draft, progress))

    def flush(self) -> bool:
        """Write the pending save now, if there is one."""
        if self._pending is None:
            return False
        self.scheduler.cancel(self._timer_key)
        snapshot, self._pending = self._pending, None
        return self._write(snapshot)

    def has_snapshot(self) -> bool:
        return self.read_snapshot() is not None

    def load(self) -> PersistedDraft:
        """
        Latest snapshot, or a default draft when there is none.

        Malformed and expired snapshots are deleted and replaced by defaults.
        """
        snapshot = self.read_snapshot()
        if snapshot is None:
            return self._snapshot(RegistrationDraft(), RegistrationProgress())
        self._last_saved = _comparable(snapshot)
        return snapshot

    def clear(self) -> None:
        """Cancel any pending save and delete the snapshot."""
        self.scheduler.cancel(self._timer_key)
        self._pending = None
        self._last_saved = None
        self.store.delete(self.storage_key)
        logger.info(f"Cleared persisted draft {self.storage_key}")

    def read_snapshot(self) -> Optional[PersistedDraft]:
        """Stored snapshot, None when absent. Malformed and expired snapshots are deleted."""
        payload = self.store.read(self.storage_key)
        if payload is None:
            return None
        try:
            snapshot = PersistedDraft.model_validate_json(payload)
        except ValidationError as e:
            logger.warning(f"Discarding malformed draft {self.storage_key}: {e.error_count()} errors")
            self.store.delete(self.storage_key)
            return None

        timestamp = snapshot.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        if utcnow() - timestamp > timedelta(hours=self.expiration_hours):
            logger.warning(f"Discarding expired draft {self.storage_key} saved at {timestamp.isoformat()}")
            self.store.delete(self.storage_key)
            return None
        return snapshot

    async def _write_pending(self) -> None:
        snapshot, self._pending = self._pending, None
        if snapshot is not None:
            self._write(snapshot)

    def _write(self, snapshot: PersistedDraft) -> bool:
        comparable = _comparable(snapshot)
        if comparable == self._last_saved:
            logger.debug(f"Draft {self.storage_key} unchanged, skipping save")
            return False
        self.store.write(self.storage_key, snapshot.model_dump_json(by_alias=True), session_id=self.session_id)
        self._last_saved = comparable
        logger.debug(f"Saved draft {self.storage_key}")
        return True

    def _snapshot(self, draft: RegistrationDraft, progress: RegistrationProgress) -> PersistedDraft:
        return PersistedDraft(
            data=draft.model_copy(deep=True),
            progress=progress.model_copy(deep=True),
            timestamp=utcnow(),
            session_id=self.session_id
        )

    @property
    def _timer_key(self) -> str:
        return f"autosave:{self.storage_key}"
