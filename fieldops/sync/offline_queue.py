"""
Durable FIFO queue of local changes waiting to reach the server.

Entries live in the sync_offline_queue table, so they survive restarts.
Each state change is its own short transaction:

  enqueue                   -> pending
  mark_delivered            -> row deleted
  record_transient_failure  -> still pending, retry_count + 1
  mark_failed               -> failed (kept until retry() or discard())

A pending entry is held back while an earlier change to the same entity is
failed, so changes to one record are never applied out of order.
"""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from fieldops.storage.database import SessionLocal, get_db
from fieldops.sync.models import OfflineQueueEntry, QueueOperation, QueueStatus

logger = logging.getLogger(__name__)


@dataclass
class QueuedChange:
    id: int
    entity_type: str
    entity_id: str
    operation: str
    payload: Optional[dict]
    status: str
    retry_count: int
    last_error: Optional[str]
    description: Optional[str]
    queued_at: Optional[datetime]
    last_attempt_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: OfflineQueueEntry) -> "QueuedChange":
        return cls(
            id=row.id,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            operation=QueueOperation(row.operation).value,
            payload=json.loads(row.payload) if row.payload else None,
            status=QueueStatus(row.status).value,
            retry_count=row.retry_count or 0,
            last_error=row.last_error,
            description=row.description,
            queued_at=row.queued_at,
            last_attempt_at=row.last_attempt_at,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("queued_at", "last_attempt_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


class OfflineQueue:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._factory = session_factory or SessionLocal

    def enqueue(
        self,
        entity_type: str,
        entity_id: str,
        operation: str,
        payload: Optional[dict] = None,
        description: str = "",
        session: Optional[Session] = None,
    ) -> int:
        """Append a change. Pass `session` to commit it together with the local write."""
        op = QueueOperation(operation)
        entry = OfflineQueueEntry(
            entity_type=entity_type,
            entity_id=str(entity_id),
            operation=op,
            payload=json.dumps(payload, default=str) if payload is not None else None,
            status=QueueStatus.pending,
            retry_count=0,
            description=description or f"{op.value} {entity_type} {entity_id}",
        )
        if session is not None:
            session.add(entry)
            session.flush()
            entry_id = entry.id
        else:
            with get_db(self._factory) as db:
                db.add(entry)
                db.flush()
                entry_id = entry.id
        logger.info("Queued offline change #%d: %s %s/%s", entry_id, op.value, entity_type, entity_id)
        return entry_id

    def has_outstanding(self, entity_type: str, entity_id: str, session: Optional[Session] = None) -> bool:
        """True while any change to this entity is still queued or failed."""
        def _query(db):
            return (
                db.query(OfflineQueueEntry.id)
                .filter_by(entity_type=entity_type, entity_id=str(entity_id))
                .first()
                is not None
            )
        if session is not None:
            return _query(session)
        with get_db(self._factory) as db:
            return _query(db)

    def dequeue_batch(self, max_items: int = 50) -> list[QueuedChange]:
        """Oldest deliverable pending entries, without removing them."""
        with get_db(self._factory) as db:
            blocked_from = dict(
                ((entity_type, entity_id), first_failed)
                for entity_type, entity_id, first_failed in (
                    db.query(
                        OfflineQueueEntry.entity_type,
                        OfflineQueueEntry.entity_id,
                        func.min(OfflineQueueEntry.id),
                    )
                    .filter(OfflineQueueEntry.status == QueueStatus.failed)
                    .group_by(OfflineQueueEntry.entity_type, OfflineQueueEntry.entity_id)
                    .all()
                )
            )

            batch = []
            rows = (
                db.query(OfflineQueueEntry)
                .filter(OfflineQueueEntry.status == QueueStatus.pending)
                .order_by(OfflineQueueEntry.id)
                .all()
            )
            for row in rows:
                first_failed = blocked_from.get((row.entity_type, row.entity_id))
                if first_failed is not None and first_failed < row.id:
                    continue
                batch.append(QueuedChange.from_row(row))
                if len(batch) >= max_items:
                    break
            return batch

    def mark_delivered(self, entry_id: int) -> bool:
        with get_db(self._factory) as db:
            deleted = db.query(OfflineQueueEntry).filter_by(id=entry_id).delete()
        if deleted:
            logger.debug("Delivered offline change #%d", entry_id)
        return bool(deleted)

    def mark_failed(self, entry_id: int, reason: str) -> bool:
        with get_db(self._factory) as db:
            entry = db.get(OfflineQueueEntry, entry_id)
            if entry is None:
                return False
            entry.status = QueueStatus.failed
            entry.retry_count = (entry.retry_count or 0) + 1
            entry.last_error = reason
            entry.last_attempt_at = datetime.now(timezone.utc)
        logger.warning("Offline change #%d failed permanently: %s", entry_id, reason)
        return True

    def record_transient_failure(self, entry_id: int, reason: str) -> bool:
        with get_db(self._factory) as db:
            entry = db.get(OfflineQueueEntry, entry_id)
            if entry is None:
                return False
            entry.retry_count = (entry.retry_count or 0) + 1
            entry.last_error = reason
            entry.last_attempt_at = datetime.now(timezone.utc)
        logger.info("Offline change #%d will be retried: %s", entry_id, reason)
        return True

    def retry(self, entry_id: int) -> bool:
        """Put a failed entry back in line. Its position (id) is unchanged."""
        with get_db(self._factory) as db:
            entry = db.get(OfflineQueueEntry, entry_id)
            if entry is None or entry.status != QueueStatus.failed:
                return False
            entry.status = QueueStatus.pending
            entry.last_error = None
        logger.info("Offline change #%d re-queued by user", entry_id)
        return True

    def retry_all_failed(self) -> int:
        with get_db(self._factory) as db:
            count = (
                db.query(OfflineQueueEntry)
                .filter(OfflineQueueEntry.status == QueueStatus.failed)
                .update({"status": QueueStatus.pending, "last_error": None}, synchronize_session=False)
            )
        return count

    def discard(self, entry_id: int) -> bool:
        with get_db(self._factory) as db:
            deleted = db.query(OfflineQueueEntry).filter_by(id=entry_id).delete()
        if deleted:
            logger.info("Offline change #%d discarded by user", entry_id)
        return bool(deleted)

    # ── Inspection ──────────────────────────────────────────────────

    def get(self, entry_id: int) -> Optional[QueuedChange]:
        with get_db(self._factory) as db:
            entry = db.get(OfflineQueueEntry, entry_id)
            return QueuedChange.from_row(entry) if entry else None

    def pending_count(self) -> int:
        with get_db(self._factory) as db:
            return db.query(OfflineQueueEntry).filter(OfflineQueueEntry.status == QueueStatus.pending).count()

    def failed_count(self) -> int:
        with get_db(self._factory) as db:
            return db.query(OfflineQueueEntry).filter(OfflineQueueEntry.status == QueueStatus.failed).count()

    def pending_entries(self) -> list[QueuedChange]:
        return self._entries(QueueStatus.pending)

    def failed_entries(self) -> list[QueuedChange]:
        return self._entries(QueueStatus.failed)

    def _entries(self, status: QueueStatus) -> list[QueuedChange]:
        with get_db(self._factory) as db:
            rows = (
                db.query(OfflineQueueEntry)
                .filter(OfflineQueueEntry.status == status)
                .order_by(OfflineQueueEntry.id)
                .all()
            )
            return [QueuedChange.from_row(r) for r in rows]
