"""
One synchronisation cycle: pull, then push.

Pull: for each entity in SYNC_ENTITIES (parents first),
  1. GET /api/<resource>?since=<cursor>
  2. Upsert every returned row into the local cache (session.merge)
  3. Advance the entity's cursor to the server timestamp
Rows with local changes still queued are left alone until those changes are pushed
or discarded; the cursor then stays put so the next pull fetches them again.

Push: drain the offline queue oldest-first.
  - delivered          -> entry deleted
  - transient failure  -> entry stays pending (retry_count + 1), cycle ends
  - permanent failure  -> entry marked failed, draining continues

A transient error while pulling ends the whole cycle: nothing is pushed to a
server that just stopped answering.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session, sessionmaker

from fieldops.models.serialization import from_payload
from fieldops.storage.database import SessionLocal, get_db
from fieldops.sync import devices
from fieldops.sync.api_client import PermanentSyncError, SyncApiClient, TransientSyncError
from fieldops.sync.entities import SYNC_ENTITIES, SyncEntity, get_entity
from fieldops.sync.models import OfflineQueueEntry, SyncCursor
from fieldops.sync.offline_queue import OfflineQueue, QueuedChange

logger = logging.getLogger(__name__)

SUCCESS = "success"
PARTIAL = "partial"
FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands datetimes back naive; everything stored here is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class SyncResult:
    status: str = SUCCESS
    pulled: dict[str, int] = field(default_factory=dict)
    pushed: int = 0
    failed: int = 0
    remaining: int = 0
    errors: list[str] = field(default_factory=list)
    interrupted: bool = False       # ended early on a transient error
    stopped: bool = False           # ended early on a stop request
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCESS

    @property
    def total_pulled(self) -> int:
        return sum(self.pulled.values())

    @classmethod
    def crashed(cls, error: str) -> "SyncResult":
        now = _utcnow()
        return cls(status=FAILED, errors=[error], interrupted=True, started_at=now, finished_at=now)

    @classmethod
    def skipped(cls, reason: str) -> "SyncResult":
        now = _utcnow()
        return cls(status=FAILED, errors=[reason], stopped=True, started_at=now, finished_at=now)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "pulled": dict(self.pulled),
            "total_pulled": self.total_pulled,
            "pushed": self.pushed,
            "failed": self.failed,
            "remaining": self.remaining,
            "errors": list(self.errors),
            "interrupted": self.interrupted,
            "stopped": self.stopped,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class SyncProtocol:
    """Runs sync cycles against one remote API and one local cache."""

    def __init__(
        self,
        api: SyncApiClient,
        queue: OfflineQueue,
        session_factory: Optional[sessionmaker] = None,
        entities: Optional[Iterable[SyncEntity]] = None,
        batch_size: int = 50,
        stale_days: Optional[int] = None,
    ):
        self.api = api
        self.queue = queue
        self._factory = session_factory or SessionLocal
        self.entities = list(entities) if entities is not None else list(SYNC_ENTITIES)
        self.batch_size = batch_size
        self.stale_days = stale_days

    def run_cycle(self, should_stop: Callable[[], bool] = lambda: False) -> SyncResult:
        result = SyncResult()
        logger.info("Sync cycle started")

        if self.pull(result, should_stop) and not should_stop():
            self.push(result, should_stop)
        if should_stop():
            result.stopped = True
            result.errors.append("Sync stopped before completion")

        try:
            result.remaining = self.queue.pending_count()
        except Exception as e:
            result.errors.append(f"Could not count queue: {e}")

        if result.interrupted and not result.pulled and result.pushed == 0:
            result.status = FAILED
        elif result.errors:
            result.status = PARTIAL
        else:
            result.status = SUCCESS
        result.finished_at = _utcnow()

        logger.info(
            "Sync cycle %s: pulled %d, pushed %d, failed %d, %d still queued",
            result.status, result.total_pulled, result.pushed, result.failed, result.remaining,
        )
        return result

    # ── Pull ────────────────────────────────────────────────────────

    def pull(self, result: SyncResult, should_stop: Callable[[], bool] = lambda: False) -> bool:
        """Pull every entity. Returns False if the server became unreachable."""
        for entity in self.entities:
            if should_stop():
                return False
            try:
                result.pulled[entity.entity_type] = self.pull_entity(entity, result)
            except TransientSyncError as e:
                result.errors.append(f"pull {entity.entity_type}: {e}")
                result.interrupted = True
                logger.warning("Pull aborted at %s, server unreachable: %s", entity.entity_type, e)
                return False
            except PermanentSyncError as e:
                result.errors.append(f"pull {entity.entity_type}: {e}")
                logger.warning("Pull of %s rejected: %s", entity.entity_type, e)

        try:
            devices.record_sync(self._factory)
            devices.mark_stale_devices(self._factory, days=self.stale_days)
        except Exception as e:
            logger.exception("Device bookkeeping failed")
            result.errors.append(f"devices: {e}")
        return True

    def pull_entity(self, entity: SyncEntity, result: Optional[SyncResult] = None) -> int:
        since = self.get_cursor(entity.entity_type)
        started = _utcnow()
        page = self.api.changes_since(entity.resource, since)

        count = 0
        held_back = 0
        with get_db(self._factory) as db:
            held = self._ids_with_local_changes(db, entity.entity_type)
            for row in page.data:
                try:
                    if self._upsert(db, entity, row, held):
                        count += 1
                    else:
                        held_back += 1
                except (ValueError, TypeError) as e:
                    message = f"pull {entity.entity_type}: bad row {row.get('id')!r}: {e}"
                    logger.warning(message)
                    if result is not None:
                        result.errors.append(message)

            cursor = db.get(SyncCursor, entity.entity_type)
            if cursor is None:
                cursor = SyncCursor(entity_type=entity.entity_type)
                db.add(cursor)
            cursor.last_count = count
            if held_back:
                # The skipped rows come back on the next pull, once their queue entries are gone
                logger.info("Cursor for %s kept at %s: %d row(s) wait on local changes",
                            entity.entity_type, since, held_back)
            else:
                cursor.last_synced_at = page.server_timestamp or started

        if count:
            logger.info("Pulled %d %s", count, entity.entity_type)
        return count

    def _upsert(self, db: Session, entity: SyncEntity, row: dict, held: set) -> bool:
        values = from_payload(entity.model, row)
        entity_id = values.get("id")
        if not entity_id:
            raise ValueError("row has no id")
        entity_id = str(entity_id)
        values["id"] = entity_id
        if entity_id in held:
            return False

        parent = db.merge(entity.model(**values))
        for key, (child_model, parent_fk) in entity.children.items():
            # The payload key doubles as the parent's relationship name
            collection = getattr(parent, key)
            for child in row.get(key) or []:
                child_values = from_payload(child_model, child)
                child_values.setdefault(parent_fk, entity_id)
                if not child_values.get("id"):
                    continue
                line = db.merge(child_model(**child_values))
                if line not in collection:
                    collection.append(line)
        return True

    def _ids_with_local_changes(self, db: Session, entity_type: str) -> set:
        rows = db.query(OfflineQueueEntry.entity_id).filter_by(entity_type=entity_type).all()
        return {r[0] for r in rows}

    def get_cursor(self, entity_type: str) -> Optional[datetime]:
        with get_db(self._factory) as db:
            cursor = db.get(SyncCursor, entity_type)
            return _as_utc(cursor.last_synced_at) if cursor else None

    def reset_cursors(self) -> int:
        """Forget every cursor so the next cycle pulls everything again."""
        with get_db(self._factory) as db:
            return db.query(SyncCursor).delete()

    # ── Push ────────────────────────────────────────────────────────

    def push(self, result: SyncResult, should_stop: Callable[[], bool] = lambda: False) -> bool:
        """Drain the queue. Returns False if a transient failure ended it early."""
        while not should_stop():
            batch = self.queue.dequeue_batch(self.batch_size)
            if not batch:
                return True

            failed_here = set()
            for change in batch:
                if should_stop():
                    return True
                key = (change.entity_type, change.entity_id)
                if key in failed_here:
                    continue   # held behind the failure, picked up after retry()
                try:
                    self._push_one(change)
                except TransientSyncError as e:
                    self.queue.record_transient_failure(change.id, str(e))
                    result.errors.append(f"push #{change.id}: {e}")
                    result.interrupted = True
                    logger.warning("Push stopped at #%d, server unreachable: %s", change.id, e)
                    return False
                except (PermanentSyncError, KeyError) as e:
                    self.queue.mark_failed(change.id, str(e))
                    failed_here.add(key)
                    result.failed += 1
                    result.errors.append(f"push #{change.id}: {e}")
                    continue
                self.queue.mark_delivered(change.id)
                result.pushed += 1
        return True

    def _push_one(self, change: QueuedChange) -> None:
        entity = get_entity(change.entity_type)
        response = self.api.push_change(entity.resource, change.entity_id, change.operation, change.payload)

        # Adopt the server's copy (timestamps, computed totals) when it echoes the row back
        if isinstance(response, dict) and str(response.get("id", "")) == change.entity_id:
            try:
                with get_db(self._factory) as db:
                    db.merge(entity.model(**from_payload(entity.model, response)))
            except (ValueError, TypeError) as e:
                logger.warning("Ignoring unreadable server echo for %s/%s: %s", entity.entity_type, change.entity_id, e)
