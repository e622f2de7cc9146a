"""
Repository variants behind every domain capability.

All three expose the same calls (get, list, create, update, delete) and
hand back plain dicts, so callers never hold a session:

  LocalRepository   - reads and writes the local SQLite store directly.
  CachedRepository  - reads the synced cache; writes land locally and are
                      queued for the server.
  RemoteRepository  - talks to the API live. Reads fall back to the cache and
                      writes fall back to the queue when the server is unreachable.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from fieldops.models.serialization import from_payload, json_safe, to_payload
from fieldops.storage.database import get_db
from fieldops.sync.api_client import SyncApiClient, TransientSyncError
from fieldops.sync.entities import SyncEntity
from fieldops.sync.offline_queue import OfflineQueue

logger = logging.getLogger(__name__)

LOCAL = "local"
CACHED = "cached"
REMOTE = "remote"


class RecordNotFoundError(LookupError):
    pass


class LocalRepository:
    variant = LOCAL

    def __init__(self, entity: SyncEntity, session_factory: sessionmaker):
        self.entity = entity
        self.model = entity.model
        self._factory = session_factory

    def __repr__(self):
        return f"<{type(self).__name__} {self.entity.entity_type}>"

    # ── Reads ───────────────────────────────────────────────────────

    def get(self, entity_id: str) -> Optional[dict]:
        with get_db(self._factory) as db:
            obj = db.get(self.model, str(entity_id))
            return to_payload(obj) if obj else None

    def list(self, filters: Optional[dict] = None, limit: Optional[int] = None,
             include_archived: bool = False) -> list[dict]:
        with get_db(self._factory) as db:
            query = db.query(self.model)
            columns = self.model.__table__.columns
            for key, value in (filters or {}).items():
                if key not in columns:
                    raise ValueError(f"{self.model.__name__} has no column {key!r}")
                query = query.filter(columns[key] == value)
            if "is_archived" in columns and not include_archived:
                query = query.filter(columns["is_archived"].is_(False))
            query = query.order_by(columns["created_at"].desc(), columns["id"])
            if limit:
                query = query.limit(limit)
            return [to_payload(obj) for obj in query.all()]

    # ── Writes ──────────────────────────────────────────────────────

    def create(self, data: dict) -> dict:
        with get_db(self._factory) as db:
            return to_payload(self._create(db, data))

    def update(self, entity_id: str, data: dict) -> dict:
        with get_db(self._factory) as db:
            return to_payload(self._update(db, entity_id, data))

    def delete(self, entity_id: str) -> bool:
        with get_db(self._factory) as db:
            return self._delete(db, entity_id)

    # Session-level operations shared by every variant

    def _create(self, db: Session, data: dict):
        values = from_payload(self.model, data)
        values["id"] = str(values.get("id") or uuid.uuid4())
        obj = self.model(**values)
        db.add(obj)
        db.flush()
        return obj

    def _update(self, db: Session, entity_id: str, data: dict):
        obj = db.get(self.model, str(entity_id))
        if obj is None:
            raise RecordNotFoundError(f"{self.entity.entity_type}/{entity_id} not found")
        values = from_payload(self.model, data)
        values.pop("id", None)
        for key, value in values.items():
            setattr(obj, key, value)
        db.flush()
        return obj

    def _delete(self, db: Session, entity_id: str) -> bool:
        obj = db.get(self.model, str(entity_id))
        if obj is None:
            return False
        db.delete(obj)
        db.flush()
        return True

    def _store(self, db: Session, data: dict):
        """Upsert a server copy into the cache."""
        obj = db.merge(self.model(**from_payload(self.model, data)))
        db.flush()
        return obj


class CachedRepository(LocalRepository):
    variant = CACHED

    def __init__(self, entity: SyncEntity, session_factory: sessionmaker, queue: OfflineQueue):
        super().__init__(entity, session_factory)
        self.queue = queue

    def create(self, data: dict) -> dict:
        with get_db(self._factory) as db:
            payload = to_payload(self._create(db, data))
            self.queue.enqueue(self.entity.entity_type, payload["id"], "create", payload, session=db)
            return payload

    def update(self, entity_id: str, data: dict) -> dict:
        with get_db(self._factory) as db:
            payload = to_payload(self._update(db, entity_id, data))
            self.queue.enqueue(self.entity.entity_type, payload["id"], "update", payload, session=db)
            return payload

    def delete(self, entity_id: str) -> bool:
        with get_db(self._factory) as db:
            if not self._delete(db, entity_id):
                return False
            self.queue.enqueue(self.entity.entity_type, str(entity_id), "delete", None, session=db)
            return True


class RemoteRepository(CachedRepository):
    variant = REMOTE

    def __init__(self, entity: SyncEntity, session_factory: sessionmaker,
                 queue: OfflineQueue, api: SyncApiClient):
        super().__init__(entity, session_factory, queue)
        self.api = api

    @property
    def resource(self) -> str:
        return self.entity.resource

    def get(self, entity_id: str) -> Optional[dict]:
        try:
            data = self.api.get(self.resource, str(entity_id))
        except TransientSyncError as e:
            logger.warning("Server unreachable, reading %s/%s from cache: %s", self.resource, entity_id, e)
            return super().get(entity_id)
        if data is None:
            return None
        with get_db(self._factory) as db:
            return to_payload(self._store(db, data))

    def list(self, filters: Optional[dict] = None, limit: Optional[int] = None,
             include_archived: bool = False) -> list[dict]:
        params = dict(filters or {})
        if limit:
            params["limit"] = limit
        try:
            rows = self.api.fetch_all(self.resource, params=params or None)
        except TransientSyncError as e:
            logger.warning("Server unreachable, listing %s from cache: %s", self.resource, e)
            return super().list(filters, limit=limit, include_archived=include_archived)
        with get_db(self._factory) as db:
            return [to_payload(self._store(db, row)) for row in rows]

    # Writes go to the server first. A change to a record that already has
    # queued changes joins the queue behind them instead.

    def create(self, data: dict) -> dict:
        payload = json_safe(data)
        payload["id"] = str(payload.get("id") or uuid.uuid4())
        try:
            echoed = self.api.post(self.resource, payload)
        except TransientSyncError as e:
            logger.warning("Server unreachable, queuing create of %s: %s", self.resource, e)
            return super().create(payload)
        with get_db(self._factory) as db:
            return to_payload(self._store(db, echoed if isinstance(echoed, dict) else payload))

    def update(self, entity_id: str, data: dict) -> dict:
        entity_id = str(entity_id)
        if self.queue.has_outstanding(self.entity.entity_type, entity_id):
            return super().update(entity_id, data)

        with get_db(self._factory) as db:
            current = db.get(self.model, entity_id)
            payload = to_payload(current) if current else {"id": entity_id}
        payload.update(json_safe(data))
        payload["id"] = entity_id
        try:
            echoed = self.api.put(self.resource, entity_id, payload)
        except TransientSyncError as e:
            logger.warning("Server unreachable, queuing update of %s/%s: %s", self.resource, entity_id, e)
            return self._queue_update(entity_id, payload)
        with get_db(self._factory) as db:
            return to_payload(self._store(db, echoed if isinstance(echoed, dict) else payload))

    def delete(self, entity_id: str) -> bool:
        entity_id = str(entity_id)
        if self.queue.has_outstanding(self.entity.entity_type, entity_id):
            return self._queue_delete(entity_id)
        try:
            self.api.delete(self.resource, entity_id)
        except TransientSyncError as e:
            logger.warning("Server unreachable, queuing delete of %s/%s: %s", self.resource, entity_id, e)
            return self._queue_delete(entity_id)
        with get_db(self._factory) as db:
            self._delete(db, entity_id)
        return True

    def _queue_update(self, entity_id: str, payload: dict) -> dict:
        with get_db(self._factory) as db:
            # Records never pulled into the cache are queued as-is
            if db.get(self.model, entity_id) is not None:
                payload = to_payload(self._store(db, payload))
            self.queue.enqueue(self.entity.entity_type, entity_id, "update", payload, session=db)
            return payload

    def _queue_delete(self, entity_id: str) -> bool:
        with get_db(self._factory) as db:
            self._delete(db, entity_id)
            self.queue.enqueue(self.entity.entity_type, entity_id, "delete", None, session=db)
        return True
