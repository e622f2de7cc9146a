"""
SQLAlchemy models for the sync layer.

- OfflineQueueEntry: a local change waiting to be pushed to the server
- MobileDevice: identity and sync history of each install
- SyncCursor: per-entity-type delta pull position
"""

from sqlalchemy import (
    Column, String, Integer, Boolean, Text,
    DateTime, Index, Enum as SAEnum,
)
from sqlalchemy.sql import func
import enum
import uuid

from fieldops.storage.database import Base


def _gen_id() -> str:
    return str(uuid.uuid4())


class QueueOperation(str, enum.Enum):
    create = "create"
    update = "update"
    delete = "delete"


class QueueStatus(str, enum.Enum):
    pending = "pending"
    failed = "failed"        # permanent failure, waiting on the user


class OfflineQueueEntry(Base):
    __tablename__ = "sync_offline_queue"
    __table_args__ = (
        Index("ix_offline_queue_entity", "entity_type", "entity_id"),
        Index("ix_offline_queue_status", "status"),
    )

    # Autoincrement id gives FIFO order
    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False)
    operation = Column(SAEnum(QueueOperation), nullable=False)
    payload = Column(Text, nullable=True)          # JSON
    status = Column(SAEnum(QueueStatus), default=QueueStatus.pending, nullable=False)
    retry_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    description = Column(String, nullable=True)
    queued_at = Column(DateTime(timezone=True), server_default=func.now())
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)


class MobileDevice(Base):
    __tablename__ = "sync_devices"
    __table_args__ = (
        Index("ix_sync_devices_device_id", "device_id", unique=True),
    )

    id = Column(String, primary_key=True, default=_gen_id)
    device_id = Column(String, nullable=False)      # stable per install
    name = Column(String, nullable=False)
    platform = Column(String, nullable=True)
    os_version = Column(String, nullable=True)
    app_version = Column(String, nullable=True)
    is_current = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    notes = Column(Text, nullable=True)
    first_seen_at = Column(DateTime(timezone=True), server_default=func.now())
    last_sync_at = Column(DateTime(timezone=True), nullable=True)


class SyncCursor(Base):
    __tablename__ = "sync_cursors"

    entity_type = Column(String, primary_key=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)   # server clock
    last_count = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
