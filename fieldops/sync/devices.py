"""
Device registration: which installs sync against this data, and when they last did.
"""

import logging
import platform
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import sessionmaker

from fieldops.config.settings import settings
from fieldops.storage.database import SessionLocal, get_db
from fieldops.sync.models import MobileDevice

logger = logging.getLogger(__name__)


def _device_dict(device: MobileDevice) -> dict:
    return {
        "id": device.id,
        "device_id": device.device_id,
        "name": device.name,
        "platform": device.platform,
        "os_version": device.os_version,
        "app_version": device.app_version,
        "is_current": device.is_current,
        "is_active": device.is_active,
        "first_seen_at": device.first_seen_at.isoformat() if device.first_seen_at else None,
        "last_sync_at": device.last_sync_at.isoformat() if device.last_sync_at else None,
        "notes": device.notes,
    }


def register_current_device(
    session_factory: Optional[sessionmaker] = None,
    name: Optional[str] = None,
    app_version: Optional[str] = None,
) -> dict:
    """Create or load this install's device record."""
    with get_db(session_factory or SessionLocal) as db:
        device = db.query(MobileDevice).filter_by(is_current=True).first()
        if device:
            device.app_version = app_version or settings.app_version
            device.os_version = platform.release()
            device.is_active = True
            logger.info("Loaded existing device: %s (%s)", device.name, device.device_id)
        else:
            device = MobileDevice(
                device_id=str(uuid.uuid4()),
                name=name or settings.device_name,
                platform=platform.system() or "unknown",
                os_version=platform.release(),
                app_version=app_version or settings.app_version,
                is_current=True,
                is_active=True,
            )
            db.add(device)
            db.flush()
            logger.info("Registered new device: %s (%s)", device.name, device.device_id)
        return _device_dict(device)


def record_sync(session_factory: Optional[sessionmaker] = None, when: Optional[datetime] = None) -> None:
    with get_db(session_factory or SessionLocal) as db:
        device = db.query(MobileDevice).filter_by(is_current=True).first()
        if device is None:
            return
        device.last_sync_at = when or datetime.now(timezone.utc)
        device.is_active = True


def mark_stale_devices(
    session_factory: Optional[sessionmaker] = None,
    now: Optional[datetime] = None,
    days: Optional[int] = None,
) -> int:
    """Flag devices with no sync for `days` (default device_stale_days) as inactive."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=days if days is not None else settings.device_stale_days)
    with get_db(session_factory or SessionLocal) as db:
        stale = (
            db.query(MobileDevice)
            .filter(MobileDevice.is_active.is_(True))
            .filter(MobileDevice.last_sync_at.isnot(None))
            .filter(MobileDevice.last_sync_at < cutoff)
            .all()
        )
        for device in stale:
            device.is_active = False
            logger.info("Device %s marked inactive (last sync %s)", device.name, device.last_sync_at)
        return len(stale)


def list_devices(session_factory: Optional[sessionmaker] = None) -> list[dict]:
    with get_db(session_factory or SessionLocal) as db:
        devices = db.query(MobileDevice).order_by(MobileDevice.first_seen_at).all()
        return [_device_dict(d) for d in devices]
