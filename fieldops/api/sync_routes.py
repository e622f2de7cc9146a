"""
Status and control routes for the host application.

GET    /api/schema/status            - Result of the startup reconcile
POST   /api/schema/reconcile         - Run the additive reconciler again
GET    /api/sync/mode                - Resolved mode and capability bindings
GET    /api/sync/status              - Sync Coordinator status
POST   /api/sync                     - Trigger an immediate sync cycle
GET    /api/sync/queue               - Pending and failed offline changes
POST   /api/sync/queue/{id}/retry    - Put a failed change back in line
DELETE /api/sync/queue/{id}          - Discard a queued change
GET    /api/sync/devices             - Registered devices
GET    /api/sync/connection          - Probe the remote server
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from fieldops.bootstrap import AppContext
from fieldops.storage.database import Base
from fieldops.storage.reconciler import reconcile
from fieldops.sync.devices import list_devices

logger = logging.getLogger(__name__)

schema_router = APIRouter(prefix="/api/schema", tags=["schema"])
router = APIRouter(prefix="/api/sync", tags=["sync"])


def get_context(request: Request) -> AppContext:
    ctx = getattr(request.app.state, "ctx", None)
    if ctx is None:
        raise HTTPException(status_code=503, detail="Application is still starting")
    return ctx


def require_remote(ctx: AppContext = Depends(get_context)) -> AppContext:
    if not ctx.is_remote:
        raise HTTPException(status_code=400, detail="Sync is only available in Remote mode")
    return ctx


# ── Response Models ─────────────────────────────────────────────────────

class ModeResponse(BaseModel):
    mode: str
    endpoint: Optional[str] = None
    bindings: dict[str, str]


class SyncResultOut(BaseModel):
    status: str
    pulled: dict[str, int]
    total_pulled: int
    pushed: int
    failed: int
    remaining: int
    errors: list[str]
    interrupted: bool
    stopped: bool = False
    started_at: Optional[str] = None
    finished_at: Optional[str] = None


class QueueEntryOut(BaseModel):
    id: int
    entity_type: str
    entity_id: str
    operation: str
    status: str
    retry_count: int
    last_error: Optional[str] = None
    description: Optional[str] = None
    queued_at: Optional[str] = None
    last_attempt_at: Optional[str] = None


class QueueResponse(BaseModel):
    pending: list[QueueEntryOut]
    failed: list[QueueEntryOut]


class DeviceOut(BaseModel):
    id: str
    device_id: str
    name: str
    platform: Optional[str] = None
    os_version: Optional[str] = None
    app_version: Optional[str] = None
    is_current: bool
    is_active: bool
    first_seen_at: Optional[str] = None
    last_sync_at: Optional[str] = None


class ConnectionResponse(BaseModel):
    reachable: bool
    message: str


def _entry_out(change) -> QueueEntryOut:
    data = change.to_dict()
    data.pop("payload", None)
    return QueueEntryOut(**data)


# ── Schema ──────────────────────────────────────────────────────────────

@schema_router.get("/status")
def schema_status(ctx: AppContext = Depends(get_context)):
    return ctx.reconcile_result.to_dict()


@schema_router.post("/reconcile")
def schema_reconcile(ctx: AppContext = Depends(get_context)):
    """Run the additive reconciler again. Never drops anything."""
    ctx.reconcile_result = reconcile(Base.metadata, ctx.engine)
    return ctx.reconcile_result.to_dict()


# ── Sync ────────────────────────────────────────────────────────────────

@router.get("/mode", response_model=ModeResponse)
def get_mode(ctx: AppContext = Depends(get_context)):
    return ModeResponse(
        mode=ctx.resolution.mode,
        endpoint=ctx.resolution.endpoint,
        bindings=ctx.services.bindings(),
    )


@router.get("/status")
def get_status(ctx: AppContext = Depends(get_context)):
    if not ctx.is_remote:
        return {"mode": ctx.resolution.mode, "state": "disabled", "running": False}
    return {"mode": ctx.resolution.mode, **ctx.coordinator.status()}


@router.post("", response_model=SyncResultOut)
def trigger_sync(ctx: AppContext = Depends(require_remote)):
    """Run a cycle now, or join the one in flight."""
    result = ctx.coordinator.sync_now()
    return SyncResultOut(**result.to_dict())


@router.get("/queue", response_model=QueueResponse)
def get_queue(ctx: AppContext = Depends(require_remote)):
    return QueueResponse(
        pending=[_entry_out(c) for c in ctx.queue.pending_entries()],
        failed=[_entry_out(c) for c in ctx.queue.failed_entries()],
    )


@router.post("/queue/{entry_id}/retry", response_model=QueueEntryOut)
def retry_entry(entry_id: int, ctx: AppContext = Depends(require_remote)):
    entry = ctx.queue.get(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Queue entry {entry_id} not found")
    if not ctx.queue.retry(entry_id):
        raise HTTPException(status_code=409, detail=f"Queue entry {entry_id} is not failed")
    return _entry_out(ctx.queue.get(entry_id))


@router.delete("/queue/{entry_id}")
def discard_entry(entry_id: int, ctx: AppContext = Depends(require_remote)):
    if not ctx.queue.discard(entry_id):
        raise HTTPException(status_code=404, detail=f"Queue entry {entry_id} not found")
    return {"discarded": entry_id}


@router.get("/devices", response_model=list[DeviceOut])
def get_devices(ctx: AppContext = Depends(get_context)):
    return [DeviceOut(**d) for d in list_devices(ctx.session_factory)]


@router.get("/connection", response_model=ConnectionResponse)
def test_connection(ctx: AppContext = Depends(require_remote)):
    reachable, message = ctx.api.test_connection()
    return ConnectionResponse(reachable=reachable, message=message)
