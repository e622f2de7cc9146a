from fieldops.sync.api_client import (
    SyncApiClient, SyncError, TransientSyncError, PermanentSyncError, SyncConflictError,
)
from fieldops.sync.offline_queue import OfflineQueue
from fieldops.sync.protocol import SyncProtocol, SyncResult
from fieldops.sync.coordinator import SyncCoordinator

__all__ = [
    "SyncApiClient", "SyncError", "TransientSyncError", "PermanentSyncError", "SyncConflictError",
    "OfflineQueue", "SyncProtocol", "SyncResult", "SyncCoordinator",
]
