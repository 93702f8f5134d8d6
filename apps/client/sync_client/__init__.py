"""Local-first sync client for the fitness log."""
from sync_client.config import ClientSettings
from sync_client.exceptions import (
    CodecError,
    InvalidSyncKeyError,
    SyncError,
    TenantNotFoundError,
    TransportError,
)
from sync_client.local_store import LocalStore
from sync_client.orchestrator import SyncOrchestrator, SyncResult, SyncState, SyncStatus, SyncTrigger
from sync_client.transport import SyncTransport

__all__ = [
    "ClientSettings",
    "CodecError",
    "InvalidSyncKeyError",
    "LocalStore",
    "SyncError",
    "SyncOrchestrator",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    "SyncTransport",
    "SyncTrigger",
    "TenantNotFoundError",
    "TransportError",
]
