"""
Client-side sync errors.

None of these ever escape a sync trigger: the orchestrator logs them and
reports a failed SyncResult, leaving local data and tombstones as they were.
"""
from typing import Optional


class SyncError(Exception):
    """Base class for everything that can abort a sync round."""


class InvalidSyncKeyError(SyncError):
    """Key does not look like a sync key; rejected before any request."""


class TransportError(SyncError):
    """Server unreachable, timed out, or answered with a failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TenantNotFoundError(TransportError):
    """Server has never seen this sync key (HTTP 404)."""

    def __init__(self, message: str = "Sync key not found"):
        super().__init__(message, status_code=404)


class CodecError(SyncError):
    """A record could not be mapped to or from the wire format."""
