"""
Sync API Router

Endpoints used by clients to create a tenant, check a sync key and run a
push/pull round:

    POST /api/sync/new    -> {"success": true, "syncKey": "..."}
    GET  /api/sync/{key}  -> live state of an existing tenant (read-only)
    POST /api/sync/{key}  -> merge pushed rows, return the merged live state

Handlers are plain ``def`` so FastAPI runs the SQLite work in its thread pool.
"""
import logging

from fastapi import APIRouter, Depends

from core.database import TenantRegistry, get_registry, validate_sync_key
from core.exceptions import NotFoundError, StorageError
from schemas import CreateTenantResponse, SyncPushRequest, SyncResponse
from services.sync_merge import merge_and_sync, read_back

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["Sync"])


def _require_tenant(key: str, registry: TenantRegistry):
    validate_sync_key(key)
    if not registry.exists(key):
        raise NotFoundError("Sync key", key)
    return registry.open(key)


@router.post("/new", response_model=CreateTenantResponse)
def create_tenant(registry: TenantRegistry = Depends(get_registry)):
    """Generate a fresh sync key and initialize its storage."""
    try:
        sync_key = registry.create()
    except OSError as e:
        logger.error(f"Error creating sync key: {e}")
        raise StorageError("Failed to create sync key") from e
    return CreateTenantResponse(sync_key=sync_key)


@router.get("/{key}", response_model=SyncResponse)
def get_sync_data(key: str, registry: TenantRegistry = Depends(get_registry)):
    """Existence check and read-only pull of the tenant's live rows."""
    handle = _require_tenant(key, registry)
    result = read_back(handle)
    return {"success": True, "data": result.to_payload()}


@router.post("/{key}", response_model=SyncResponse)
def push_sync_data(
    key: str,
    payload: SyncPushRequest,
    registry: TenantRegistry = Depends(get_registry),
):
    """Merge the pushed rows (last-write-wins) and return authoritative state."""
    handle = _require_tenant(key, registry)
    result = merge_and_sync(handle, payload.rows_by_table())
    return {"success": True, "data": result.to_payload()}
