"""
HTTP transport for the sync API.

Thin async wrapper over ``httpx.AsyncClient``. Every failure mode (network
error, timeout, non-2xx status, ``success: false`` envelope) surfaces as a
TransportError so the orchestrator has a single thing to catch.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from sync_client.exceptions import TenantNotFoundError, TransportError

logger = logging.getLogger(__name__)

API_PREFIX = "/api/sync"


class SyncTransport:

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_s,
            transport=transport,
        )

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{API_PREFIX}{path}"
        try:
            response = await self.client.request(method, url, json=json, timeout=self.timeout_s)
        except httpx.TimeoutException as e:
            raise TransportError(f"Sync request timed out after {self.timeout_s}s") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Sync server unreachable: {e}") from e

        if response.status_code == 404:
            raise TenantNotFoundError()

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_error:
            error = body.get("error") if isinstance(body, dict) else None
            raise TransportError(error or f"HTTP {response.status_code}", status_code=response.status_code)
        if not isinstance(body, dict) or not body.get("success"):
            error = body.get("error") if isinstance(body, dict) else None
            raise TransportError(error or "Sync failed", status_code=response.status_code)
        return body

    async def create_tenant(self) -> str:
        """Ask the server for a new sync key."""
        body = await self._request("POST", "/new")
        sync_key = body.get("syncKey")
        if not sync_key:
            raise TransportError("Server did not return a sync key")
        return sync_key

    async def fetch(self, sync_key: str) -> Dict[str, Any]:
        """Read-only pull of the tenant's live state."""
        body = await self._request("GET", f"/{sync_key}")
        return body.get("data") or {}

    async def tenant_exists(self, sync_key: str) -> bool:
        try:
            await self.fetch(sync_key)
        except TenantNotFoundError:
            return False
        return True

    async def push(self, sync_key: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Send a push request and return the merged ``data`` block."""
        body = await self._request("POST", f"/{sync_key}", json=payload)
        data = body.get("data")
        if not isinstance(data, dict):
            raise TransportError("Sync response missing data")
        return data

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
