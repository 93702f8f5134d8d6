"""
Sync Orchestrator

Drives push/pull rounds between the local store and the sync server.

State machine (one round in flight per instance):

    IDLE --trigger--> SCHEDULING --debounce--> IN_FLIGHT --done/failed--> IDLE

Triggers are local mutations, an offline -> online transition, the periodic
timer and explicit requests. A trigger that arrives while a round is
scheduled or running, while offline, or before a sync key is set is dropped.

A round:
    1. gather every live local record and every queued tombstone
    2. encode and POST them to /api/sync/{key}
    3. decode the merged state from the response
    4. in one local transaction, with change capture suppressed:
       replace the local tables, clear the tombstones that were sent,
       store the new last-sync timestamp

Any failure before step 4 leaves local records and tombstones untouched;
the next trigger retries from scratch.

Usage:
    orchestrator = SyncOrchestrator.from_settings(store)
    await orchestrator.generate_sync_key()
    orchestrator.start()  # periodic rounds
"""
import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from sync_client.change_capture import ChangeCapture
from sync_client.clock import MonotonicClock
from sync_client.codec import decode_pull, encode_push
from sync_client.config import ClientSettings
from sync_client.exceptions import InvalidSyncKeyError, SyncError, TenantNotFoundError
from sync_client.local_store import LocalStore
from sync_client.models import TABLES
from sync_client.tombstones import TombstoneQueue
from sync_client.transport import SyncTransport

logger = logging.getLogger(__name__)

SYNC_KEY_META = "sync_key"
LAST_SYNC_META = "last_sync"

SYNC_KEY_PATTERN = re.compile(r"[a-f0-9-]{36}")


class SyncState(str, Enum):
    IDLE = "idle"
    SCHEDULING = "scheduling"
    IN_FLIGHT = "in_flight"


class SyncTrigger(str, Enum):
    MUTATION = "mutation"
    ONLINE = "online"
    PERIODIC = "periodic"
    EXPLICIT = "explicit"


@dataclass
class SyncResult:
    success: bool
    error: Optional[str] = None
    sync_timestamp: Optional[int] = None


@dataclass
class SyncStatus:
    """Snapshot for the preferences screen."""
    state: SyncState
    online: bool
    configured: bool
    sync_key: Optional[str]
    last_sync_time: Optional[int]
    pending_deletions: int
    last_error: Optional[str] = None


def validate_sync_key(key: str) -> str:
    if not isinstance(key, str) or not SYNC_KEY_PATTERN.fullmatch(key):
        raise InvalidSyncKeyError("Invalid sync key format")
    return key


class SyncOrchestrator:

    def __init__(
        self,
        store: LocalStore,
        transport: SyncTransport,
        settings: Optional[ClientSettings] = None,
        clock: Optional[Callable[[], int]] = None,
        online: bool = True,
    ):
        self.store = store
        self.transport = transport
        self.settings = settings or ClientSettings()
        self.clock = clock or MonotonicClock()
        self.online = online
        self.state = SyncState.IDLE
        self.last_error: Optional[str] = None

        self.tombstones = TombstoneQueue(store)
        self.capture = ChangeCapture(store, self.tombstones, on_change=self._on_local_change, clock=self.clock)
        self.capture.install()

        self._scheduled: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(
        cls,
        store: LocalStore,
        settings: Optional[ClientSettings] = None,
        **kwargs,
    ) -> "SyncOrchestrator":
        settings = settings or ClientSettings()
        transport = SyncTransport(settings.SERVER_URL, timeout_s=settings.TIMEOUT_S)
        return cls(store, transport, settings=settings, **kwargs)

    # ------------------------------------------------------------------
    # Key management
    # ------------------------------------------------------------------

    @property
    def sync_key(self) -> Optional[str]:
        return self.store.get_meta(SYNC_KEY_META)

    @property
    def last_sync_time(self) -> Optional[int]:
        value = self.store.get_meta(LAST_SYNC_META)
        return int(value) if value is not None else None

    def is_sync_enabled(self) -> bool:
        return self.sync_key is not None

    async def generate_sync_key(self) -> SyncResult:
        """Create a new tenant on the server, adopt its key and sync into it."""
        try:
            key = await self.transport.create_tenant()
        except SyncError as e:
            logger.warning(f"Could not create sync key: {e}")
            self.last_error = str(e)
            return SyncResult(success=False, error=str(e))

        self._adopt_key(key)
        logger.info("Created new sync key")
        return await self.sync_now()

    async def set_sync_key(self, key: str) -> SyncResult:
        """Join an existing tenant (e.g. a key copied from another device)."""
        try:
            validate_sync_key(key)
            if not await self.transport.tenant_exists(key):
                raise TenantNotFoundError()
        except SyncError as e:
            logger.warning(f"Rejected sync key: {e}")
            return SyncResult(success=False, error=str(e))

        self._adopt_key(key)
        return await self.sync_now()

    def clear_sync_key(self) -> None:
        """Disconnect this device. Local data and queued deletions are kept."""
        self._cancel_scheduled()
        self.store.delete_meta(SYNC_KEY_META)
        self.store.delete_meta(LAST_SYNC_META)
        self.last_error = None

    def _adopt_key(self, key: str) -> None:
        self._cancel_scheduled()
        self.store.set_meta(SYNC_KEY_META, key)
        self.store.delete_meta(LAST_SYNC_META)

    def status(self) -> SyncStatus:
        sync_key = self.sync_key
        return SyncStatus(
            state=self.state,
            online=self.online,
            configured=sync_key is not None,
            sync_key=sync_key,
            last_sync_time=self.last_sync_time,
            pending_deletions=self.tombstones.count(),
            last_error=self.last_error,
        )

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def _on_local_change(self) -> None:
        self.trigger(SyncTrigger.MUTATION)

    def set_online(self, online: bool) -> None:
        was_online = self.online
        self.online = online
        if online and not was_online:
            self.trigger(SyncTrigger.ONLINE)

    def trigger(self, reason: SyncTrigger = SyncTrigger.EXPLICIT) -> bool:
        """Schedule a debounced round. Returns False if the trigger was dropped."""
        if self.state != SyncState.IDLE or not self.online or not self.is_sync_enabled():
            logger.debug(f"Dropped {reason.value} trigger (state={self.state.value}, online={self.online})")
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"Dropped {reason.value} trigger: no running event loop")
            return False

        self.state = SyncState.SCHEDULING
        self._scheduled = loop.create_task(self._debounced(reason))
        return True

    async def _debounced(self, reason: SyncTrigger) -> SyncResult:
        await asyncio.sleep(self.settings.DEBOUNCE_MS / 1000)
        logger.debug(f"Starting sync round ({reason.value})")
        return await self._run_round()

    def _cancel_scheduled(self) -> None:
        if self.state == SyncState.SCHEDULING and self._scheduled is not None:
            self._scheduled.cancel()
            self._scheduled = None
            self.state = SyncState.IDLE

    async def sync_now(self) -> SyncResult:
        """Run a round immediately, replacing any pending debounced one."""
        if self.state == SyncState.IN_FLIGHT:
            return SyncResult(success=False, error="Sync already in progress")
        if not self.is_sync_enabled():
            return SyncResult(success=False, error="Sync not configured")
        if not self.online:
            return SyncResult(success=False, error="Offline")
        self._cancel_scheduled()
        return await self._run_round()

    async def wait_idle(self) -> None:
        """Wait for a scheduled or running background round to finish."""
        while self._scheduled is not None and not self._scheduled.done():
            try:
                await self._scheduled
            except asyncio.CancelledError:
                break

    # ------------------------------------------------------------------
    # Periodic timer
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._timer is not None or self.settings.INTERVAL_S <= 0:
            return
        self._timer = asyncio.get_running_loop().create_task(self._periodic())

    async def _periodic(self) -> None:
        while True:
            await asyncio.sleep(self.settings.INTERVAL_S)
            self.trigger(SyncTrigger.PERIODIC)

    async def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        self._cancel_scheduled()
        await self.wait_idle()

    async def aclose(self) -> None:
        await self.stop()
        self.capture.uninstall()
        await self.transport.aclose()

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------

    async def _run_round(self) -> SyncResult:
        loop = asyncio.get_running_loop()
        self.state = SyncState.IN_FLIGHT
        started = loop.time()
        self.capture.begin_tracking()
        try:
            result = await self._round()
        except SyncError as e:
            logger.warning(f"Sync round failed: {e}")
            result = SyncResult(success=False, error=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error during sync round: {e}")
            result = SyncResult(success=False, error="Unexpected sync error")
        finally:
            self.capture.end_tracking()

        try:
            remaining = self.settings.MIN_ROUND_MS / 1000 - (loop.time() - started)
            if remaining > 0:
                await asyncio.sleep(remaining)
        finally:
            self.state = SyncState.IDLE

        self.last_error = result.error
        return result

    async def _round(self) -> SyncResult:
        sync_key = self.sync_key
        if sync_key is None:
            return SyncResult(success=False, error="Sync not configured")

        records = {table: self.store.list(table) for table in TABLES}
        pending = self.tombstones.all()
        sent_up_to = max((entry.seq for entry in pending), default=None)
        payload = encode_push(records, pending, now=self.clock(), last_sync=self.last_sync_time or 0)

        data = await self.transport.push(sync_key, payload)
        if self.sync_key != sync_key:
            logger.warning("Sync key changed during round; discarding response")
            return SyncResult(success=False, error="Sync key changed during sync")
        merged = decode_pull(data)
        sync_timestamp = int(data.get("syncTimestamp") or 0)

        # Records edited while the request was out keep their local state
        touched = self.capture.touched()
        with self.capture.suppressed(), self.store.transaction() as txn:
            self.store.replace_all(merged, preserve=touched)
            if sent_up_to is not None:
                self.tombstones.clear(up_to_seq=sent_up_to, conn=txn.conn)
            self.store.set_meta(LAST_SYNC_META, str(sync_timestamp))

        logger.info(
            f"Sync round complete: {sum(len(rows) for rows in merged.values())} records, "
            f"{len(pending)} deletions sent"
        )
        return SyncResult(success=True, sync_timestamp=sync_timestamp)
