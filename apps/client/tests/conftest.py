"""
Pytest configuration and fixtures for the sync client.

Devices talk to a real in-process sync app through ``httpx.ASGITransport``;
each test gets its own tenant directory and in-memory local stores.
"""
import pytest
import pytest_asyncio
import sys
import os

CLIENT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
API_DIR = os.path.join(os.path.dirname(CLIENT_DIR), "api")

# The client package, the API app it syncs against, and this directory's helpers
sys.path.insert(0, CLIENT_DIR)
sys.path.insert(0, API_DIR)
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import httpx

from core.database import TenantRegistry
from main import create_app
from sync_client.config import ClientSettings
from sync_client.local_store import LocalStore
from sync_client.orchestrator import SyncOrchestrator
from sync_client.transport import SyncTransport
from sync_helpers import BASE_URL, ManualClock


@pytest.fixture
def settings():
    return ClientSettings(SERVER_URL=BASE_URL, DEBOUNCE_MS=0, MIN_ROUND_MS=0, INTERVAL_S=0)


@pytest.fixture
def registry(tmp_path):
    reg = TenantRegistry(str(tmp_path / "tenants"))
    yield reg
    reg.close_all()


@pytest.fixture
def app(registry):
    return create_app(registry)


@pytest.fixture
def store():
    local = LocalStore()
    yield local
    local.close()


@pytest_asyncio.fixture
async def make_device(app, settings):
    """Factory for devices (local store + orchestrator) synced against ``app``."""
    devices = []

    def _make(clock=None, online=True, **setting_overrides):
        device_settings = settings.model_copy(update=setting_overrides) if setting_overrides else settings
        transport = SyncTransport(BASE_URL, transport=httpx.ASGITransport(app=app))
        orchestrator = SyncOrchestrator(
            LocalStore(),
            transport,
            settings=device_settings,
            clock=clock or ManualClock(),
            online=online,
        )
        devices.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in devices:
        await orchestrator.aclose()
        orchestrator.store.close()

