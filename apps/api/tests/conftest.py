"""
Pytest configuration and fixtures

Every test gets its own TenantRegistry rooted in a temporary directory, so
no tenant file outlives the test that created it.
"""
import pytest
import sys
import os

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# ...and this directory so tests can import from fixtures
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fastapi.testclient import TestClient
from core.database import TenantRegistry
from main import create_app


@pytest.fixture
def registry(tmp_path):
    """An isolated registry; all handles are closed after the test."""
    reg = TenantRegistry(str(tmp_path / "tenants"))
    yield reg
    reg.close_all()


@pytest.fixture
def tenant(registry):
    """A freshly created tenant handle."""
    sync_key = registry.create()
    return registry.open(sync_key)


@pytest.fixture
def client(registry):
    """TestClient for an app bound to the isolated registry."""
    with TestClient(create_app(registry)) as test_client:
        yield test_client
