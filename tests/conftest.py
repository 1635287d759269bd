"""Shared pytest fixtures for osslite tests.

A single FastAPI app is created per test session to avoid duplicate
Prometheus metric registration errors (the instrumentator registers
collectors in the global prometheus_client registry).

The lifespan does not run under ASGITransport, so each test swaps a
fresh in-memory SQLite metadata store and a fresh local storage
directory onto ``app.state`` and restores the previous ones afterwards.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from osslite.client import OSSClient
from osslite.config import (
    AuthConfig,
    MetadataConfig,
    OSSLiteConfig,
    ServerConfig,
    SQLiteConfig,
    StorageConfig,
)
from osslite.handlers.base import derive_owner_id
from osslite.metadata.sqlite import SQLiteMetadataStore
from osslite.server import create_app
from osslite.storage.local import LocalStorageBackend

BASE_URL = "http://testserver"


@pytest.fixture(scope="session")
def config() -> OSSLiteConfig:
    """Create a test config with auth disabled.

    Auth is disabled for tests that don't sign requests; the
    ``auth_enabled`` fixture turns it on for a single test.
    """
    return OSSLiteConfig(
        server=ServerConfig(host="127.0.0.1", port=9010),
        auth=AuthConfig(access_key="test", secret_key="test-secret", enabled=False),
        metadata=MetadataConfig(engine="sqlite", sqlite=SQLiteConfig(path=":memory:")),
        storage=StorageConfig(backend="local", local_root="/tmp/osslite-test"),
    )


@pytest.fixture(scope="session")
def app(config: OSSLiteConfig):
    """Create a single test FastAPI application for the whole session."""
    return create_app(config)


@pytest.fixture
async def stores(app, config, tmp_path):
    """Install a fresh metadata store and storage backend on the app."""
    metadata = SQLiteMetadataStore(":memory:")
    await metadata.init_db()
    await metadata.put_credential(
        access_key_id=config.auth.access_key,
        secret_key=config.auth.secret_key,
        owner_id=derive_owner_id(config.auth.access_key),
        display_name=config.auth.access_key,
    )
    storage = LocalStorageBackend(str(tmp_path / "objects"))
    await storage.init()

    old_metadata = getattr(app.state, "metadata", None)
    old_storage = getattr(app.state, "storage", None)
    app.state.metadata = metadata
    app.state.storage = storage

    yield metadata, storage

    app.state.metadata = old_metadata
    app.state.storage = old_storage
    await storage.close()
    await metadata.close()


@pytest.fixture
async def client(app, stores) -> AsyncClient:
    """Raw httpx client talking to the app in-process."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=BASE_URL) as ac:
        yield ac


@pytest.fixture
async def oss_client(app, config, stores) -> OSSClient:
    """Signing SDK client talking to the app in-process."""
    async with OSSClient(
        BASE_URL,
        access_key=config.auth.access_key,
        secret_key=config.auth.secret_key,
        transport=ASGITransport(app=app),
    ) as c:
        yield c


@pytest.fixture
def auth_enabled(app):
    """Enable signature checks for the duration of one test."""
    auth = app.state.config.auth
    previous = auth.enabled
    auth.enabled = True
    yield auth
    auth.enabled = previous
