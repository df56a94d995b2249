"""Shared fixtures for Rewind API tests.

Services run against a real :class:`JsonFileMetadataStore` in a temporary
directory and an :class:`InMemoryEngineGateway`, so every test observes
actual metadata and engine state rather than mock call counts.  Router
tests get an httpx ``AsyncClient`` over ``ASGITransport`` with the same
fixtures injected through ``dependency_overrides``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from rewind_api.config import APISettings
from rewind_api.dependencies import get_file_api, get_gateway, get_metadata_store, get_settings
from rewind_api.main import create_app
from rewind_core.engine.config import EngineConfig
from rewind_core.engine.memory import InMemoryEngineGateway
from rewind_core.models.group import Group
from rewind_core.state.file_store import JsonFileMetadataStore

SNAPSHOT_PATH = "/var/opt/mssql/snapshots"


@pytest.fixture()
def test_settings(tmp_path: Path) -> APISettings:
    return APISettings(
        metadata_backend="file",
        metadata_dir=str(tmp_path / "meta"),
        engine_backend="memory",
        snapshot_path=SNAPSHOT_PATH,
        startup_orphan_sweep=False,
        cors_origins=["http://localhost:3000"],
    )


@pytest.fixture()
def store(tmp_path: Path) -> JsonFileMetadataStore:
    return JsonFileMetadataStore(tmp_path / "meta")


@pytest.fixture()
def gateway() -> InMemoryEngineGateway:
    gw = InMemoryEngineGateway()
    for name in ("A", "B", "C"):
        gw.add_database(name)
    return gw


@pytest.fixture()
def engine_config() -> EngineConfig:
    return EngineConfig(host="mem", snapshot_path=SNAPSHOT_PATH, profile_id="default")


@pytest_asyncio.fixture()
async def group(store: JsonFileMetadataStore) -> Group:
    """Group "Sales" over databases A and B in the default profile."""
    return await store.add_group(Group(id="g1", name="Sales", databases=["A", "B"], profile_id="default"))


# ---------------------------------------------------------------------------
# FastAPI app (async httpx)
# ---------------------------------------------------------------------------


@pytest.fixture()
def app(test_settings: APISettings, store: JsonFileMetadataStore, gateway: InMemoryEngineGateway):
    """FastAPI app with the store, gateway and settings injected."""
    application = create_app()

    async def _override_store() -> AsyncIterator[JsonFileMetadataStore]:
        yield store

    application.dependency_overrides[get_metadata_store] = _override_store
    application.dependency_overrides[get_gateway] = lambda: gateway
    application.dependency_overrides[get_settings] = lambda: test_settings
    application.dependency_overrides[get_file_api] = lambda: None
    return application


@pytest_asyncio.fixture()
async def client(app) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
