"""FastAPI dependency injection for the metadata store, engine gateway and settings."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from rewind_core.engine.base import EngineGateway
from rewind_core.engine.config import EngineConfig
from rewind_core.engine.memory import InMemoryEngineGateway
from rewind_core.engine.sqlserver import SqlServerGateway
from rewind_core.models.profile import Profile
from rewind_core.state.database import dispose_engine, get_engine, get_session
from rewind_core.state.file_store import JsonFileMetadataStore
from rewind_core.state.store import MetadataStore, SqlMetadataStore
from sqlalchemy.ext.asyncio import AsyncEngine

from rewind_api.config import APISettings, EngineBackend, MetadataBackend, load_api_settings
from rewind_api.services.file_api_client import FileApiClient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Metadata store
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_file_store: JsonFileMetadataStore | None = None


def init_metadata(settings: APISettings) -> AsyncEngine | None:
    """Create the metadata adapter selected by ``metadata_backend``.

    Returns the SQL engine so the caller can create tables, or ``None`` for
    the file backend.
    """
    global _engine, _file_store  # noqa: PLW0603
    if settings.metadata_backend is MetadataBackend.FILE:
        _file_store = JsonFileMetadataStore(settings.metadata_dir)
        logger.info("Metadata store: JSON files under %s", settings.metadata_dir)
        return None
    _engine = get_engine(settings.metadata_url)
    logger.info("Metadata store: %s", _engine.url.render_as_string(hide_password=True))
    return _engine


async def dispose_metadata() -> None:
    """Dispose the metadata engine pool (call during shutdown)."""
    global _engine, _file_store  # noqa: PLW0603
    if _engine is not None:
        await dispose_engine(_engine)
    _engine = None
    _file_store = None


async def get_metadata_store() -> AsyncGenerator[MetadataStore, None]:
    """Yield the metadata store for one request.

    The SQL adapter wraps a fresh session that commits on clean exit and
    rolls back on exception.  The file adapter is shared and writes through.
    """
    if _file_store is not None:
        yield _file_store
        return
    if _engine is None:
        raise RuntimeError(
            "Metadata store has not been initialised. Ensure init_metadata() is called during application startup."
        )
    async with get_session(_engine) as session:
        yield SqlMetadataStore(session)


StoreDep = Annotated[MetadataStore, Depends(get_metadata_store)]

# ---------------------------------------------------------------------------
# Engine gateway
# ---------------------------------------------------------------------------

_gateway: EngineGateway | None = None


def init_gateway(settings: APISettings) -> EngineGateway:
    """Create and cache the global engine gateway."""
    global _gateway  # noqa: PLW0603
    if settings.engine_backend is EngineBackend.MEMORY:
        _gateway = InMemoryEngineGateway()
    else:
        _gateway = SqlServerGateway()
    logger.info("Engine gateway: %s", settings.engine_backend.value)
    return _gateway


async def dispose_gateway() -> None:
    """Release pooled engine connections."""
    global _gateway  # noqa: PLW0603
    if _gateway is not None:
        await _gateway.dispose()
        _gateway = None


def get_gateway() -> EngineGateway:
    """Return the cached engine gateway."""
    if _gateway is None:
        raise RuntimeError(
            "Engine gateway has not been initialised. Ensure init_gateway() is called during application startup."
        )
    return _gateway


GatewayDep = Annotated[EngineGateway, Depends(get_gateway)]


def default_profile(settings: APISettings) -> Profile:
    """Connection profile built from ``REWIND_ENGINE_*`` variables."""
    return Profile(
        id="default",
        name="default",
        host=settings.engine_host,
        port=settings.engine_port,
        username=settings.engine_username,
        password=settings.engine_password,
        trust_certificate=settings.engine_trust_certificate,
        snapshot_path=settings.snapshot_path,
        is_active=True,
    )


async def resolve_engine_config(store: MetadataStore, settings: APISettings) -> EngineConfig:
    """Engine config of the active profile, falling back to the environment."""
    profile = await store.get_active_profile() or default_profile(settings)
    return EngineConfig.from_profile(
        profile,
        odbc_driver=settings.odbc_driver,
        connect_timeout=settings.engine_connect_timeout,
    )


async def get_engine_config(store: StoreDep, settings: SettingsDep) -> EngineConfig:
    return await resolve_engine_config(store, settings)


EngineConfigDep = Annotated[EngineConfig, Depends(get_engine_config)]

# ---------------------------------------------------------------------------
# File API client
# ---------------------------------------------------------------------------

_file_api: FileApiClient | None = None


def init_file_api(settings: APISettings) -> FileApiClient | None:
    """Create the file API client when ``file_api_url`` is set."""
    global _file_api  # noqa: PLW0603
    if not settings.file_api_url:
        logger.info("File API not configured; file cleanup endpoints are disabled")
        _file_api = None
        return None
    _file_api = FileApiClient(
        base_url=settings.file_api_url,
        username=settings.file_api_username,
        password=settings.file_api_password.get_secret_value(),
        timeout=settings.file_api_timeout,
    )
    return _file_api


async def dispose_file_api() -> None:
    """Close the file API client's underlying HTTP pool."""
    global _file_api  # noqa: PLW0603
    if _file_api is not None:
        await _file_api.close()
        _file_api = None


def get_file_api() -> FileApiClient | None:
    """Return the file API client, or ``None`` when it is not configured."""
    return _file_api


FileApiDep = Annotated[FileApiClient | None, Depends(get_file_api)]

# ---------------------------------------------------------------------------
# User identity
# ---------------------------------------------------------------------------


def get_current_user(request: Request, settings: SettingsDep) -> str:
    """Identity from the ``X-User`` header, else the configured default."""
    user = request.headers.get("x-user", "").strip()
    return user or settings.default_user


UserDep = Annotated[str, Depends(get_current_user)]
