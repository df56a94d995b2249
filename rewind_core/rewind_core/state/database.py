"""Engine and session helpers for the relational metadata store.

Two URL schemes are accepted for ``REWIND_METADATA_URL``:

``sqlite+aiosqlite:///<path>``
    Embedded store for single-machine installs (``:memory:`` in tests).
``postgresql+asyncpg://<user>:<pass>@<host>/<db>``
    Shared store when several API instances manage the same engine.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from rewind_core.errors import MetadataStoreError

logger = logging.getLogger(__name__)

SQLITE_DRIVER = "sqlite+aiosqlite"
POSTGRES_DRIVER = "postgresql+asyncpg"

# One session factory per engine, dropped again by dispose_engine().
_factories: dict[int, async_sessionmaker[AsyncSession]] = {}


def get_engine(metadata_url: str, *, pool_size: int = 5, max_overflow: int = 10) -> AsyncEngine:
    """Create the async engine behind :class:`~rewind_core.state.store.SqlMetadataStore`.

    Parameters
    ----------
    metadata_url:
        SQLAlchemy URL using one of the supported async drivers.
    pool_size, max_overflow:
        PostgreSQL pool sizing; SQLite ignores both.

    Raises
    ------
    MetadataStoreError
        When the URL is malformed or names an unsupported driver.
    """
    try:
        url = make_url(metadata_url)
    except ArgumentError as exc:
        raise MetadataStoreError(f"Invalid metadata URL: {exc}") from exc

    if url.drivername == SQLITE_DRIVER:
        from rewind_core.state.sqlite_adapter import get_local_engine

        return get_local_engine(url.database or ":memory:")

    if url.drivername != POSTGRES_DRIVER:
        raise MetadataStoreError(
            f"Unsupported metadata driver '{url.drivername}'; use {SQLITE_DRIVER} or {POSTGRES_DRIVER}"
        )
    engine = create_async_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=1800,
    )
    logger.info("Metadata engine on %s (pool %d+%d)", url.host, pool_size, max_overflow)
    return engine


async def create_tables(engine: AsyncEngine) -> None:
    """Create missing metadata tables; existing ones are left as they are."""
    from rewind_core.state.tables import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.debug("Metadata tables ready")


def _factory_for(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    factory = _factories.get(id(engine))
    if factory is None:
        factory = async_sessionmaker(engine, expire_on_commit=False)
        _factories[id(engine)] = factory
    return factory


@asynccontextmanager
async def get_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """One unit of work: commit on clean exit, roll back and re-raise otherwise."""
    session = _factory_for(engine)()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def dispose_engine(engine: AsyncEngine) -> None:
    """Close the engine's pool and forget its session factory."""
    _factories.pop(id(engine), None)
    await engine.dispose()
