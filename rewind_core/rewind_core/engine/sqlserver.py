"""SQL Server engine gateway.

Talks to SQL Server through SQLAlchemy's async engine over the
``mssql+aioodbc`` dialect.  Connections run in AUTOCOMMIT mode because
``CREATE DATABASE``, ``RESTORE`` and ``ALTER DATABASE`` cannot execute inside
a user transaction.

One pooled :class:`~sqlalchemy.ext.asyncio.AsyncEngine` is kept per distinct
:class:`EngineConfig`; each request opens a single connection from it and
issues every command sequentially over that connection.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from rewind_core.engine.base import DataFile, SnapshotArtifact, SnapshotFile, SourceDatabase
from rewind_core.engine.config import EngineConfig
from rewind_core.errors import EngineCommandError, EngineUnavailableError

logger = logging.getLogger(__name__)


def quote_identifier(name: str) -> str:
    """Bracket-quote *name* for use as a T-SQL identifier."""
    return "[" + name.replace("]", "]]") + "]"


def quote_literal(value: str) -> str:
    """Quote *value* as a T-SQL Unicode string literal."""
    return "N'" + value.replace("'", "''") + "'"


def _error_text(exc: SQLAlchemyError) -> str:
    """Engine message without SQLAlchemy's statement echo."""
    orig = getattr(exc, "orig", None)
    if orig is not None:
        args = getattr(orig, "args", ())
        if len(args) > 1 and isinstance(args[1], str):
            return args[1]
        return str(orig)
    return str(exc)


class SqlServerSession:
    """Engine commands over one open SQL Server connection."""

    def __init__(self, conn: AsyncConnection, config: EngineConfig) -> None:
        self._conn = conn
        self._config = config

    async def _execute(self, sql: str, params: dict[str, Any] | None = None) -> list[Any]:
        try:
            result = await self._conn.execute(text(sql), params or {})
        except DBAPIError as exc:
            raise EngineCommandError(_error_text(exc), command=sql.split(None, 2)[0]) from exc
        if result.returns_rows:
            return list(result.fetchall())
        return []

    async def server_version(self) -> str:
        rows = await self._execute("SELECT @@VERSION")
        return str(rows[0][0]) if rows else ""

    async def list_databases(self) -> list[SourceDatabase]:
        rows = await self._execute(
            "SELECT name, create_date, collation_name FROM sys.databases "
            "WHERE database_id > 4 AND state = 0 AND source_database_id IS NULL "
            "ORDER BY name"
        )
        return [SourceDatabase(name=r[0], create_date=r[1], collation=r[2]) for r in rows]

    async def list_data_files(self, database: str) -> list[DataFile]:
        rows = await self._execute(
            "SELECT name, physical_name FROM sys.master_files WHERE database_id = DB_ID(:db) AND type = 0",
            {"db": database},
        )
        return [DataFile(logical_name=r[0], physical_name=r[1]) for r in rows]

    async def create_snapshot(self, artifact: str, source_database: str, files: list[SnapshotFile]) -> None:
        file_specs = ", ".join(
            f"(NAME = {quote_literal(f.logical_name)}, FILENAME = {quote_literal(f.physical_name)})" for f in files
        )
        await self._execute(
            f"CREATE DATABASE {quote_identifier(artifact)} ON {file_specs} "
            f"AS SNAPSHOT OF {quote_identifier(source_database)}"
        )
        logger.info("Created snapshot %s of %s (%d file(s))", artifact, source_database, len(files))

    async def drop_snapshot(self, artifact: str) -> None:
        await self._execute(f"DROP DATABASE IF EXISTS {quote_identifier(artifact)}")
        logger.info("Dropped snapshot %s", artifact)

    async def list_snapshot_artifacts(self) -> list[SnapshotArtifact]:
        rows = await self._execute(
            "SELECT name, DB_NAME(source_database_id) AS source_database, create_date, state_desc "
            "FROM sys.databases WHERE source_database_id IS NOT NULL ORDER BY create_date"
        )
        return [SnapshotArtifact(name=r[0], source_database=r[1], create_date=r[2], state=r[3] or "") for r in rows]

    async def probe_snapshot(self, artifact: str) -> None:
        await self._execute(f"SELECT TOP 1 1 FROM {quote_identifier(artifact)}.sys.tables")

    async def kill_connections(self, database: str) -> int:
        rows = await self._execute(
            "SELECT session_id FROM sys.dm_exec_sessions WHERE database_id = DB_ID(:db) AND session_id <> @@SPID",
            {"db": database},
        )
        killed = 0
        for row in rows:
            await self._execute(f"KILL {int(row[0])}")
            killed += 1
        return killed

    async def set_single_user(self, database: str) -> None:
        await self._execute(f"ALTER DATABASE {quote_identifier(database)} SET SINGLE_USER WITH ROLLBACK IMMEDIATE")

    async def restore_from_snapshot(self, database: str, artifact: str) -> None:
        await self._execute(
            f"RESTORE DATABASE {quote_identifier(database)} FROM DATABASE_SNAPSHOT = {quote_literal(artifact)}"
        )
        logger.info("Restored %s from snapshot %s", database, artifact)

    async def set_multi_user(self, database: str) -> None:
        await self._execute(f"ALTER DATABASE {quote_identifier(database)} SET MULTI_USER")


class SqlServerGateway:
    """Gateway over pooled SQLAlchemy engines, one per distinct config.

    Parameters
    ----------
    pool_size:
        Persistent connections per engine.
    max_overflow:
        Extra connections allowed under burst.
    """

    def __init__(self, pool_size: int = 5, max_overflow: int = 5) -> None:
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._engines: dict[tuple[str, int, str, str, bool, str], AsyncEngine] = {}

    def _engine_for(self, config: EngineConfig) -> AsyncEngine:
        engine = self._engines.get(config.cache_key)
        if engine is None:
            engine = create_async_engine(
                config.to_url(),
                isolation_level="AUTOCOMMIT",
                pool_size=self._pool_size,
                max_overflow=self._max_overflow,
                pool_pre_ping=True,
                pool_recycle=1800,
                connect_args={"timeout": config.connect_timeout},
            )
            self._engines[config.cache_key] = engine
            logger.info("Created SQL Server engine for %s:%d", config.host, config.port)
        return engine

    @asynccontextmanager
    async def connect(self, config: EngineConfig) -> AsyncIterator[SqlServerSession]:
        engine = self._engine_for(config)
        try:
            conn = await engine.connect()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Cannot connect to SQL Server at %s:%d: %s", config.host, config.port, exc)
            raise EngineUnavailableError(f"Cannot connect to SQL Server at {config.host}:{config.port}") from exc
        try:
            yield SqlServerSession(conn, config)
        finally:
            await conn.close()

    async def dispose(self) -> None:
        for engine in self._engines.values():
            await engine.dispose()
        self._engines.clear()
