"""Embedded SQLite backend for the metadata store.

Uses the same tables as PostgreSQL; JSON columns degrade to TEXT.  Every
new connection gets WAL journaling and enforced foreign keys, the latter
so that deleting a group cascades to its snapshot rows.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA synchronous=NORMAL",
)


def _apply_pragmas(dbapi_conn: Any, _record: Any) -> None:
    cursor = dbapi_conn.cursor()
    for pragma in _PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


def get_local_engine(db_path: Path | str = ".rewind/metadata.db") -> AsyncEngine:
    """SQLite engine for *db_path*, creating parent directories as needed.

    ``":memory:"`` yields a private in-memory database pinned to a single
    connection, so every session of the engine sees the same tables.
    """
    if str(db_path) == MEMORY:
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{MEMORY}",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(f"sqlite+aiosqlite:///{path}", connect_args={"check_same_thread": False})

    event.listen(engine.sync_engine, "connect", _apply_pragmas)
    logger.info("Metadata store on SQLite %s", db_path)
    return engine
