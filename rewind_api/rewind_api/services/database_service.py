"""Engine introspection: source databases and connectivity."""

from __future__ import annotations

import logging
from typing import Any

from rewind_core.engine.base import EngineGateway, SourceDatabase
from rewind_core.engine.config import EngineConfig
from rewind_core.errors import EngineCommandError, EngineUnavailableError

logger = logging.getLogger(__name__)

# Display order of database categories.
_CATEGORY_ORDER = {"Global": 0, "User": 1, "Data Warehouse": 2}


def categorize_database(name: str) -> str:
    """Bucket a database by naming habit: Global, Data Warehouse or User."""
    lowered = name.lower()
    if "global" in lowered:
        return "Global"
    if "dw" in lowered or "datawarehouse" in lowered:
        return "Data Warehouse"
    return "User"


class DatabaseService:
    """Read-only engine queries used by the UI and health checks."""

    def __init__(self, gateway: EngineGateway, config: EngineConfig) -> None:
        self._gateway = gateway
        self._config = config

    async def list_databases(self) -> list[dict[str, Any]]:
        """User databases grouped by category, then sorted by name."""
        async with self._gateway.connect(self._config) as engine:
            databases: list[SourceDatabase] = await engine.list_databases()
        listed = [
            {
                "name": db.name,
                "category": categorize_database(db.name),
                "create_date": db.create_date.isoformat() if db.create_date else None,
                "collation": db.collation,
            }
            for db in databases
        ]
        listed.sort(key=lambda d: (_CATEGORY_ORDER[d["category"]], d["name"].lower()))
        return listed

    async def test_connection(self) -> dict[str, Any]:
        """Connect and read the engine version; never raises for engine errors."""
        try:
            async with self._gateway.connect(self._config) as engine:
                version = await engine.server_version()
        except (EngineUnavailableError, EngineCommandError) as exc:
            logger.warning("Connection test to %s failed: %s", self._config.host, exc.message)
            return {"success": False, "host": self._config.host, "port": self._config.port, "error": exc.message}
        return {"success": True, "host": self._config.host, "port": self._config.port, "version": version}
