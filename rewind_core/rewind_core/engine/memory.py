"""In-memory engine gateway for local dev mode and tests.

Simulates the subset of SQL Server behaviour the orchestrator relies on:

* snapshots can only be taken of existing databases with data files;
* a database cannot be restored while it has more than one snapshot;
* snapshots whose backing files are gone fail the readability probe.

Failures can be injected per command and target with :meth:`fail`, and
every command is appended to :attr:`commands` so tests can assert exactly
what was sent to the engine.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from rewind_core.engine.base import DataFile, SnapshotArtifact, SnapshotFile, SourceDatabase
from rewind_core.engine.config import EngineConfig
from rewind_core.errors import EngineCommandError, EngineUnavailableError

logger = logging.getLogger(__name__)


class InMemoryEngineGateway:
    """Engine gateway holding all state in process memory."""

    def __init__(self) -> None:
        self.databases: dict[str, list[DataFile]] = {}
        self.artifacts: dict[str, SnapshotArtifact] = {}
        self.artifact_files: dict[str, list[str]] = {}
        self.corrupted: set[str] = set()
        self.single_user: set[str] = set()
        self.restored: list[tuple[str, str]] = []
        self.commands: list[tuple[str, str]] = []
        self.available = True
        self._failures: dict[tuple[str, str], str] = {}

    # -- Test and dev helpers ------------------------------------------------

    def add_database(self, name: str, data_files: list[str] | None = None) -> None:
        """Register a source database.

        ``data_files`` lists logical file names; ``None`` gives the database
        a single data file named after it, ``[]`` gives it none.
        """
        logical = [name] if data_files is None else data_files
        self.databases[name] = [DataFile(logical_name=f, physical_name=f"/var/opt/mssql/data/{f}.mdf") for f in logical]

    def add_artifact(self, name: str, source_database: str | None, *, corrupted: bool = False) -> None:
        """Place a snapshot on the engine without going through ``create_snapshot``."""
        self.artifacts[name] = SnapshotArtifact(
            name=name, source_database=source_database, create_date=datetime.now(UTC)
        )
        if corrupted:
            self.corrupted.add(name)

    def corrupt(self, artifact: str) -> None:
        """Make *artifact* fail the readability probe."""
        self.corrupted.add(artifact)

    def fail(self, command: str, target: str, message: str = "simulated engine failure") -> None:
        """Make *command* fail whenever it targets *target*."""
        self._failures[(command, target)] = message

    def clear_failures(self) -> None:
        self._failures.clear()

    def snapshots_of(self, database: str) -> list[str]:
        return sorted(a.name for a in self.artifacts.values() if a.source_database == database)

    def _check(self, command: str, target: str) -> None:
        self.commands.append((command, target))
        message = self._failures.get((command, target))
        if message is not None:
            raise EngineCommandError(message, command=command)

    # -- EngineGateway -------------------------------------------------------

    @asynccontextmanager
    async def connect(self, config: EngineConfig) -> AsyncIterator[InMemoryEngineSession]:
        if not self.available:
            raise EngineUnavailableError(f"Cannot connect to SQL Server at {config.host}:{config.port}")
        yield InMemoryEngineSession(self)

    async def dispose(self) -> None:
        return None


class InMemoryEngineSession:
    """Session view over an :class:`InMemoryEngineGateway`."""

    def __init__(self, gateway: InMemoryEngineGateway) -> None:
        self._gw = gateway

    async def server_version(self) -> str:
        self._gw._check("version", "")
        return "Rewind in-memory engine"

    async def list_databases(self) -> list[SourceDatabase]:
        self._gw._check("list_databases", "")
        return [SourceDatabase(name=name) for name in sorted(self._gw.databases)]

    async def list_data_files(self, database: str) -> list[DataFile]:
        self._gw._check("list_data_files", database)
        return list(self._gw.databases.get(database, []))

    async def create_snapshot(self, artifact: str, source_database: str, files: list[SnapshotFile]) -> None:
        self._gw._check("create_snapshot", artifact)
        if source_database not in self._gw.databases:
            raise EngineCommandError(f"Database '{source_database}' does not exist.", command="CREATE")
        if artifact in self._gw.artifacts:
            raise EngineCommandError(f"Database '{artifact}' already exists.", command="CREATE")
        self._gw.artifacts[artifact] = SnapshotArtifact(
            name=artifact, source_database=source_database, create_date=datetime.now(UTC)
        )
        self._gw.artifact_files[artifact] = [f.physical_name for f in files]

    async def drop_snapshot(self, artifact: str) -> None:
        self._gw._check("drop_snapshot", artifact)
        self._gw.artifacts.pop(artifact, None)
        self._gw.artifact_files.pop(artifact, None)
        self._gw.corrupted.discard(artifact)

    async def list_snapshot_artifacts(self) -> list[SnapshotArtifact]:
        self._gw._check("list_snapshots", "")
        return list(self._gw.artifacts.values())

    async def probe_snapshot(self, artifact: str) -> None:
        self._gw._check("probe_snapshot", artifact)
        if artifact not in self._gw.artifacts:
            raise EngineCommandError(f"Database '{artifact}' does not exist.", command="SELECT")
        if artifact in self._gw.corrupted:
            raise EngineCommandError(
                f"Database '{artifact}' cannot be opened due to inaccessible files.", command="SELECT"
            )

    async def kill_connections(self, database: str) -> int:
        self._gw._check("kill_connections", database)
        return 0

    async def set_single_user(self, database: str) -> None:
        self._gw._check("set_single_user", database)
        self._gw.single_user.add(database)

    async def restore_from_snapshot(self, database: str, artifact: str) -> None:
        self._gw._check("restore", database)
        snap = self._gw.artifacts.get(artifact)
        if snap is None or snap.source_database != database:
            raise EngineCommandError(
                f"RESTORE DATABASE failed: snapshot '{artifact}' does not exist for '{database}'.", command="RESTORE"
            )
        others = [n for n in self._gw.snapshots_of(database) if n != artifact]
        if others:
            raise EngineCommandError(
                f"RESTORE DATABASE failed: database '{database}' has more than one snapshot.", command="RESTORE"
            )
        self._gw.restored.append((database, artifact))
        logger.info("Restored %s from snapshot %s (in-memory)", database, artifact)

    async def set_multi_user(self, database: str) -> None:
        self._gw._check("set_multi_user", database)
        self._gw.single_user.discard(database)
