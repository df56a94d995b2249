"""Abstract interface for engine gateways.

Every gateway -- whether it talks to a real SQL Server instance or
simulates one in memory -- must satisfy :class:`EngineGateway` so that the
orchestration services remain backend-agnostic.  Gateways carry no business
logic: they translate one call into one engine command and raise
:class:`~rewind_core.errors.EngineCommandError` when the engine rejects it.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from rewind_core.engine.config import EngineConfig


@dataclass(frozen=True)
class DataFile:
    """One data file (never a log file) of a source database."""

    logical_name: str
    physical_name: str


@dataclass(frozen=True)
class SnapshotFile:
    """Logical file name paired with the sparse file that will back it."""

    logical_name: str
    physical_name: str


@dataclass(frozen=True)
class SnapshotArtifact:
    """An engine-side database snapshot."""

    name: str
    source_database: str | None
    create_date: datetime | None = None
    state: str = "ONLINE"


@dataclass(frozen=True)
class SourceDatabase:
    """A user database eligible for snapshotting."""

    name: str
    create_date: datetime | None = None
    collation: str | None = None


class EngineSession(Protocol):
    """Commands available over one open engine connection."""

    async def server_version(self) -> str:
        """Return the engine's version banner."""
        ...

    async def list_databases(self) -> list[SourceDatabase]:
        """List online user databases, excluding system databases and snapshots."""
        ...

    async def list_data_files(self, database: str) -> list[DataFile]:
        """List the data files of *database*; log files are excluded.

        Parameters
        ----------
        database:
            Source database name.

        Returns
        -------
        list[DataFile]
            Empty when the database does not exist or has no data files.
        """
        ...

    async def create_snapshot(self, artifact: str, source_database: str, files: list[SnapshotFile]) -> None:
        """Create snapshot *artifact* of *source_database*, one sparse file per data file."""
        ...

    async def drop_snapshot(self, artifact: str) -> None:
        """Drop *artifact*; a no-op when it does not exist."""
        ...

    async def list_snapshot_artifacts(self) -> list[SnapshotArtifact]:
        """Every snapshot on the engine, whoever created it."""
        ...

    async def probe_snapshot(self, artifact: str) -> None:
        """Perform a trivial read against *artifact*.

        Raises
        ------
        EngineCommandError
            When the artifact is unreadable (backing files gone or corrupt).
        """
        ...

    async def kill_connections(self, database: str) -> int:
        """Terminate sessions connected to *database*; returns how many."""
        ...

    async def set_single_user(self, database: str) -> None:
        """Put *database* in single-user mode, rolling back other sessions immediately."""
        ...

    async def restore_from_snapshot(self, database: str, artifact: str) -> None:
        """Replace *database* with the contents of snapshot *artifact*."""
        ...

    async def set_multi_user(self, database: str) -> None:
        """Return *database* to multi-user mode."""
        ...


class EngineGateway(Protocol):
    """Factory for engine sessions.

    Implementations are **not** required to subclass this protocol; they only
    need to expose methods with matching signatures (duck typing).
    """

    def connect(self, config: EngineConfig) -> AbstractAsyncContextManager[EngineSession]:
        """Open a session against the engine described by *config*.

        Raises
        ------
        EngineUnavailableError
            When no connection can be established.
        """
        ...

    async def dispose(self) -> None:
        """Release pooled connections."""
        ...
