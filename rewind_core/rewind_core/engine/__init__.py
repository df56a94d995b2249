"""Engine gateways: the only code that talks to the database engine."""

from rewind_core.engine.base import (
    DataFile,
    EngineGateway,
    EngineSession,
    SnapshotArtifact,
    SnapshotFile,
    SourceDatabase,
)
from rewind_core.engine.config import EngineConfig
from rewind_core.engine.memory import InMemoryEngineGateway
from rewind_core.engine.sqlserver import SqlServerGateway

__all__ = [
    "DataFile",
    "EngineConfig",
    "EngineGateway",
    "EngineSession",
    "InMemoryEngineGateway",
    "SnapshotArtifact",
    "SnapshotFile",
    "SourceDatabase",
    "SqlServerGateway",
]
