"""Metadata persistence: relational tables, repositories and store adapters."""

from rewind_core.state.database import create_tables, dispose_engine, get_engine, get_session
from rewind_core.state.file_store import JsonFileMetadataStore
from rewind_core.state.repository import (
    GroupRepository,
    HistoryRepository,
    ProfileRepository,
    SettingsRepository,
    SnapshotRepository,
)
from rewind_core.state.store import MetadataStore, SqlMetadataStore

__all__ = [
    "GroupRepository",
    "HistoryRepository",
    "JsonFileMetadataStore",
    "MetadataStore",
    "ProfileRepository",
    "SettingsRepository",
    "SnapshotRepository",
    "SqlMetadataStore",
    "create_tables",
    "dispose_engine",
    "get_engine",
    "get_session",
]
