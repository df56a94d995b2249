"""Metadata store interface and its relational implementation.

:class:`MetadataStore` is the single persistence seam used by the
orchestration services.  Two adapters satisfy it:

* :class:`SqlMetadataStore` -- repositories over one ``AsyncSession``
  (embedded SQLite or remote PostgreSQL).
* :class:`~rewind_core.state.file_store.JsonFileMetadataStore` -- JSON
  documents in a local directory.

The adapter is chosen once at startup; services never branch on it.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from pydantic import SecretStr
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rewind_core.errors import ConflictError
from rewind_core.models.group import Group
from rewind_core.models.history import HistoryEntry
from rewind_core.models.profile import Profile
from rewind_core.models.settings import Settings
from rewind_core.models.snapshot import Snapshot
from rewind_core.state.repository import (
    GroupRepository,
    HistoryRepository,
    ProfileRepository,
    SettingsRepository,
    SnapshotRepository,
)
from rewind_core.state.tables import GroupTable, HistoryTable, ProfileTable, SnapshotTable

logger = logging.getLogger(__name__)


class MetadataStore(Protocol):
    """Durable CRUD for groups, snapshots, history, settings and profiles."""

    # -- Groups --------------------------------------------------------------

    async def list_groups(self, profile_id: str | None = None) -> list[Group]: ...

    async def get_group(self, group_id: str) -> Group | None: ...

    async def add_group(self, group: Group) -> Group:
        """Insert *group*; raises ConflictError when the name is taken in its profile."""
        ...

    async def update_group(self, group: Group) -> Group: ...

    async def delete_group(self, group_id: str) -> bool: ...

    # -- Snapshots -----------------------------------------------------------

    async def get_snapshots_for_group(self, group_id: str) -> list[Snapshot]:
        """Snapshots of one group, newest sequence first."""
        ...

    async def list_snapshots(self) -> list[Snapshot]: ...

    async def get_snapshot(self, snapshot_id: str) -> Snapshot | None: ...

    async def add_snapshot(self, snapshot: Snapshot) -> Snapshot: ...

    async def update_snapshot_files(self, snapshot_id: str, database: str, files: list[str]) -> None:
        """Backfill the physical file list of one database entry."""
        ...

    async def delete_snapshot(self, snapshot_id: str) -> bool: ...

    async def delete_group_snapshots(self, group_id: str) -> int: ...

    async def delete_all_snapshots(self) -> int: ...

    # -- History -------------------------------------------------------------

    async def add_history_entry(self, entry: HistoryEntry) -> HistoryEntry:
        """Append *entry*, then trim to the configured maximum, oldest first."""
        ...

    async def list_history(self, limit: int | None = None) -> list[HistoryEntry]: ...

    async def clear_history(self) -> int: ...

    # -- Settings and profiles ----------------------------------------------

    async def get_settings(self) -> Settings: ...

    async def save_settings(self, settings: Settings) -> Settings: ...

    async def get_active_profile(self) -> Profile | None: ...

    async def save_profile(self, profile: Profile) -> Profile: ...


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def _group_from_row(row: GroupTable) -> Group:
    return Group(
        id=row.id,
        name=row.name,
        databases=list(row.databases or []),
        profile_id=row.profile_id,
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _snapshot_from_row(row: SnapshotTable) -> Snapshot:
    return Snapshot(
        id=row.id,
        group_id=row.group_id,
        group_name=row.group_name,
        display_name=row.display_name,
        sequence=row.sequence,
        created_at=row.created_at,
        created_by=row.created_by,
        is_automatic=row.is_automatic,
        database_snapshots=list(row.database_snapshots or []),
    )


def _snapshot_to_record(snapshot: Snapshot) -> dict[str, Any]:
    return {
        "id": snapshot.id,
        "group_id": snapshot.group_id,
        "group_name": snapshot.group_name,
        "display_name": snapshot.display_name,
        "sequence": snapshot.sequence,
        "created_at": snapshot.created_at,
        "created_by": snapshot.created_by,
        "is_automatic": snapshot.is_automatic,
        "database_snapshots": [ds.model_dump(mode="json") for ds in snapshot.database_snapshots],
    }


def _history_from_row(row: HistoryTable) -> HistoryEntry:
    return HistoryEntry(
        id=row.id,
        operation_type=row.operation_type,
        timestamp=row.timestamp,
        user_name=row.user_name,
        details=dict(row.details or {}),
        results=list(row.results or []),
    )


def _profile_from_row(row: ProfileTable) -> Profile:
    return Profile(
        id=row.id,
        name=row.name,
        host=row.host,
        port=row.port,
        username=row.username,
        password=SecretStr(row.password or ""),
        trust_certificate=row.trust_certificate,
        snapshot_path=row.snapshot_path,
        description=row.description,
        is_active=row.is_active,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


# ---------------------------------------------------------------------------
# SqlMetadataStore
# ---------------------------------------------------------------------------


class SqlMetadataStore:
    """Metadata store backed by the relational tables.

    Parameters
    ----------
    session:
        Active session; the caller owns the transaction boundary.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._groups = GroupRepository(session)
        self._snapshots = SnapshotRepository(session)
        self._history = HistoryRepository(session)
        self._settings = SettingsRepository(session)
        self._profiles = ProfileRepository(session)

    # -- Groups --------------------------------------------------------------

    async def list_groups(self, profile_id: str | None = None) -> list[Group]:
        return [_group_from_row(r) for r in await self._groups.list_all(profile_id)]

    async def get_group(self, group_id: str) -> Group | None:
        row = await self._groups.get(group_id)
        return _group_from_row(row) if row is not None else None

    async def add_group(self, group: Group) -> Group:
        if await self._groups.get_by_name(group.name, group.profile_id) is not None:
            raise ConflictError(f"A group named '{group.name}' already exists")
        try:
            row = await self._groups.create(
                group_id=group.id,
                name=group.name,
                databases=group.databases,
                profile_id=group.profile_id,
                created_by=group.created_by,
            )
        except IntegrityError as exc:
            raise ConflictError(f"A group named '{group.name}' already exists") from exc
        return _group_from_row(row)

    async def update_group(self, group: Group) -> Group:
        existing = await self._groups.get_by_name(group.name, group.profile_id)
        if existing is not None and existing.id != group.id:
            raise ConflictError(f"A group named '{group.name}' already exists")
        await self._groups.update(group.id, group.name, group.databases)
        row = await self._groups.get(group.id)
        if row is not None:
            await self._session.refresh(row)
            return _group_from_row(row)
        return group

    async def delete_group(self, group_id: str) -> bool:
        return await self._groups.delete(group_id)

    # -- Snapshots -----------------------------------------------------------

    async def get_snapshots_for_group(self, group_id: str) -> list[Snapshot]:
        return [_snapshot_from_row(r) for r in await self._snapshots.list_for_group(group_id)]

    async def list_snapshots(self) -> list[Snapshot]:
        return [_snapshot_from_row(r) for r in await self._snapshots.list_all()]

    async def get_snapshot(self, snapshot_id: str) -> Snapshot | None:
        row = await self._snapshots.get(snapshot_id)
        return _snapshot_from_row(row) if row is not None else None

    async def add_snapshot(self, snapshot: Snapshot) -> Snapshot:
        await self._snapshots.create(_snapshot_to_record(snapshot))
        return snapshot

    async def update_snapshot_files(self, snapshot_id: str, database: str, files: list[str]) -> None:
        row = await self._snapshots.get(snapshot_id)
        if row is None:
            return
        entries = []
        for entry in row.database_snapshots or []:
            entry = dict(entry)
            if entry.get("database") == database:
                entry["files"] = list(files)
            entries.append(entry)
        await self._snapshots.update_database_snapshots(snapshot_id, entries)

    async def delete_snapshot(self, snapshot_id: str) -> bool:
        return await self._snapshots.delete(snapshot_id)

    async def delete_group_snapshots(self, group_id: str) -> int:
        return await self._snapshots.delete_for_group(group_id)

    async def delete_all_snapshots(self) -> int:
        return await self._snapshots.delete_all()

    # -- History -------------------------------------------------------------

    async def add_history_entry(self, entry: HistoryEntry) -> HistoryEntry:
        record = entry.model_dump(mode="json", exclude={"id", "timestamp"})
        record["timestamp"] = entry.timestamp
        row = await self._history.append(record)
        settings = await self.get_settings()
        await self._history.trim(settings.max_history_entries)
        return entry.model_copy(update={"id": row.id})

    async def list_history(self, limit: int | None = None) -> list[HistoryEntry]:
        return [_history_from_row(r) for r in await self._history.list_recent(limit)]

    async def clear_history(self) -> int:
        return await self._history.clear()

    # -- Settings and profiles ----------------------------------------------

    async def get_settings(self) -> Settings:
        data = await self._settings.get()
        return Settings.model_validate(data) if data else Settings()

    async def save_settings(self, settings: Settings) -> Settings:
        await self._settings.save(settings.model_dump(mode="json"))
        return settings

    async def get_active_profile(self) -> Profile | None:
        row = await self._profiles.get_active()
        return _profile_from_row(row) if row is not None else None

    async def save_profile(self, profile: Profile) -> Profile:
        record = profile.model_dump(exclude={"password"})
        record["password"] = profile.password.get_secret_value()
        row = await self._profiles.upsert(record)
        return _profile_from_row(row)
