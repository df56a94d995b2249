"""Repository classes providing CRUD access to the Rewind metadata tables.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()`` (or relying on the ``get_session`` context manager).
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rewind_core.state.tables import (
    GroupTable,
    HistoryTable,
    ProfileTable,
    SettingsTable,
    SnapshotTable,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# GroupRepository
# ---------------------------------------------------------------------------


class GroupRepository:
    """CRUD operations for the ``groups`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        group_id: str,
        name: str,
        databases: list[str],
        profile_id: str | None = None,
        created_by: str | None = None,
    ) -> GroupTable:
        """Insert a new group row."""
        row = GroupTable(
            id=group_id,
            name=name,
            databases=list(databases),
            profile_id=profile_id,
            created_by=created_by,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, group_id: str) -> GroupTable | None:
        """Fetch a single group by id."""
        stmt = select(GroupTable).where(GroupTable.id == group_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_name(self, name: str, profile_id: str | None) -> GroupTable | None:
        """Fetch a group by its name within *profile_id*."""
        stmt = select(GroupTable).where(GroupTable.name == name)
        if profile_id is None:
            stmt = stmt.where(GroupTable.profile_id.is_(None))
        else:
            stmt = stmt.where(GroupTable.profile_id == profile_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self, profile_id: str | None = None) -> list[GroupTable]:
        """Return groups ordered by name, optionally scoped to one profile."""
        stmt = select(GroupTable).order_by(GroupTable.name)
        if profile_id is not None:
            stmt = stmt.where(GroupTable.profile_id == profile_id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def update(self, group_id: str, name: str, databases: list[str]) -> None:
        """Overwrite a group's name and database list."""
        stmt = update(GroupTable).where(GroupTable.id == group_id).values(name=name, databases=list(databases))
        await self._session.execute(stmt)
        await self._session.flush()

    async def delete(self, group_id: str) -> bool:
        """Delete a group; returns False when it did not exist."""
        stmt = delete(GroupTable).where(GroupTable.id == group_id)
        result = await self._session.execute(stmt)
        await self._session.flush()
        return (result.rowcount or 0) > 0


# ---------------------------------------------------------------------------
# SnapshotRepository
# ---------------------------------------------------------------------------


class SnapshotRepository:
    """CRUD operations for the ``snapshots`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, record: dict[str, Any]) -> SnapshotTable:
        """Insert a snapshot row from a plain dict of column values."""
        row = SnapshotTable(**record)
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, snapshot_id: str) -> SnapshotTable | None:
        """Fetch a snapshot by its unique identifier."""
        stmt = select(SnapshotTable).where(SnapshotTable.id == snapshot_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_group(self, group_id: str) -> list[SnapshotTable]:
        """Snapshots of one group, newest sequence first."""
        stmt = (
            select(SnapshotTable)
            .where(SnapshotTable.group_id == group_id)
            .order_by(SnapshotTable.sequence.desc(), SnapshotTable.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_all(self) -> list[SnapshotTable]:
        stmt = select(SnapshotTable).order_by(SnapshotTable.created_at.desc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def update_database_snapshots(self, snapshot_id: str, database_snapshots: list[dict[str, Any]]) -> None:
        """Replace the per-database JSON payload of one snapshot."""
        stmt = (
            update(SnapshotTable)
            .where(SnapshotTable.id == snapshot_id)
            .values(database_snapshots=list(database_snapshots))
        )
        await self._session.execute(stmt)
        await self._session.flush()

    async def delete(self, snapshot_id: str) -> bool:
        stmt = delete(SnapshotTable).where(SnapshotTable.id == snapshot_id)
        result = await self._session.execute(stmt)
        await self._session.flush()
        return (result.rowcount or 0) > 0

    async def delete_for_group(self, group_id: str) -> int:
        """Delete every snapshot of a group; returns the number of rows removed."""
        stmt = delete(SnapshotTable).where(SnapshotTable.group_id == group_id)
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount or 0

    async def delete_all(self) -> int:
        result = await self._session.execute(delete(SnapshotTable))
        await self._session.flush()
        return result.rowcount or 0


# ---------------------------------------------------------------------------
# HistoryRepository
# ---------------------------------------------------------------------------


class HistoryRepository:
    """Append-only access to the ``history`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(self, record: dict[str, Any]) -> HistoryTable:
        row = HistoryTable(**record)
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_recent(self, limit: int | None = None) -> list[HistoryTable]:
        """Entries newest first."""
        stmt = select(HistoryTable).order_by(HistoryTable.timestamp.desc(), HistoryTable.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def trim(self, keep: int) -> int:
        """Delete all but the newest *keep* entries; returns how many were removed."""
        keep_ids = (
            select(HistoryTable.id)
            .order_by(HistoryTable.timestamp.desc(), HistoryTable.id.desc())
            .limit(keep)
        )
        stmt = delete(HistoryTable).where(HistoryTable.id.not_in(keep_ids))
        result = await self._session.execute(stmt)
        await self._session.flush()
        removed = result.rowcount or 0
        if removed:
            logger.debug("Trimmed %d history entries (keeping %d)", removed, keep)
        return removed

    async def clear(self) -> int:
        result = await self._session.execute(delete(HistoryTable))
        await self._session.flush()
        return result.rowcount or 0


# ---------------------------------------------------------------------------
# SettingsRepository
# ---------------------------------------------------------------------------


class SettingsRepository:
    """Single-row settings document."""

    _ROW_ID = 1

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self) -> dict[str, Any] | None:
        row = await self._session.get(SettingsTable, self._ROW_ID)
        return dict(row.data) if row is not None else None

    async def save(self, data: dict[str, Any]) -> None:
        row = await self._session.get(SettingsTable, self._ROW_ID)
        if row is None:
            self._session.add(SettingsTable(id=self._ROW_ID, data=dict(data)))
        else:
            row.data = dict(data)
        await self._session.flush()


# ---------------------------------------------------------------------------
# ProfileRepository
# ---------------------------------------------------------------------------


class ProfileRepository:
    """Read access to connection profiles plus a minimal upsert."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_active(self) -> ProfileTable | None:
        stmt = select(ProfileTable).where(ProfileTable.is_active.is_(True)).limit(1)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(self, record: dict[str, Any]) -> ProfileTable:
        """Insert or overwrite a profile; activating it deactivates the others."""
        if record.get("is_active"):
            await self._session.execute(
                update(ProfileTable).where(ProfileTable.id != record["id"]).values(is_active=False)
            )
        row = await self._session.get(ProfileTable, record["id"])
        if row is None:
            row = ProfileTable(**record)
            self._session.add(row)
        else:
            for key, value in record.items():
                setattr(row, key, value)
        await self._session.flush()
        return row
