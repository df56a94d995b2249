"""Group management and the mutation guard.

Renaming a group or changing its database set invalidates every live
snapshot of it: artifact names embed the normalised group name, and a
snapshot of a different database set cannot restore the new one.  Such
edits are refused until the caller confirms that the snapshots may be
destroyed.  Deleting a group always destroys its snapshots.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from rewind_core.engine.base import EngineGateway
from rewind_core.engine.config import EngineConfig
from rewind_core.errors import ConfirmationRequiredError, ConflictError, NotFoundError, PreconditionFailedError
from rewind_core.models.group import Group
from rewind_core.models.history import OperationType
from rewind_core.models.results import CleanupResult, GuardDecision
from rewind_core.state.store import MetadataStore

from rewind_api.services.history_service import HistoryService
from rewind_api.services.snapshot_service import SnapshotService

logger = logging.getLogger(__name__)


def group_changed(group: Group, new_name: str, new_databases: list[str]) -> bool:
    """True when the name or the (order-insensitive) database set differs."""
    return group.name != new_name or sorted(set(group.databases)) != sorted(set(new_databases))


def _dedupe(databases: list[str]) -> list[str]:
    """Strip blanks and duplicates, keeping first-seen order.

    Raises :class:`PreconditionFailedError` when nothing is left.
    """
    seen: dict[str, None] = {}
    for db in databases:
        name = db.strip()
        if name:
            seen.setdefault(name, None)
    if not seen:
        raise PreconditionFailedError("A group needs at least one database")
    return list(seen)


class GroupService:
    """CRUD for groups with snapshot-invalidation checks.

    Parameters
    ----------
    store:
        Metadata store for the current request.
    gateway:
        Engine gateway, used to drop snapshot artifacts.
    config:
        Engine connection settings of the active profile.
    user:
        Identity recorded on new groups and in history.
    """

    def __init__(
        self,
        store: MetadataStore,
        gateway: EngineGateway,
        config: EngineConfig,
        *,
        user: str | None = None,
    ) -> None:
        self._store = store
        self._config = config
        self._user = user
        self._history = HistoryService(store, user=user)
        self._snapshots = SnapshotService(store, gateway, config, user=user)

    async def get_group(self, group_id: str) -> Group:
        group = await self._store.get_group(group_id)
        if group is None:
            raise NotFoundError("Group", group_id)
        return group

    async def list_groups(self) -> list[dict[str, Any]]:
        """Groups of the active profile, each with its live snapshot count."""
        groups = await self._store.list_groups(self._config.profile_id)
        listed = []
        for group in groups:
            snapshots = await self._store.get_snapshots_for_group(group.id)
            listed.append({**group.model_dump(mode="json"), "snapshot_count": len(snapshots)})
        return listed

    async def create_group(self, name: str, databases: list[str]) -> Group:
        group = Group(
            id=str(uuid.uuid4()),
            name=name.strip(),
            databases=_dedupe(databases),
            profile_id=self._config.profile_id,
            created_by=self._user,
        )
        created = await self._store.add_group(group)
        await self._history.record(
            OperationType.CREATE_GROUP,
            {"group_id": created.id, "group_name": created.name, "databases": created.databases},
        )
        logger.info("Created group %s with %d database(s)", created.name, len(created.databases))
        return created

    async def validate_group_mutation(
        self,
        group: Group,
        new_name: str,
        new_databases: list[str],
        confirm_delete: bool,
    ) -> tuple[GuardDecision, CleanupResult]:
        """Decide whether *group* may become (*new_name*, *new_databases*).

        Returns
        -------
        tuple[GuardDecision, CleanupResult]
            ``OK`` when nothing would be invalidated, ``SNAPSHOTS_DELETED``
            when the caller confirmed and the group's snapshots were removed.
            The cleanup result lists dropped artifacts and advisory drop
            failures; it is empty for ``OK``.

        Raises
        ------
        ConfirmationRequiredError
            When live snapshots would be invalidated and *confirm_delete* is
            false.  Carries the snapshot and database counts.
        """
        if not group_changed(group, new_name, new_databases):
            return GuardDecision.OK, CleanupResult()
        snapshots = await self._store.get_snapshots_for_group(group.id)
        if not snapshots:
            return GuardDecision.OK, CleanupResult()
        if not confirm_delete:
            raise ConfirmationRequiredError(len(snapshots), len(group.databases))
        cleanup = await self._snapshots.delete_group_snapshots(group)
        logger.info(
            "Deleted %d snapshot(s) of %s before group edit (%d advisory failure(s))",
            cleanup.deleted_snapshots,
            group.name,
            len(cleanup.warnings),
        )
        return GuardDecision.SNAPSHOTS_DELETED, cleanup

    async def update_group(
        self,
        group_id: str,
        name: str,
        databases: list[str],
        *,
        confirm_delete: bool = False,
    ) -> dict[str, Any]:
        group = await self.get_group(group_id)
        new_name = name.strip()
        new_databases = _dedupe(databases)
        if new_name != group.name:
            peers = await self._store.list_groups(group.profile_id)
            if any(g.name == new_name and g.profile_id == group.profile_id for g in peers):
                raise ConflictError(f"A group named '{new_name}' already exists")
        _, cleanup = await self.validate_group_mutation(group, new_name, new_databases, confirm_delete)

        updated = await self._store.update_group(
            group.model_copy(update={"name": new_name, "databases": new_databases, "updated_at": datetime.now(UTC)})
        )
        await self._history.record(
            OperationType.UPDATE_GROUP,
            {
                "group_id": updated.id,
                "old_name": group.name,
                "group_name": updated.name,
                "databases": updated.databases,
                "snapshots_deleted": cleanup.deleted_snapshots,
                "dropped": cleanup.dropped,
                "warnings": len(cleanup.warnings),
            },
        )
        return {
            "group": updated.model_dump(mode="json"),
            "snapshots_deleted": cleanup.deleted_snapshots,
            "warnings": [w.model_dump() for w in cleanup.warnings],
        }

    async def delete_group(self, group_id: str) -> dict[str, Any]:
        """Delete a group and, unconditionally, all of its snapshots."""
        group = await self.get_group(group_id)
        cleanup = await self._snapshots.delete_group_snapshots(group)
        await self._store.delete_group(group.id)
        await self._history.record(
            OperationType.DELETE_GROUP,
            {
                "group_id": group.id,
                "group_name": group.name,
                "snapshots_deleted": cleanup.deleted_snapshots,
                "dropped": cleanup.dropped,
                "warnings": len(cleanup.warnings),
            },
        )
        logger.info("Deleted group %s (%d snapshot(s))", group.name, cleanup.deleted_snapshots)
        return {
            "success": True,
            "snapshots_deleted": cleanup.deleted_snapshots,
            "warnings": [w.model_dump() for w in cleanup.warnings],
        }
