"""Snapshot creation, listing and cleanup.

A snapshot captures every database of a group in list order.  Each database
is attempted independently: a failure on one is recorded in its
:class:`~rewind_core.models.snapshot.DatabaseSnapshot` entry and the loop
moves on, so partial success is a valid end state.  Only a missing group, a
full group or an unreachable engine abort the request.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from rewind_core.engine.base import EngineGateway, EngineSession, SnapshotFile
from rewind_core.engine.config import EngineConfig
from rewind_core.errors import EngineCommandError, EngineUnavailableError, NotFoundError, SnapshotLimitError
from rewind_core.models.group import Group
from rewind_core.models.history import OperationResult, OperationType
from rewind_core.models.results import AdvisoryWarning, CleanupResult, CreateSnapshotResult
from rewind_core.models.snapshot import MAX_SNAPSHOTS_PER_GROUP, DatabaseSnapshot, Snapshot
from rewind_core.naming import (
    default_label,
    derive_artifact_name,
    derive_physical_file_name,
    generate_snapshot_id,
    matches_group_convention,
    next_sequence,
    snapshot_id_from_artifact,
)
from rewind_core.state.store import MetadataStore

from rewind_api.services.history_service import MAX_NAMES_IN_DETAILS, HistoryService

logger = logging.getLogger(__name__)


async def drop_artifacts(
    engine: EngineSession,
    names: list[str],
    step: str,
) -> tuple[list[str], list[AdvisoryWarning]]:
    """Drop each artifact in *names*, collecting failures as advisories."""
    dropped: list[str] = []
    warnings: list[AdvisoryWarning] = []
    for name in names:
        try:
            await engine.drop_snapshot(name)
        except EngineCommandError as exc:
            logger.warning("Could not drop snapshot %s during %s: %s", name, step, exc.message)
            warnings.append(AdvisoryWarning(step=step, target=name, error=exc.message))
        else:
            dropped.append(name)
    return dropped, warnings


class SnapshotService:
    """Create, list and remove snapshots for groups.

    Parameters
    ----------
    store:
        Metadata store for the current request.
    gateway:
        Engine gateway used to open one session per operation.
    config:
        Engine connection settings of the active profile.
    user:
        Identity recorded as ``created_by`` and in history.
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
        self._gateway = gateway
        self._config = config
        self._user = user
        self._history = HistoryService(store, user=user)

    async def _require_group(self, group_id: str) -> Group:
        group = await self._store.get_group(group_id)
        if group is None:
            raise NotFoundError("Group", group_id)
        return group

    # -- Creation ------------------------------------------------------------

    async def create_snapshot(self, group_id: str, label: str = "") -> CreateSnapshotResult:
        """Capture every database of a group and persist the outcome."""
        group = await self._require_group(group_id)
        existing = await self._store.get_snapshots_for_group(group.id)
        if len(existing) >= MAX_SNAPSHOTS_PER_GROUP:
            raise SnapshotLimitError(group.name, MAX_SNAPSHOTS_PER_GROUP)

        sequence = next_sequence(existing)
        display_name = label.strip() or default_label(sequence)

        async with self._gateway.connect(self._config) as engine:
            snapshot = await self.capture(engine, group, display_name, sequence=sequence)

        results = [
            OperationResult(database=ds.database, success=ds.success, error=ds.error)
            for ds in snapshot.database_snapshots
        ]
        succeeded = sum(1 for r in results if r.success)
        await self._history.record(
            OperationType.CREATE_SNAPSHOT,
            {
                "group_id": group.id,
                "group_name": group.name,
                "snapshot_id": snapshot.id,
                "snapshot_name": snapshot.display_name,
                "sequence": snapshot.sequence,
                "succeeded": succeeded,
                "failed": len(results) - succeeded,
            },
            results,
        )
        logger.info(
            "Snapshot %s of group %s created (%d/%d databases)",
            snapshot.id,
            group.name,
            succeeded,
            len(results),
        )
        return CreateSnapshotResult(success=True, snapshot=snapshot, results=results)

    async def capture(
        self,
        engine: EngineSession,
        group: Group,
        display_name: str,
        *,
        sequence: int,
        is_automatic: bool = False,
    ) -> Snapshot:
        """Snapshot each database of *group* over *engine* and store the result.

        Writes no history; callers record the action they are part of.
        """
        now = datetime.now(UTC)
        snapshot_id = generate_snapshot_id(group.name, display_name, now)
        entries = [await self._capture_database(engine, snapshot_id, database) for database in group.databases]
        snapshot = Snapshot(
            id=snapshot_id,
            group_id=group.id,
            group_name=group.name,
            display_name=display_name,
            sequence=sequence,
            created_at=now,
            created_by=self._user,
            is_automatic=is_automatic,
            database_snapshots=entries,
        )
        return await self._store.add_snapshot(snapshot)

    async def _capture_database(self, engine: EngineSession, snapshot_id: str, database: str) -> DatabaseSnapshot:
        try:
            data_files = await engine.list_data_files(database)
        except EngineCommandError as exc:
            logger.warning("Listing data files of %s failed: %s", database, exc.message)
            return DatabaseSnapshot(database=database, success=False, error=exc.message)
        if not data_files:
            return DatabaseSnapshot(
                database=database,
                success=False,
                error=f"No data files found for database '{database}'",
            )

        artifact = derive_artifact_name(snapshot_id, database)
        files = [
            SnapshotFile(
                logical_name=df.logical_name,
                physical_name=derive_physical_file_name(self._config.snapshot_path, artifact, df.logical_name),
            )
            for df in data_files
        ]
        try:
            await engine.create_snapshot(artifact, database, files)
        except EngineCommandError as exc:
            logger.warning("Snapshot of %s failed: %s", database, exc.message)
            return DatabaseSnapshot(database=database, success=False, error=exc.message)
        return DatabaseSnapshot(
            database=database,
            snapshot_name=artifact,
            files=[f.physical_name for f in files],
            success=True,
        )

    # -- Listing -------------------------------------------------------------

    async def list_group_snapshots(self, group_id: str) -> list[dict[str, Any]]:
        """Snapshots of a group, newest sequence first, plus orphaned checkpoints.

        Artifacts found on the engine that follow this group's naming
        convention and belong to one of its databases, but that no metadata
        record knows about, are appended as synthetic entries flagged
        ``is_orphaned``.  These are typically checkpoints whose metadata
        write was lost.
        """
        group = await self._require_group(group_id)
        snapshots = await self._store.get_snapshots_for_group(group.id)
        listed: list[dict[str, Any]] = [{**s.model_dump(mode="json"), "is_orphaned": False} for s in snapshots]

        known: set[str] = set()
        for snap in snapshots:
            known.update(snap.artifact_names)

        try:
            async with self._gateway.connect(self._config) as engine:
                artifacts = await engine.list_snapshot_artifacts()
        except (EngineUnavailableError, EngineCommandError) as exc:
            logger.warning("Listing engine snapshots for group %s failed: %s", group.name, exc.message)
            return listed

        orphans: dict[str, list[Any]] = {}
        for artifact in artifacts:
            if artifact.name in known or artifact.source_database not in group.databases:
                continue
            if not matches_group_convention(artifact.name, group.name):
                continue
            snapshot_id = snapshot_id_from_artifact(artifact.name, artifact.source_database)
            if snapshot_id is not None:
                orphans.setdefault(snapshot_id, []).append(artifact)

        for snapshot_id, found in orphans.items():
            created = min((a.create_date for a in found if a.create_date), default=None)
            listed.append(
                {
                    "id": snapshot_id,
                    "group_id": group.id,
                    "group_name": group.name,
                    "display_name": "Orphaned checkpoint",
                    "sequence": 0,
                    "created_at": created.isoformat() if created else None,
                    "created_by": None,
                    "is_automatic": True,
                    "is_orphaned": True,
                    "database_snapshots": [
                        {
                            "database": a.source_database,
                            "snapshot_name": a.name,
                            "files": [],
                            "success": True,
                            "error": None,
                        }
                        for a in found
                    ],
                }
            )
        if orphans:
            logger.info("Group %s has %d orphaned snapshot(s) on the engine", group.name, len(orphans))
        return listed

    async def get_snapshot(self, snapshot_id: str) -> Snapshot:
        snapshot = await self._store.get_snapshot(snapshot_id)
        if snapshot is None:
            raise NotFoundError("Snapshot", snapshot_id)
        return snapshot

    # -- Removal -------------------------------------------------------------

    async def delete_snapshot(self, snapshot_id: str) -> CleanupResult:
        """Drop one snapshot's artifacts, then its metadata."""
        snapshot = await self.get_snapshot(snapshot_id)
        async with self._gateway.connect(self._config) as engine:
            dropped, warnings = await drop_artifacts(engine, sorted(snapshot.artifact_names), "delete_snapshot")
        await self._store.delete_snapshot(snapshot.id)
        await self._history.record(
            OperationType.DELETE_SNAPSHOT,
            {
                "snapshot_id": snapshot.id,
                "snapshot_name": snapshot.display_name,
                "group_id": snapshot.group_id,
                "dropped": dropped,
                "warnings": len(warnings),
            },
        )
        return CleanupResult(dropped=dropped, deleted_snapshots=1, warnings=warnings)

    async def cleanup_snapshot(self, snapshot_id: str) -> CleanupResult:
        """Force-drop a known-invalid snapshot's artifacts without restoring.

        Unlike :meth:`delete_snapshot` this also sweeps engine artifacts that
        carry the snapshot id but are missing from its metadata entries.
        """
        snapshot = await self.get_snapshot(snapshot_id)
        async with self._gateway.connect(self._config) as engine:
            live = await engine.list_snapshot_artifacts()
            targets = set(snapshot.artifact_names)
            for artifact in live:
                if artifact.source_database and artifact.name.startswith(f"{snapshot.id}_"):
                    targets.add(artifact.name)
            dropped, warnings = await drop_artifacts(engine, sorted(targets), "cleanup_snapshot")
        await self._store.delete_snapshot(snapshot.id)
        await self._history.record(
            OperationType.CLEANUP_SNAPSHOT,
            {
                "snapshot_id": snapshot.id,
                "snapshot_name": snapshot.display_name,
                "group_id": snapshot.group_id,
                "dropped": dropped,
                "warnings": len(warnings),
            },
        )
        return CleanupResult(dropped=dropped, deleted_snapshots=1, warnings=warnings)

    async def cleanup_all(self) -> CleanupResult:
        """Drop every snapshot artifact on the engine and clear snapshot metadata."""
        async with self._gateway.connect(self._config) as engine:
            live = await engine.list_snapshot_artifacts()
            dropped, warnings = await drop_artifacts(engine, [a.name for a in live], "cleanup_all")
        deleted = await self._store.delete_all_snapshots()
        await self._history.record(
            OperationType.CLEANUP_ALL,
            {
                "dropped_count": len(dropped),
                "dropped": dropped[:MAX_NAMES_IN_DETAILS],
                "deleted_snapshots": deleted,
                "warnings": len(warnings),
            },
        )
        logger.info("Dropped %d snapshot artifact(s) system-wide", len(dropped))
        return CleanupResult(dropped=dropped, deleted_snapshots=deleted, warnings=warnings)

    async def delete_group_snapshots(self, group: Group) -> CleanupResult:
        """Drop every snapshot of *group* from the engine and metadata.

        Writes no history; the group operation that triggers it does.
        """
        snapshots = await self._store.get_snapshots_for_group(group.id)
        names = sorted({name for snap in snapshots for name in snap.artifact_names})
        dropped: list[str] = []
        warnings: list[AdvisoryWarning] = []
        if names:
            async with self._gateway.connect(self._config) as engine:
                dropped, warnings = await drop_artifacts(engine, names, "group_snapshot_delete")
        deleted = await self._store.delete_group_snapshots(group.id)
        return CleanupResult(dropped=dropped, deleted_snapshots=deleted, warnings=warnings)
