"""Rollback of a group to one of its snapshots.

The sequence is fixed:

1. locate the target snapshot and its group;
2. purge sibling snapshots of the target's source databases;
3. restore each database (kill sessions, single-user, restore, multi-user);
4. purge again, including the consumed target artifacts;
5. delete every snapshot record of the group;
6. optionally capture an automatic checkpoint (sequence 1);
7. record one history entry.

``RESTORE DATABASE ... FROM DATABASE_SNAPSHOT`` replaces the live database
in place, and SQL Server refuses it while more than one snapshot of the
database exists, which is why step 2 must run first.  Once a restore has
started for a database there is no abort point: it either completes or is
recorded in ``failed_rollbacks``.

At most one rollback per group runs at a time within this process.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from rewind_core.engine.base import EngineGateway, EngineSession, SnapshotArtifact
from rewind_core.engine.config import EngineConfig
from rewind_core.errors import EngineCommandError, NotFoundError, RewindError, RollbackInProgressError
from rewind_core.models.group import Group
from rewind_core.models.history import OperationResult, OperationType
from rewind_core.models.results import AdvisoryWarning, FailedRollback, RollbackResult
from rewind_core.models.snapshot import DatabaseSnapshot, Snapshot
from rewind_core.naming import AUTOMATIC_CHECKPOINT_LABEL, matches_managed_convention, resolve_group_name
from rewind_core.state.store import MetadataStore

from rewind_api.services.history_service import HistoryService
from rewind_api.services.snapshot_service import SnapshotService, drop_artifacts

logger = logging.getLogger(__name__)

ARTIFACT_MISSING_ERROR = "Snapshot artifact not found on the engine"

# Group ids with a rollback currently in flight.
_active_rollbacks: set[str] = set()


@contextmanager
def _rollback_slot(group_id: str) -> Iterator[None]:
    if group_id in _active_rollbacks:
        raise RollbackInProgressError(group_id)
    _active_rollbacks.add(group_id)
    try:
        yield
    finally:
        _active_rollbacks.discard(group_id)


def _purge_candidates(
    artifacts: list[SnapshotArtifact],
    source_databases: set[str],
    exclude: set[str],
) -> list[str]:
    """Managed-convention artifacts of *source_databases*, minus *exclude*.

    Matches any orchestrator-shaped artifact of these databases, not only the
    target group's, so snapshots whose metadata was lost are cleared too.
    """
    return [
        a.name
        for a in artifacts
        if a.source_database in source_databases and matches_managed_convention(a.name) and a.name not in exclude
    ]


class RollbackService:
    """Restore a group's databases from one of its snapshots.

    Parameters
    ----------
    store:
        Metadata store for the current request.
    gateway:
        Engine gateway; one session is used for the whole rollback.
    config:
        Engine connection settings of the active profile.
    user:
        Identity recorded in history and on the checkpoint.
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
        self._history = HistoryService(store, user=user)
        self._snapshots = SnapshotService(store, gateway, config, user=user)

    async def rollback_to_snapshot(self, snapshot_id: str) -> RollbackResult:
        """Roll the target snapshot's group back to it.

        Raises
        ------
        NotFoundError
            When the snapshot or its group does not exist.
        RollbackInProgressError
            When another rollback of the same group is still running.
        EngineUnavailableError
            When the engine cannot be reached.
        EngineCommandError
            When the engine fails outside the per-database and best-effort
            steps.  The aborted attempt is still recorded in history.
        """
        target = await self._store.get_snapshot(snapshot_id)
        if target is None:
            raise NotFoundError("Snapshot", snapshot_id)
        group = await self._store.get_group(target.group_id)
        if group is None:
            raise NotFoundError("Group", target.group_id)

        result = RollbackResult(
            success=False,
            snapshot_id=target.id,
            group_id=group.id,
            group_name=resolve_group_name(target, group),
        )
        with _rollback_slot(group.id):
            try:
                async with self._gateway.connect(self._config) as engine:
                    await self._run(engine, target, group, result)
            except RewindError as exc:
                # Restores may already have run.
                logger.error("Rollback to %s aborted: %s", target.id, exc.message)
                result.success = False
                result.error = exc.message
                await self._record(target, result)
                raise
        await self._record(target, result)
        return result

    async def _run(self, engine: EngineSession, target: Snapshot, group: Group, result: RollbackResult) -> None:
        group_name = result.group_name
        source_databases = set(target.source_databases)
        own = target.artifact_names

        # Sibling purge.
        live = await engine.list_snapshot_artifacts()
        siblings = _purge_candidates(live, source_databases, exclude=own)
        dropped, warnings = await drop_artifacts(engine, siblings, "sibling_purge")
        result.dropped_siblings.extend(dropped)
        result.warnings.extend(warnings)
        if siblings:
            logger.info(
                "Purged %d/%d sibling snapshot(s) before rollback of %s", len(dropped), len(siblings), group_name
            )

        # Restore.
        live_names = {a.name for a in live}
        restorable = target.restorable
        present = [ds for ds in restorable if ds.snapshot_name in live_names]
        for ds in restorable:
            if ds.snapshot_name not in live_names:
                result.failed_rollbacks.append(FailedRollback(database=ds.database, error=ARTIFACT_MISSING_ERROR))
        if not present:
            result.error = (
                f"Snapshot {target.id} can no longer be restored: its engine artifacts are missing. "
                "Clean it up and take a new snapshot."
            )
            logger.error("Rollback to %s aborted: no artifacts left on the engine", target.id)
            return

        for ds in present:
            if await self._restore_database(engine, ds, result):
                result.rolled_back_databases.append(ds.database)

        if not result.rolled_back_databases:
            result.error = "No databases were restored"
            logger.error("Rollback to %s restored no databases", target.id)
            return

        # Second purge, now including the consumed target artifacts.
        try:
            live = await engine.list_snapshot_artifacts()
            leftovers = _purge_candidates(live, source_databases, exclude=set())
        except EngineCommandError as exc:
            logger.warning("Could not re-list snapshots after rollback of %s: %s", group_name, exc.message)
            result.warnings.append(AdvisoryWarning(step="post_restore_purge", target=group_name, error=exc.message))
            leftovers = sorted(ds.snapshot_name for ds in present if ds.snapshot_name)
        dropped, warnings = await drop_artifacts(engine, leftovers, "post_restore_purge")
        result.dropped_siblings.extend(name for name in dropped if name not in own)
        result.warnings.extend(warnings)

        # Metadata cutover.
        result.deleted_snapshots = await self._store.delete_group_snapshots(group.id)
        result.success = True

        settings = await self._store.get_settings()
        if settings.auto_create_checkpoint:
            await self._create_checkpoint(engine, group, result)

        logger.info(
            "Rolled back %s to %s: %d restored, %d failed",
            group_name,
            target.id,
            len(result.rolled_back_databases),
            len(result.failed_rollbacks),
        )

    async def _restore_database(self, engine: EngineSession, ds: DatabaseSnapshot, result: RollbackResult) -> bool:
        database = ds.database
        artifact = ds.snapshot_name or ""
        try:
            killed = await engine.kill_connections(database)
            if killed:
                logger.info("Killed %d session(s) on %s", killed, database)
        except EngineCommandError as exc:
            result.warnings.append(AdvisoryWarning(step="kill_connections", target=database, error=exc.message))

        restored = False
        try:
            await engine.set_single_user(database)
            await engine.restore_from_snapshot(database, artifact)
            restored = True
        except EngineCommandError as exc:
            logger.error("Restore of %s from %s failed: %s", database, artifact, exc.message)
            result.failed_rollbacks.append(FailedRollback(database=database, error=exc.message))

        try:
            await engine.set_multi_user(database)
        except EngineCommandError as exc:
            logger.warning("Could not return %s to multi-user mode: %s", database, exc.message)
            result.warnings.append(AdvisoryWarning(step="multi_user", target=database, error=exc.message))
        return restored

    async def _create_checkpoint(self, engine: EngineSession, group: Group, result: RollbackResult) -> None:
        try:
            checkpoint = await self._snapshots.capture(
                engine,
                group,
                AUTOMATIC_CHECKPOINT_LABEL,
                sequence=1,
                is_automatic=True,
            )
        except RewindError as exc:
            logger.warning("Automatic checkpoint for %s failed: %s", group.name, exc.message)
            result.checkpoint_error = exc.message
            return
        result.checkpoint = checkpoint
        result.checkpoint_created = bool(checkpoint.restorable)
        if not result.checkpoint_created:
            errors = "; ".join(f"{ds.database}: {ds.error}" for ds in checkpoint.database_snapshots)
            result.checkpoint_error = f"Checkpoint capture failed for every database ({errors})"

    async def _record(self, target: Snapshot, result: RollbackResult) -> None:
        results = [OperationResult(database=db, success=True) for db in result.rolled_back_databases]
        results.extend(
            OperationResult(database=f.database, success=False, error=f.error) for f in result.failed_rollbacks
        )
        await self._history.record(
            OperationType.ROLLBACK,
            {
                "snapshot_id": target.id,
                "snapshot_name": target.display_name,
                "group_id": result.group_id,
                "group_name": result.group_name,
                "success": result.success,
                "error": result.error,
                "rolled_back_databases": result.rolled_back_databases,
                "dropped_siblings": len(result.dropped_siblings),
                "deleted_snapshots": result.deleted_snapshots,
                "checkpoint_created": result.checkpoint_created,
                "checkpoint_id": result.checkpoint.id if result.checkpoint else None,
                "checkpoint_error": result.checkpoint_error,
                "warnings": len(result.warnings),
            },
            results,
        )
