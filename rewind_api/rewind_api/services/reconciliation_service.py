"""Reconcile orchestrator metadata against engine and on-disk state.

The metadata store records what the orchestrator *believes* exists.  This
service compares that belief with reality:

* :meth:`ReconciliationService.reconcile_orphans` drops snapshot artifacts
  that can no longer be read (backing files gone or corrupt);
* :meth:`ReconciliationService.unmanaged_report` lists readable artifacts
  no metadata record references, without touching them;
* :meth:`ReconciliationService.files_to_cleanup` lists ``.ss`` files on the
  engine host that no metadata record references;
* :meth:`ReconciliationService.verify_group` reports divergence for one
  group in both directions.
"""

from __future__ import annotations

import logging
from typing import Any

from rewind_core.engine.base import EngineGateway
from rewind_core.engine.config import EngineConfig
from rewind_core.errors import EngineCommandError, FileApiError, NotFoundError
from rewind_core.models.history import OperationType
from rewind_core.models.results import AdvisoryWarning, ReconcileResult
from rewind_core.models.snapshot import Snapshot
from rewind_core.naming import (
    SNAPSHOT_FILE_EXTENSION,
    derive_physical_file_name,
    file_basename,
    matches_group_convention,
    path_separator,
)
from rewind_core.state.store import MetadataStore

from rewind_api.services.file_api_client import FileApiClient, RemoteFile
from rewind_api.services.history_service import MAX_NAMES_IN_DETAILS, HistoryService

logger = logging.getLogger(__name__)

_MB = 1024 * 1024
_GB = 1024 * _MB


def _round2(value: float) -> float:
    return round(value, 2)


class ReconciliationService:
    """Detect and repair divergence between metadata and the engine.

    Parameters
    ----------
    store:
        Metadata store for the current request.
    gateway:
        Engine gateway.
    config:
        Engine connection settings of the active profile.
    file_api:
        Client for the file-management API; file operations raise
        :class:`FileApiError` when it is not configured.
    user:
        Identity recorded in history.
    """

    def __init__(
        self,
        store: MetadataStore,
        gateway: EngineGateway,
        config: EngineConfig,
        *,
        file_api: FileApiClient | None = None,
        user: str | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._config = config
        self._file_api = file_api
        self._history = HistoryService(store, user=user)

    # -- Orphan sweep --------------------------------------------------------

    async def find_orphans(self) -> list[str]:
        """Names of snapshot artifacts that fail a trivial read."""
        orphans: list[str] = []
        async with self._gateway.connect(self._config) as engine:
            for artifact in await engine.list_snapshot_artifacts():
                try:
                    await engine.probe_snapshot(artifact.name)
                except EngineCommandError as exc:
                    logger.info("Snapshot %s is unreadable: %s", artifact.name, exc.message)
                    orphans.append(artifact.name)
        return orphans

    async def reconcile_orphans(self, *, record_empty: bool = True) -> ReconcileResult:
        """Drop every unreadable snapshot artifact.

        Readable artifacts are left alone even when metadata does not know
        them.  Safe to run repeatedly: a second run with no engine changes
        cleans nothing.  Each run is recorded in history; pass
        ``record_empty=False`` to skip the entry when nothing was found.
        """
        result = ReconcileResult()
        async with self._gateway.connect(self._config) as engine:
            for artifact in await engine.list_snapshot_artifacts():
                try:
                    await engine.probe_snapshot(artifact.name)
                    continue
                except EngineCommandError as exc:
                    logger.warning("Orphaned snapshot %s detected: %s", artifact.name, exc.message)
                try:
                    await engine.drop_snapshot(artifact.name)
                except EngineCommandError as exc:
                    logger.warning("Could not drop orphaned snapshot %s: %s", artifact.name, exc.message)
                    result.warnings.append(
                        AdvisoryWarning(step="orphan_drop", target=artifact.name, error=exc.message)
                    )
                    continue
                result.orphan_names.append(artifact.name)
        result.cleaned_count = len(result.orphan_names)

        if result.cleaned_count or result.warnings or record_empty:
            await self._history.record(
                OperationType.ORPHAN_CLEANUP,
                {
                    "deleted_count": result.cleaned_count,
                    "deleted_snapshots": result.orphan_names[:MAX_NAMES_IN_DETAILS],
                    "warnings": len(result.warnings),
                },
            )
            logger.info("Orphan sweep dropped %d snapshot(s)", result.cleaned_count)
        return result

    # -- Reports -------------------------------------------------------------

    async def _managed_artifacts(self) -> set[str]:
        managed: set[str] = set()
        for snapshot in await self._store.list_snapshots():
            managed.update(snapshot.artifact_names)
        return managed

    async def unmanaged_report(self) -> dict[str, Any]:
        """Live artifacts no successful metadata entry references."""
        managed = await self._managed_artifacts()
        async with self._gateway.connect(self._config) as engine:
            artifacts = await engine.list_snapshot_artifacts()
        unmanaged = [a for a in artifacts if a.name not in managed]
        return {
            "unmanaged_count": len(unmanaged),
            "unmanaged_snapshots": [
                {
                    "name": a.name,
                    "source_database": a.source_database,
                    "create_date": a.create_date.isoformat() if a.create_date else None,
                    "state": a.state,
                }
                for a in unmanaged
            ],
        }

    async def verify_group(self, group_id: str) -> dict[str, Any]:
        """Compare one group's metadata with the engine in both directions."""
        group = await self._store.get_group(group_id)
        if group is None:
            raise NotFoundError("Group", group_id)
        expected: set[str] = set()
        for snapshot in await self._store.get_snapshots_for_group(group.id):
            expected.update(snapshot.artifact_names)
        async with self._gateway.connect(self._config) as engine:
            artifacts = await engine.list_snapshot_artifacts()
        live = {a.name for a in artifacts}
        orphaned = sorted(
            a.name
            for a in artifacts
            if a.name not in expected
            and a.source_database in group.databases
            and matches_group_convention(a.name, group.name)
        )
        stale = sorted(expected - live)
        return {
            "group_id": group.id,
            "group_name": group.name,
            "consistent": not orphaned and not stale,
            "stale_metadata": stale,
            "orphaned": orphaned,
        }

    # -- Files ---------------------------------------------------------------

    def _require_file_api(self) -> FileApiClient:
        if self._file_api is None:
            raise FileApiError("File API is not configured (set REWIND_FILE_API_URL)")
        return self._file_api

    async def _backfill_files(self, snapshots: list[Snapshot]) -> set[str]:
        """Record physical files for restorable entries stored without any.

        The file list is rebuilt from the source database's current data
        files.  Returns the artifact names that could not be backfilled; their
        files are still treated as referenced.
        """
        missing = [(snap, ds) for snap in snapshots for ds in snap.restorable if not ds.files]
        if not missing:
            return set()
        unresolved: set[str] = set()
        async with self._gateway.connect(self._config) as engine:
            for snap, ds in missing:
                artifact = ds.snapshot_name or ""
                try:
                    data_files = await engine.list_data_files(ds.database)
                except EngineCommandError as exc:
                    logger.warning("Cannot backfill files of %s: %s", artifact, exc.message)
                    unresolved.add(artifact)
                    continue
                files = [
                    derive_physical_file_name(self._config.snapshot_path, artifact, df.logical_name)
                    for df in data_files
                ]
                await self._store.update_snapshot_files(snap.id, ds.database, files)
                ds.files = files
                logger.info("Backfilled %d file(s) for %s", len(files), artifact)
        return unresolved

    async def _unreferenced_files(self, group_id: str | None) -> list[RemoteFile]:
        client = self._require_file_api()
        listed = await client.list(self._config.snapshot_path, pattern=f"*{SNAPSHOT_FILE_EXTENSION}")

        snapshots = await self._store.list_snapshots()
        unresolved = await self._backfill_files(snapshots)
        referenced: set[str] = set()
        for snapshot in snapshots:
            referenced.update(file_basename(path) for path in snapshot.physical_files)

        group_name: str | None = None
        if group_id is not None:
            group = await self._store.get_group(group_id)
            if group is None:
                raise NotFoundError("Group", group_id)
            group_name = group.name

        candidates = []
        for remote in listed:
            name = file_basename(remote.name)
            if not name.endswith(SNAPSHOT_FILE_EXTENSION) or name in referenced:
                continue
            if any(name.startswith(f"{artifact}_") for artifact in unresolved):
                continue
            if group_name is not None and not matches_group_convention(name, group_name):
                continue
            candidates.append(RemoteFile(name=name, size_bytes=remote.size_bytes))
        return candidates

    async def files_to_cleanup(self, group_id: str | None = None) -> dict[str, Any]:
        """Snapshot files on disk that no metadata record references.

        Read-only: nothing is deleted.  Pass *group_id* to restrict the
        report to files following that group's naming convention.
        """
        files = await self._unreferenced_files(group_id)
        base = self._config.snapshot_path.rstrip("\\/")
        sep = path_separator(self._config.snapshot_path)
        total = sum(f.size_bytes for f in files)
        return {
            "snapshot_path": self._config.snapshot_path,
            "files_to_cleanup": [
                {
                    "file_name": f.name,
                    "full_path": f"{base}{sep}{f.name}",
                    "size_bytes": f.size_bytes,
                    "size_mb": _round2(f.size_bytes / _MB),
                }
                for f in files
            ],
            "total_files": len(files),
            "total_size_bytes": total,
            "total_size_mb": _round2(total / _MB),
            "total_size_gb": _round2(total / _GB),
        }

    async def cleanup_files(self) -> dict[str, Any]:
        """Delete every unreferenced snapshot file through the file API."""
        client = self._require_file_api()
        files = await self._unreferenced_files(None)
        deleted: list[str] = []
        errors: list[dict[str, str]] = []
        for remote in files:
            try:
                await client.delete(remote.name, self._config.snapshot_path)
            except FileApiError as exc:
                errors.append({"file": remote.name, "error": exc.message})
            else:
                deleted.append(remote.name)

        await self._history.record(
            OperationType.FILE_CLEANUP,
            {
                "deleted_count": len(deleted),
                "deleted_files": deleted[:MAX_NAMES_IN_DETAILS],
                "errors": len(errors),
            },
        )
        return {
            "success": True,
            "deleted_files": deleted,
            "errors": errors,
            "total_deleted": len(deleted),
            "total_errors": len(errors),
            "message": f"Cleanup completed: {len(deleted)} files deleted, {len(errors)} errors",
        }
