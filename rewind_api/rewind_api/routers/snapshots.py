"""Snapshot removal, rollback and reconciliation endpoints.

Static paths (``/cleanup``, ``/reconcile``, ...) are registered before the
``/{snapshot_id}`` routes so they are never captured as identifiers.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse
from rewind_core.models.results import CleanupResult, ReconcileResult, RollbackResult

from rewind_api.dependencies import EngineConfigDep, FileApiDep, GatewayDep, StoreDep, UserDep
from rewind_api.services.reconciliation_service import ReconciliationService
from rewind_api.services.rollback_service import RollbackService
from rewind_api.services.snapshot_service import SnapshotService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/snapshots", tags=["snapshots"])


# ---------------------------------------------------------------------------
# System-wide operations
# ---------------------------------------------------------------------------


@router.post("/cleanup")
async def cleanup_all(
    store: StoreDep,
    gateway: GatewayDep,
    config: EngineConfigDep,
    user: UserDep,
) -> CleanupResult:
    """Drop every snapshot artifact on the engine and clear snapshot metadata."""
    service = SnapshotService(store, gateway, config, user=user)
    return await service.cleanup_all()


@router.post("/reconcile")
async def reconcile(
    store: StoreDep,
    gateway: GatewayDep,
    config: EngineConfigDep,
    file_api: FileApiDep,
    user: UserDep,
) -> ReconcileResult:
    """Drop snapshot artifacts that can no longer be read."""
    service = ReconciliationService(store, gateway, config, file_api=file_api, user=user)
    return await service.reconcile_orphans()


@router.get("/unmanaged")
async def unmanaged(
    store: StoreDep,
    gateway: GatewayDep,
    config: EngineConfigDep,
    file_api: FileApiDep,
    user: UserDep,
) -> dict[str, Any]:
    service = ReconciliationService(store, gateway, config, file_api=file_api, user=user)
    return await service.unmanaged_report()


@router.get("/files-to-cleanup")
async def files_to_cleanup(
    store: StoreDep,
    gateway: GatewayDep,
    config: EngineConfigDep,
    file_api: FileApiDep,
    user: UserDep,
    group_id: str | None = Query(None, description="Restrict to files named for this group."),
) -> dict[str, Any]:
    """Snapshot files on disk that no metadata references (read-only)."""
    service = ReconciliationService(store, gateway, config, file_api=file_api, user=user)
    return await service.files_to_cleanup(group_id)


@router.post("/files-cleanup")
async def files_cleanup(
    store: StoreDep,
    gateway: GatewayDep,
    config: EngineConfigDep,
    file_api: FileApiDep,
    user: UserDep,
) -> dict[str, Any]:
    service = ReconciliationService(store, gateway, config, file_api=file_api, user=user)
    return await service.cleanup_files()


# ---------------------------------------------------------------------------
# Single snapshot
# ---------------------------------------------------------------------------


@router.delete("/{snapshot_id}")
async def delete_snapshot(
    snapshot_id: str,
    store: StoreDep,
    gateway: GatewayDep,
    config: EngineConfigDep,
    user: UserDep,
) -> CleanupResult:
    service = SnapshotService(store, gateway, config, user=user)
    return await service.delete_snapshot(snapshot_id)


@router.post("/{snapshot_id}/rollback", response_model=RollbackResult)
async def rollback(
    snapshot_id: str,
    store: StoreDep,
    gateway: GatewayDep,
    config: EngineConfigDep,
    user: UserDep,
) -> RollbackResult | JSONResponse:
    """Restore the snapshot's group to this snapshot.

    Returns 500 with the full result body when nothing could be restored;
    per-database failures alongside at least one success return 200.
    """
    service = RollbackService(store, gateway, config, user=user)
    result = await service.rollback_to_snapshot(snapshot_id)
    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=result.model_dump(mode="json"),
        )
    return result


@router.post("/{snapshot_id}/cleanup")
async def cleanup_snapshot(
    snapshot_id: str,
    store: StoreDep,
    gateway: GatewayDep,
    config: EngineConfigDep,
    user: UserDep,
) -> CleanupResult:
    """Force-drop the artifacts of a snapshot that can no longer be restored."""
    service = SnapshotService(store, gateway, config, user=user)
    return await service.cleanup_snapshot(snapshot_id)
