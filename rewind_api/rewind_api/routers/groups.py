"""Group CRUD, group snapshots and group verification."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, status
from rewind_core.models.results import CreateSnapshotResult

from rewind_api.dependencies import EngineConfigDep, FileApiDep, GatewayDep, StoreDep, UserDep
from rewind_api.schemas import CreateGroupRequest, CreateSnapshotRequest, UpdateGroupRequest
from rewind_api.services.group_service import GroupService
from rewind_api.services.reconciliation_service import ReconciliationService
from rewind_api.services.snapshot_service import SnapshotService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/groups", tags=["groups"])


@router.get("")
async def list_groups(
    store: StoreDep,
    gateway: GatewayDep,
    config: EngineConfigDep,
    user: UserDep,
) -> list[dict[str, Any]]:
    """Groups of the active profile with their live snapshot counts."""
    service = GroupService(store, gateway, config, user=user)
    return await service.list_groups()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_group(
    body: CreateGroupRequest,
    store: StoreDep,
    gateway: GatewayDep,
    config: EngineConfigDep,
    user: UserDep,
) -> dict[str, Any]:
    service = GroupService(store, gateway, config, user=user)
    group = await service.create_group(body.name, body.databases)
    return group.model_dump(mode="json")


@router.put("/{group_id}")
async def update_group(
    group_id: str,
    body: UpdateGroupRequest,
    store: StoreDep,
    gateway: GatewayDep,
    config: EngineConfigDep,
    user: UserDep,
) -> dict[str, Any]:
    """Rename a group or change its databases.

    Returns 400 with ``requires_confirmation`` when the edit would destroy
    live snapshots and ``delete_snapshots`` was not set.
    """
    service = GroupService(store, gateway, config, user=user)
    return await service.update_group(
        group_id,
        body.name,
        body.databases,
        confirm_delete=body.delete_snapshots,
    )


@router.delete("/{group_id}")
async def delete_group(
    group_id: str,
    store: StoreDep,
    gateway: GatewayDep,
    config: EngineConfigDep,
    user: UserDep,
) -> dict[str, Any]:
    """Delete a group together with every one of its snapshots."""
    service = GroupService(store, gateway, config, user=user)
    return await service.delete_group(group_id)


@router.post("/{group_id}/snapshots", status_code=status.HTTP_201_CREATED)
async def create_snapshot(
    group_id: str,
    store: StoreDep,
    gateway: GatewayDep,
    config: EngineConfigDep,
    user: UserDep,
    body: CreateSnapshotRequest | None = Body(default=None),
) -> CreateSnapshotResult:
    """Snapshot every database of the group.

    Per-database failures are reported in ``results`` and do not fail the
    request.
    """
    service = SnapshotService(store, gateway, config, user=user)
    return await service.create_snapshot(group_id, body.name if body else "")


@router.get("/{group_id}/snapshots")
async def list_group_snapshots(
    group_id: str,
    store: StoreDep,
    gateway: GatewayDep,
    config: EngineConfigDep,
    user: UserDep,
) -> list[dict[str, Any]]:
    service = SnapshotService(store, gateway, config, user=user)
    return await service.list_group_snapshots(group_id)


@router.get("/{group_id}/verify")
async def verify_group(
    group_id: str,
    store: StoreDep,
    gateway: GatewayDep,
    config: EngineConfigDep,
    file_api: FileApiDep,
    user: UserDep,
) -> dict[str, Any]:
    """Compare the group's metadata with the artifacts on the engine."""
    service = ReconciliationService(store, gateway, config, file_api=file_api, user=user)
    return await service.verify_group(group_id)
