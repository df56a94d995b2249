"""Tests for GroupService and the group mutation guard.

Covers:
- creation dedupes databases and scopes the group to the active profile
- renames and database-set changes with live snapshots need confirmation
- reordering databases is not a change
- confirmed edits drop every snapshot of the group and report drop failures
- database lists that are blank after stripping are rejected
- name conflicts within a profile
- deleting a group always destroys its snapshots
"""

from __future__ import annotations

import pytest

from rewind_api.services.group_service import GroupService, group_changed
from rewind_api.services.snapshot_service import SnapshotService
from rewind_core.engine.config import EngineConfig
from rewind_core.engine.memory import InMemoryEngineGateway
from rewind_core.errors import ConfirmationRequiredError, ConflictError, NotFoundError, PreconditionFailedError
from rewind_core.models.group import Group
from rewind_core.models.history import OperationType
from rewind_core.models.results import GuardDecision
from rewind_core.state.file_store import JsonFileMetadataStore


@pytest.fixture()
def service(
    store: JsonFileMetadataStore,
    gateway: InMemoryEngineGateway,
    engine_config: EngineConfig,
) -> GroupService:
    return GroupService(store, gateway, engine_config, user="ann")


@pytest.fixture()
def snapshots(
    store: JsonFileMetadataStore,
    gateway: InMemoryEngineGateway,
    engine_config: EngineConfig,
) -> SnapshotService:
    return SnapshotService(store, gateway, engine_config)


class TestGroupChanged:
    def test_reorder_is_not_a_change(self) -> None:
        group = Group(id="g", name="Sales", databases=["A", "B"])
        assert group_changed(group, "Sales", ["B", "A"]) is False

    def test_rename_and_membership(self) -> None:
        group = Group(id="g", name="Sales", databases=["A", "B"])
        assert group_changed(group, "Sales2", ["A", "B"]) is True
        assert group_changed(group, "Sales", ["A", "B", "C"]) is True


class TestCreateAndList:
    """Creation and listing."""

    @pytest.mark.asyncio
    async def test_create_group(self, service: GroupService, store: JsonFileMetadataStore) -> None:
        group = await service.create_group("  Billing ", ["C", "A", " C ", ""])

        assert group.name == "Billing"
        assert group.databases == ["C", "A"]
        assert group.profile_id == "default"
        assert group.created_by == "ann"
        history = await store.list_history()
        assert history[0].operation_type is OperationType.CREATE_GROUP

    @pytest.mark.asyncio
    async def test_blank_databases_rejected(self, service: GroupService, store: JsonFileMetadataStore) -> None:
        with pytest.raises(PreconditionFailedError):
            await service.create_group("Billing", [" ", ""])
        assert await store.list_groups("default") == []

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, service: GroupService, group: Group) -> None:
        with pytest.raises(ConflictError):
            await service.create_group("Sales", ["C"])

    @pytest.mark.asyncio
    async def test_list_includes_snapshot_count(
        self,
        service: GroupService,
        snapshots: SnapshotService,
        store: JsonFileMetadataStore,
        group: Group,
    ) -> None:
        await store.add_group(Group(id="g2", name="Other", databases=["C"], profile_id="elsewhere"))
        await snapshots.create_snapshot(group.id)

        listed = await service.list_groups()

        assert [(g["name"], g["snapshot_count"]) for g in listed] == [("Sales", 1)]


class TestMutationGuard:
    """Edits that would invalidate live snapshots."""

    @pytest.mark.asyncio
    async def test_rename_without_snapshots_is_free(self, service: GroupService, group: Group) -> None:
        result = await service.update_group(group.id, "Sales EU", ["A", "B"])
        assert result["group"]["name"] == "Sales EU"
        assert result["snapshots_deleted"] == 0

    @pytest.mark.asyncio
    async def test_change_requires_confirmation(
        self,
        service: GroupService,
        snapshots: SnapshotService,
        store: JsonFileMetadataStore,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        await snapshots.create_snapshot(group.id)
        await snapshots.create_snapshot(group.id)

        with pytest.raises(ConfirmationRequiredError) as exc_info:
            await service.update_group(group.id, "Sales", ["A", "B", "C"])

        detail = exc_info.value.to_detail()
        assert detail["requires_confirmation"] is True
        assert detail["snapshot_count"] == 2
        assert detail["database_count"] == 2
        assert detail["total_snapshots"] == 4
        assert (await store.get_group(group.id)).databases == ["A", "B"]
        assert len(gateway.artifacts) == 4

    @pytest.mark.asyncio
    async def test_confirmed_change_drops_snapshots(
        self,
        service: GroupService,
        snapshots: SnapshotService,
        store: JsonFileMetadataStore,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        await snapshots.create_snapshot(group.id)
        await snapshots.create_snapshot(group.id)

        result = await service.update_group(group.id, "Sales", ["A", "B", "C"], confirm_delete=True)

        assert result["snapshots_deleted"] == 2
        assert result["group"]["databases"] == ["A", "B", "C"]
        assert await store.get_snapshots_for_group(group.id) == []
        assert gateway.artifacts == {}
        history = await store.list_history()
        assert history[0].operation_type is OperationType.UPDATE_GROUP
        assert history[0].details["snapshots_deleted"] == 2

    @pytest.mark.asyncio
    async def test_reorder_keeps_snapshots(
        self,
        service: GroupService,
        snapshots: SnapshotService,
        store: JsonFileMetadataStore,
        group: Group,
    ) -> None:
        await snapshots.create_snapshot(group.id)

        result = await service.update_group(group.id, "Sales", ["B", "A"])

        assert result["snapshots_deleted"] == 0
        assert result["group"]["databases"] == ["B", "A"]
        assert len(await store.get_snapshots_for_group(group.id)) == 1

    @pytest.mark.asyncio
    async def test_validate_returns_decision(
        self,
        service: GroupService,
        snapshots: SnapshotService,
        group: Group,
    ) -> None:
        decision, cleanup = await service.validate_group_mutation(group, "New", ["A"], False)
        assert decision is GuardDecision.OK
        assert cleanup.deleted_snapshots == 0
        snap = (await snapshots.create_snapshot(group.id)).snapshot
        decision, cleanup = await service.validate_group_mutation(group, "New", ["A"], True)
        assert decision is GuardDecision.SNAPSHOTS_DELETED
        assert cleanup.deleted_snapshots == 1
        assert sorted(cleanup.dropped) == sorted(snap.artifact_names)

    @pytest.mark.asyncio
    async def test_confirmed_change_reports_drop_failures(
        self,
        service: GroupService,
        snapshots: SnapshotService,
        store: JsonFileMetadataStore,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        snap = (await snapshots.create_snapshot(group.id)).snapshot
        gateway.fail("drop_snapshot", f"{snap.id}_B", "snapshot in use")

        result = await service.update_group(group.id, "Sales", ["A"], confirm_delete=True)

        assert result["snapshots_deleted"] == 1
        assert result["warnings"] == [
            {"step": "group_snapshot_delete", "target": f"{snap.id}_B", "error": "snapshot in use"}
        ]
        assert await store.get_snapshots_for_group(group.id) == []
        history = await store.list_history()
        assert history[0].operation_type is OperationType.UPDATE_GROUP
        assert history[0].details["dropped"] == [f"{snap.id}_A"]
        assert history[0].details["warnings"] == 1

    @pytest.mark.asyncio
    async def test_update_with_blank_databases_rejected(self, service: GroupService, group: Group) -> None:
        with pytest.raises(PreconditionFailedError):
            await service.update_group(group.id, "Sales", ["  "])

    @pytest.mark.asyncio
    async def test_rename_conflict_checked_first(
        self,
        service: GroupService,
        snapshots: SnapshotService,
        store: JsonFileMetadataStore,
        group: Group,
    ) -> None:
        await store.add_group(Group(id="g2", name="Billing", databases=["C"], profile_id="default"))
        await snapshots.create_snapshot(group.id)

        with pytest.raises(ConflictError):
            await service.update_group(group.id, "Billing", ["A", "B"], confirm_delete=True)
        assert len(await store.get_snapshots_for_group(group.id)) == 1


class TestDeleteGroup:
    @pytest.mark.asyncio
    async def test_delete_cascades(
        self,
        service: GroupService,
        snapshots: SnapshotService,
        store: JsonFileMetadataStore,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        await snapshots.create_snapshot(group.id)

        result = await service.delete_group(group.id)

        assert result == {"success": True, "snapshots_deleted": 1, "warnings": []}
        assert await store.get_group(group.id) is None
        assert await store.list_snapshots() == []
        assert gateway.artifacts == {}

    @pytest.mark.asyncio
    async def test_delete_unknown(self, service: GroupService) -> None:
        with pytest.raises(NotFoundError):
            await service.delete_group("missing")
