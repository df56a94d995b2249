"""Tests for RollbackService.

Covers:
- sibling snapshots are purged before any restore is attempted
- failed snapshot entries are never restore targets
- metadata cutover: only the checkpoint survives, at sequence 1
- exactly one history entry per rollback, checkpoint included
- restore failures are recorded per database and do not abort the rest
- artifacts missing from the engine: unsuccessful result, metadata kept
- checkpoint disabled through settings, and checkpoint capture failures
- engine errors after the restores: advisory re-list failure, audited aborts
- one rollback per group at a time
"""

from __future__ import annotations

import pytest

from rewind_api.services import rollback_service as rollback_module
from rewind_api.services.rollback_service import ARTIFACT_MISSING_ERROR, RollbackService
from rewind_api.services.snapshot_service import SnapshotService
from rewind_core.engine.config import EngineConfig
from rewind_core.engine.memory import InMemoryEngineGateway, InMemoryEngineSession
from rewind_core.errors import EngineCommandError, EngineUnavailableError, NotFoundError, RollbackInProgressError
from rewind_core.models.group import Group
from rewind_core.models.history import OperationType
from rewind_core.models.snapshot import Snapshot
from rewind_core.state.file_store import JsonFileMetadataStore


@pytest.fixture()
def snapshots(
    store: JsonFileMetadataStore,
    gateway: InMemoryEngineGateway,
    engine_config: EngineConfig,
) -> SnapshotService:
    return SnapshotService(store, gateway, engine_config, user="ann")


@pytest.fixture()
def service(
    store: JsonFileMetadataStore,
    gateway: InMemoryEngineGateway,
    engine_config: EngineConfig,
) -> RollbackService:
    return RollbackService(store, gateway, engine_config, user="bob")


async def _take(snapshots: SnapshotService, group: Group, label: str = "") -> Snapshot:
    return (await snapshots.create_snapshot(group.id, label)).snapshot


class TestRollbackHappyPath:
    """A clean rollback over two databases."""

    @pytest.mark.asyncio
    async def test_restores_every_database(
        self,
        service: RollbackService,
        snapshots: SnapshotService,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        first = await _take(snapshots, group, "first")
        await _take(snapshots, group, "second")

        result = await service.rollback_to_snapshot(first.id)

        assert result.success is True
        assert result.error is None
        assert result.rolled_back_databases == ["A", "B"]
        assert result.failed_rollbacks == []
        assert gateway.restored == [("A", f"{first.id}_A"), ("B", f"{first.id}_B")]
        assert gateway.single_user == set()

    @pytest.mark.asyncio
    async def test_siblings_purged_before_restore(
        self,
        service: RollbackService,
        snapshots: SnapshotService,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        first = await _take(snapshots, group, "first")
        second = await _take(snapshots, group, "second")
        # Lost-metadata artifact of another group on the same database.
        gateway.add_artifact("billing_0badf00d_A", "A")
        # Unmanaged snapshot and one on a database outside the group stay.
        gateway.add_artifact("manual_copy_of_a", "A")
        gateway.add_artifact("sales_0badf00d_C", "C")

        result = await service.rollback_to_snapshot(first.id)

        assert sorted(result.dropped_siblings) == sorted(
            [f"{second.id}_A", f"{second.id}_B", "billing_0badf00d_A"]
        )
        first_restore = gateway.commands.index(("restore", "A"))
        for name in result.dropped_siblings:
            assert gateway.commands.index(("drop_snapshot", name)) < first_restore
        assert "manual_copy_of_a" in gateway.artifacts
        assert "sales_0badf00d_C" in gateway.artifacts

    @pytest.mark.asyncio
    async def test_only_checkpoint_survives_at_sequence_one(
        self,
        service: RollbackService,
        snapshots: SnapshotService,
        store: JsonFileMetadataStore,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        first = await _take(snapshots, group)
        for _ in range(3):
            await _take(snapshots, group)

        result = await service.rollback_to_snapshot(first.id)

        assert result.deleted_snapshots == 4
        assert result.checkpoint_created is True
        remaining = await store.get_snapshots_for_group(group.id)
        assert len(remaining) == 1
        checkpoint = remaining[0]
        assert checkpoint.id == result.checkpoint.id
        assert checkpoint.sequence == 1
        assert checkpoint.is_automatic is True
        assert checkpoint.display_name == "Automatic checkpoint"
        assert checkpoint.created_by == "bob"
        # The engine holds exactly the checkpoint's artifacts.
        assert set(gateway.artifacts) == checkpoint.artifact_names

    @pytest.mark.asyncio
    async def test_one_history_entry(
        self,
        service: RollbackService,
        snapshots: SnapshotService,
        store: JsonFileMetadataStore,
        group: Group,
    ) -> None:
        first = await _take(snapshots, group)
        await _take(snapshots, group)

        await service.rollback_to_snapshot(first.id)

        history = await store.list_history()
        types = [h.operation_type for h in history]
        assert types == [OperationType.ROLLBACK, OperationType.CREATE_SNAPSHOT, OperationType.CREATE_SNAPSHOT]
        entry = history[0]
        assert entry.user_name == "bob"
        assert entry.details["success"] is True
        assert entry.details["checkpoint_created"] is True
        assert [r.database for r in entry.results] == ["A", "B"]


class TestPartialRollback:
    """Failures that leave part of the group restored."""

    @pytest.mark.asyncio
    async def test_failed_entries_are_skipped(
        self,
        service: RollbackService,
        snapshots: SnapshotService,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        gateway.add_database("A", data_files=[])
        target = await _take(snapshots, group)
        gateway.add_database("A")

        result = await service.rollback_to_snapshot(target.id)

        assert result.success is True
        assert result.rolled_back_databases == ["B"]
        assert result.failed_rollbacks == []
        assert [db for db, _ in gateway.restored] == ["B"]
        assert ("restore", "A") not in gateway.commands

    @pytest.mark.asyncio
    async def test_restore_failure_recorded(
        self,
        service: RollbackService,
        snapshots: SnapshotService,
        store: JsonFileMetadataStore,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        target = await _take(snapshots, group)
        gateway.fail("restore", "B", "Exclusive access could not be obtained")

        result = await service.rollback_to_snapshot(target.id)

        assert result.success is True
        assert result.rolled_back_databases == ["A"]
        assert [(f.database, f.error) for f in result.failed_rollbacks] == [
            ("B", "Exclusive access could not be obtained")
        ]
        # Multi-user mode is restored even after a failed restore.
        assert ("set_multi_user", "B") in gateway.commands
        assert gateway.single_user == set()
        # The unrestored target artifact is swept by the second purge.
        assert gateway.snapshots_of("B") == [f"{result.checkpoint.id}_B"]

        history = await store.list_history()
        assert [r.success for r in history[0].results] == [True, False]

    @pytest.mark.asyncio
    async def test_every_restore_fails(
        self,
        service: RollbackService,
        snapshots: SnapshotService,
        store: JsonFileMetadataStore,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        target = await _take(snapshots, group)
        gateway.fail("restore", "A")
        gateway.fail("restore", "B")

        result = await service.rollback_to_snapshot(target.id)

        assert result.success is False
        assert result.error == "No databases were restored"
        assert len(result.failed_rollbacks) == 2
        assert await store.get_snapshot(target.id) is not None
        history = await store.list_history()
        assert history[0].operation_type is OperationType.ROLLBACK
        assert history[0].details["success"] is False

    @pytest.mark.asyncio
    async def test_missing_artifacts(
        self,
        service: RollbackService,
        snapshots: SnapshotService,
        store: JsonFileMetadataStore,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        target = await _take(snapshots, group)
        gateway.artifacts.clear()

        result = await service.rollback_to_snapshot(target.id)

        assert result.success is False
        assert "can no longer be restored" in result.error
        assert [f.error for f in result.failed_rollbacks] == [ARTIFACT_MISSING_ERROR] * 2
        assert gateway.restored == []
        assert await store.get_snapshot(target.id) is not None
        history = await store.list_history()
        assert history[0].details["success"] is False


class TestEngineFailureMidRollback:
    """Engine errors outside the per-database restore steps."""

    @pytest.mark.asyncio
    async def test_relist_failure_after_restore_is_advisory(
        self,
        service: RollbackService,
        snapshots: SnapshotService,
        store: JsonFileMetadataStore,
        gateway: InMemoryEngineGateway,
        group: Group,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        first = await _take(snapshots, group, "first")
        await _take(snapshots, group, "second")
        restore = InMemoryEngineSession.restore_from_snapshot

        async def restore_then_lose_listing(session: InMemoryEngineSession, database: str, artifact: str) -> None:
            await restore(session, database, artifact)
            gateway.fail("list_snapshots", "", "connection reset")

        monkeypatch.setattr(InMemoryEngineSession, "restore_from_snapshot", restore_then_lose_listing)

        result = await service.rollback_to_snapshot(first.id)

        assert result.success is True
        assert result.rolled_back_databases == ["A", "B"]
        assert [(w.step, w.error) for w in result.warnings] == [("post_restore_purge", "connection reset")]
        # The consumed target artifacts are still dropped by name.
        assert f"{first.id}_A" not in gateway.artifacts
        assert f"{first.id}_B" not in gateway.artifacts
        remaining = await store.get_snapshots_for_group(group.id)
        assert [s.id for s in remaining] == [result.checkpoint.id]
        history = await store.list_history()
        rollbacks = [h for h in history if h.operation_type is OperationType.ROLLBACK]
        assert len(rollbacks) == 1
        assert rollbacks[0].details["success"] is True

    @pytest.mark.asyncio
    async def test_aborted_rollback_is_recorded(
        self,
        service: RollbackService,
        snapshots: SnapshotService,
        store: JsonFileMetadataStore,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        target = await _take(snapshots, group)
        gateway.fail("list_snapshots", "", "connection reset")

        with pytest.raises(EngineCommandError):
            await service.rollback_to_snapshot(target.id)

        assert gateway.restored == []
        assert await store.get_snapshot(target.id) is not None
        history = await store.list_history()
        rollbacks = [h for h in history if h.operation_type is OperationType.ROLLBACK]
        assert len(rollbacks) == 1
        assert rollbacks[0].details["success"] is False
        assert rollbacks[0].details["error"] == "connection reset"
        assert group.id not in rollback_module._active_rollbacks


class TestCheckpoint:
    """Automatic checkpoint behaviour."""

    @pytest.mark.asyncio
    async def test_disabled_by_settings(
        self,
        service: RollbackService,
        snapshots: SnapshotService,
        store: JsonFileMetadataStore,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        settings = await store.get_settings()
        await store.save_settings(settings.model_copy(update={"auto_create_checkpoint": False}))
        target = await _take(snapshots, group)

        result = await service.rollback_to_snapshot(target.id)

        assert result.success is True
        assert result.checkpoint_created is False
        assert result.checkpoint is None
        assert await store.get_snapshots_for_group(group.id) == []
        assert gateway.artifacts == {}

    @pytest.mark.asyncio
    async def test_capture_failure_does_not_fail_rollback(
        self,
        service: RollbackService,
        snapshots: SnapshotService,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        target = await _take(snapshots, group)
        gateway.fail("list_data_files", "A", "offline")
        gateway.fail("list_data_files", "B", "offline")

        result = await service.rollback_to_snapshot(target.id)

        assert result.success is True
        assert result.checkpoint_created is False
        assert "A: offline" in result.checkpoint_error


class TestRollbackPreconditions:
    """Errors raised before the engine is touched."""

    @pytest.mark.asyncio
    async def test_unknown_snapshot(self, service: RollbackService) -> None:
        with pytest.raises(NotFoundError):
            await service.rollback_to_snapshot("nope_00000000")

    @pytest.mark.asyncio
    async def test_concurrent_rollback_rejected(
        self,
        service: RollbackService,
        snapshots: SnapshotService,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        target = await _take(snapshots, group)
        rollback_module._active_rollbacks.add(group.id)
        try:
            with pytest.raises(RollbackInProgressError):
                await service.rollback_to_snapshot(target.id)
        finally:
            rollback_module._active_rollbacks.discard(group.id)
        assert gateway.restored == []

    @pytest.mark.asyncio
    async def test_slot_released_after_engine_error(
        self,
        service: RollbackService,
        snapshots: SnapshotService,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        target = await _take(snapshots, group)
        gateway.available = False
        with pytest.raises(EngineUnavailableError):
            await service.rollback_to_snapshot(target.id)
        assert group.id not in rollback_module._active_rollbacks
