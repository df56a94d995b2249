"""Tests for ReconciliationService.

Covers:
- the orphan sweep drops unreadable artifacts only, and is idempotent
- every on-demand sweep is recorded; empty runs can opt out
- unmanaged report and per-group verification
- unreferenced snapshot files reported and deleted through the file API
- missing physical file lists backfilled before the file report
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from rewind_api.services.file_api_client import FileApiClient, RemoteFile
from rewind_api.services.reconciliation_service import ReconciliationService
from rewind_api.services.snapshot_service import SnapshotService
from rewind_core.engine.config import EngineConfig
from rewind_core.engine.memory import InMemoryEngineGateway
from rewind_core.errors import FileApiError, NotFoundError
from rewind_core.models.group import Group
from rewind_core.models.history import OperationType
from rewind_core.models.snapshot import DatabaseSnapshot, Snapshot
from rewind_core.state.file_store import JsonFileMetadataStore

_MB = 1024 * 1024


@pytest.fixture()
def file_api() -> AsyncMock:
    return AsyncMock(spec=FileApiClient)


@pytest.fixture()
def service(
    store: JsonFileMetadataStore,
    gateway: InMemoryEngineGateway,
    engine_config: EngineConfig,
    file_api: AsyncMock,
) -> ReconciliationService:
    return ReconciliationService(store, gateway, engine_config, file_api=file_api, user="ops")


@pytest.fixture()
def snapshots(
    store: JsonFileMetadataStore,
    gateway: InMemoryEngineGateway,
    engine_config: EngineConfig,
) -> SnapshotService:
    return SnapshotService(store, gateway, engine_config)


class TestOrphanSweep:
    """Dropping unreadable artifacts."""

    @pytest.mark.asyncio
    async def test_drops_only_unreadable(
        self,
        service: ReconciliationService,
        store: JsonFileMetadataStore,
        gateway: InMemoryEngineGateway,
    ) -> None:
        gateway.add_artifact("sales_deadbeef_A", "A", corrupted=True)
        gateway.add_artifact("sales_cafebabe_B", "B")

        result = await service.reconcile_orphans()

        assert result.cleaned_count == 1
        assert result.orphan_names == ["sales_deadbeef_A"]
        assert set(gateway.artifacts) == {"sales_cafebabe_B"}
        history = await store.list_history()
        assert history[0].operation_type is OperationType.ORPHAN_CLEANUP
        assert history[0].details["deleted_count"] == 1
        assert history[0].user_name == "ops"

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(
        self,
        service: ReconciliationService,
        store: JsonFileMetadataStore,
        gateway: InMemoryEngineGateway,
    ) -> None:
        gateway.add_artifact("sales_deadbeef_A", "A", corrupted=True)
        await service.reconcile_orphans()

        again = await service.reconcile_orphans()

        assert again.cleaned_count == 0
        assert again.orphan_names == []
        history = await store.list_history()
        assert [h.operation_type for h in history] == [OperationType.ORPHAN_CLEANUP] * 2
        assert history[0].details["deleted_count"] == 0

    @pytest.mark.asyncio
    async def test_empty_run_can_skip_history(
        self,
        service: ReconciliationService,
        store: JsonFileMetadataStore,
    ) -> None:
        result = await service.reconcile_orphans(record_empty=False)

        assert result.cleaned_count == 0
        assert await store.list_history() == []

    @pytest.mark.asyncio
    async def test_drop_failure_becomes_warning(
        self,
        service: ReconciliationService,
        gateway: InMemoryEngineGateway,
    ) -> None:
        gateway.add_artifact("sales_deadbeef_A", "A", corrupted=True)
        gateway.fail("drop_snapshot", "sales_deadbeef_A", "in use")

        result = await service.reconcile_orphans()

        assert result.cleaned_count == 0
        assert [(w.step, w.target, w.error) for w in result.warnings] == [
            ("orphan_drop", "sales_deadbeef_A", "in use")
        ]

    @pytest.mark.asyncio
    async def test_metadata_left_untouched(
        self,
        service: ReconciliationService,
        snapshots: SnapshotService,
        store: JsonFileMetadataStore,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        snap = (await snapshots.create_snapshot(group.id)).snapshot
        gateway.corrupt(f"{snap.id}_A")

        result = await service.reconcile_orphans()

        assert result.orphan_names == [f"{snap.id}_A"]
        assert await store.get_snapshot(snap.id) is not None

    @pytest.mark.asyncio
    async def test_find_orphans_is_read_only(
        self,
        service: ReconciliationService,
        gateway: InMemoryEngineGateway,
    ) -> None:
        gateway.add_artifact("sales_deadbeef_A", "A", corrupted=True)
        assert await service.find_orphans() == ["sales_deadbeef_A"]
        assert "sales_deadbeef_A" in gateway.artifacts


class TestReports:
    """Unmanaged report and group verification."""

    @pytest.mark.asyncio
    async def test_unmanaged_report(
        self,
        service: ReconciliationService,
        snapshots: SnapshotService,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        await snapshots.create_snapshot(group.id)
        gateway.add_artifact("manual_copy", "C")

        report = await service.unmanaged_report()

        assert report["unmanaged_count"] == 1
        assert report["unmanaged_snapshots"][0]["name"] == "manual_copy"
        assert report["unmanaged_snapshots"][0]["source_database"] == "C"

    @pytest.mark.asyncio
    async def test_verify_group(
        self,
        service: ReconciliationService,
        snapshots: SnapshotService,
        gateway: InMemoryEngineGateway,
        group: Group,
    ) -> None:
        snap = (await snapshots.create_snapshot(group.id)).snapshot
        assert (await service.verify_group(group.id))["consistent"] is True

        gateway.artifacts.pop(f"{snap.id}_B")
        gateway.add_artifact("sales_deadbeef_A", "A")
        report = await service.verify_group(group.id)

        assert report["consistent"] is False
        assert report["stale_metadata"] == [f"{snap.id}_B"]
        assert report["orphaned"] == ["sales_deadbeef_A"]

    @pytest.mark.asyncio
    async def test_verify_unknown_group(self, service: ReconciliationService) -> None:
        with pytest.raises(NotFoundError):
            await service.verify_group("missing")


class TestFiles:
    """Unreferenced snapshot files on the engine host."""

    @pytest_asyncio.fixture()
    async def listed(
        self,
        snapshots: SnapshotService,
        file_api: AsyncMock,
        group: Group,
    ) -> str:
        snap = (await snapshots.create_snapshot(group.id)).snapshot
        file_api.list.return_value = [
            RemoteFile(name=f"{snap.id}_A_A.ss", size_bytes=_MB),
            RemoteFile(name="sales_deadbeef_A_A.ss", size_bytes=2 * _MB),
            RemoteFile(name="billing_deadbeef_A_A.ss", size_bytes=_MB),
            RemoteFile(name="notes.txt", size_bytes=10),
        ]
        return snap.id

    @pytest.mark.asyncio
    async def test_report_lists_unreferenced(
        self,
        service: ReconciliationService,
        file_api: AsyncMock,
        listed: str,
    ) -> None:
        report = await service.files_to_cleanup()

        names = [f["file_name"] for f in report["files_to_cleanup"]]
        assert names == ["sales_deadbeef_A_A.ss", "billing_deadbeef_A_A.ss"]
        assert report["files_to_cleanup"][0]["full_path"] == "/var/opt/mssql/snapshots/sales_deadbeef_A_A.ss"
        assert report["total_files"] == 2
        assert report["total_size_bytes"] == 3 * _MB
        assert report["total_size_mb"] == 3.0
        file_api.list.assert_awaited_once_with("/var/opt/mssql/snapshots", pattern="*.ss")
        file_api.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_report_scoped_to_group(
        self,
        service: ReconciliationService,
        group: Group,
        listed: str,
    ) -> None:
        report = await service.files_to_cleanup(group.id)
        assert [f["file_name"] for f in report["files_to_cleanup"]] == ["sales_deadbeef_A_A.ss"]

    @pytest.mark.asyncio
    async def test_cleanup_deletes_and_collects_errors(
        self,
        service: ReconciliationService,
        store: JsonFileMetadataStore,
        file_api: AsyncMock,
        listed: str,
    ) -> None:
        async def _delete(name: str, path: str) -> None:
            if name.startswith("billing"):
                raise FileApiError("File API returned 403 for DELETE")

        file_api.delete.side_effect = _delete

        result = await service.cleanup_files()

        assert result["deleted_files"] == ["sales_deadbeef_A_A.ss"]
        assert result["errors"] == [
            {"file": "billing_deadbeef_A_A.ss", "error": "File API returned 403 for DELETE"}
        ]
        assert result["message"] == "Cleanup completed: 1 files deleted, 1 errors"
        history = await store.list_history()
        assert history[0].operation_type is OperationType.FILE_CLEANUP

    @pytest.mark.asyncio
    async def test_missing_file_lists_are_backfilled(
        self,
        service: ReconciliationService,
        store: JsonFileMetadataStore,
        gateway: InMemoryEngineGateway,
        file_api: AsyncMock,
        group: Group,
    ) -> None:
        gateway.add_database("A", data_files=["A", "A_log2"])
        snap = Snapshot(
            id="sales_0000beef",
            group_id=group.id,
            group_name=group.name,
            display_name="Imported",
            sequence=1,
            database_snapshots=[
                DatabaseSnapshot(database="A", snapshot_name="sales_0000beef_A", success=True),
                DatabaseSnapshot(database="B", snapshot_name="sales_0000beef_B", success=True),
            ],
        )
        await store.add_snapshot(snap)
        gateway.fail("list_data_files", "B", "offline")
        file_api.list.return_value = [
            RemoteFile(name="sales_0000beef_A_A.ss", size_bytes=_MB),
            RemoteFile(name="sales_0000beef_A_A_log2.ss", size_bytes=_MB),
            RemoteFile(name="sales_0000beef_B_B.ss", size_bytes=_MB),
            RemoteFile(name="sales_deadbeef_A_A.ss", size_bytes=_MB),
        ]

        report = await service.files_to_cleanup()

        assert [f["file_name"] for f in report["files_to_cleanup"]] == ["sales_deadbeef_A_A.ss"]
        stored = await store.get_snapshot(snap.id)
        entries = {ds.database: ds.files for ds in stored.database_snapshots}
        assert entries["A"] == [
            "/var/opt/mssql/snapshots/sales_0000beef_A_A.ss",
            "/var/opt/mssql/snapshots/sales_0000beef_A_A_log2.ss",
        ]
        # B could not be listed: nothing recorded, its file is still protected.
        assert entries["B"] == []

    @pytest.mark.asyncio
    async def test_file_api_not_configured(
        self,
        store: JsonFileMetadataStore,
        gateway: InMemoryEngineGateway,
        engine_config: EngineConfig,
    ) -> None:
        service = ReconciliationService(store, gateway, engine_config)
        with pytest.raises(FileApiError):
            await service.files_to_cleanup()
