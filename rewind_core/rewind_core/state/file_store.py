"""JSON-file metadata store for single-machine installs.

Each entity kind lives in its own document under one directory::

    <root>/groups.json
    <root>/snapshots.json
    <root>/history.json
    <root>/settings.json
    <root>/profiles.json

Writes go to a temporary file that is atomically renamed over the target.
An ``asyncio.Lock`` serialises read-modify-write cycles within the process.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import SecretStr

from rewind_core.errors import ConflictError, MetadataStoreError
from rewind_core.models.group import Group
from rewind_core.models.history import HistoryEntry
from rewind_core.models.profile import Profile
from rewind_core.models.settings import Settings
from rewind_core.models.snapshot import Snapshot

logger = logging.getLogger(__name__)


class JsonFileMetadataStore:
    """Metadata store persisting JSON documents in *root*."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)
        self._lock = asyncio.Lock()

    # -- Document I/O --------------------------------------------------------

    def _path(self, name: str) -> Path:
        return self._root / f"{name}.json"

    def _read(self, name: str, default: Any) -> Any:
        path = self._path(name)
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise MetadataStoreError(f"Cannot read {path}: {exc}") from exc

    def _write(self, name: str, data: Any) -> None:
        path = self._path(name)
        tmp = path.with_suffix(".json.tmp")
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as exc:
            raise MetadataStoreError(f"Cannot write {path}: {exc}") from exc

    def _groups(self) -> list[Group]:
        return [Group.model_validate(g) for g in self._read("groups", [])]

    def _save_groups(self, groups: list[Group]) -> None:
        self._write("groups", [g.model_dump(mode="json") for g in groups])

    def _snapshots(self) -> list[Snapshot]:
        return [Snapshot.model_validate(s) for s in self._read("snapshots", [])]

    def _save_snapshots(self, snapshots: list[Snapshot]) -> None:
        self._write("snapshots", [s.model_dump(mode="json") for s in snapshots])

    def _profiles(self) -> list[dict[str, Any]]:
        return list(self._read("profiles", []))

    # -- Groups --------------------------------------------------------------

    async def list_groups(self, profile_id: str | None = None) -> list[Group]:
        groups = self._groups()
        if profile_id is not None:
            groups = [g for g in groups if g.profile_id == profile_id]
        return sorted(groups, key=lambda g: g.name)

    async def get_group(self, group_id: str) -> Group | None:
        return next((g for g in self._groups() if g.id == group_id), None)

    async def add_group(self, group: Group) -> Group:
        async with self._lock:
            groups = self._groups()
            if any(g.name == group.name and g.profile_id == group.profile_id for g in groups):
                raise ConflictError(f"A group named '{group.name}' already exists")
            groups.append(group)
            self._save_groups(groups)
        return group

    async def update_group(self, group: Group) -> Group:
        async with self._lock:
            groups = self._groups()
            if any(g.name == group.name and g.profile_id == group.profile_id and g.id != group.id for g in groups):
                raise ConflictError(f"A group named '{group.name}' already exists")
            updated = group.model_copy(update={"updated_at": datetime.now(UTC)})
            self._save_groups([updated if g.id == group.id else g for g in groups])
        return updated

    async def delete_group(self, group_id: str) -> bool:
        async with self._lock:
            groups = self._groups()
            remaining = [g for g in groups if g.id != group_id]
            if len(remaining) == len(groups):
                return False
            self._save_groups(remaining)
            # Mirror the relational store's ON DELETE CASCADE.
            self._save_snapshots([s for s in self._snapshots() if s.group_id != group_id])
        return True

    # -- Snapshots -----------------------------------------------------------

    async def get_snapshots_for_group(self, group_id: str) -> list[Snapshot]:
        snapshots = [s for s in self._snapshots() if s.group_id == group_id]
        return sorted(snapshots, key=lambda s: (s.sequence, s.created_at), reverse=True)

    async def list_snapshots(self) -> list[Snapshot]:
        return sorted(self._snapshots(), key=lambda s: s.created_at, reverse=True)

    async def get_snapshot(self, snapshot_id: str) -> Snapshot | None:
        return next((s for s in self._snapshots() if s.id == snapshot_id), None)

    async def add_snapshot(self, snapshot: Snapshot) -> Snapshot:
        async with self._lock:
            snapshots = self._snapshots()
            if any(s.id == snapshot.id for s in snapshots):
                raise ConflictError(f"Snapshot {snapshot.id} already exists")
            snapshots.append(snapshot)
            self._save_snapshots(snapshots)
        return snapshot

    async def update_snapshot_files(self, snapshot_id: str, database: str, files: list[str]) -> None:
        async with self._lock:
            snapshots = self._snapshots()
            for snap in snapshots:
                if snap.id != snapshot_id:
                    continue
                for entry in snap.database_snapshots:
                    if entry.database == database:
                        entry.files = list(files)
            self._save_snapshots(snapshots)

    async def delete_snapshot(self, snapshot_id: str) -> bool:
        async with self._lock:
            snapshots = self._snapshots()
            remaining = [s for s in snapshots if s.id != snapshot_id]
            self._save_snapshots(remaining)
        return len(remaining) != len(snapshots)

    async def delete_group_snapshots(self, group_id: str) -> int:
        async with self._lock:
            snapshots = self._snapshots()
            remaining = [s for s in snapshots if s.group_id != group_id]
            self._save_snapshots(remaining)
        return len(snapshots) - len(remaining)

    async def delete_all_snapshots(self) -> int:
        async with self._lock:
            count = len(self._snapshots())
            self._save_snapshots([])
        return count

    # -- History -------------------------------------------------------------

    async def add_history_entry(self, entry: HistoryEntry) -> HistoryEntry:
        async with self._lock:
            history = list(self._read("history", []))
            next_id = max((h.get("id") or 0 for h in history), default=0) + 1
            stored = entry.model_copy(update={"id": next_id})
            history.append(stored.model_dump(mode="json"))
            keep = (await self.get_settings()).max_history_entries
            if len(history) > keep:
                history = history[-keep:]
            self._write("history", history)
        return stored

    async def list_history(self, limit: int | None = None) -> list[HistoryEntry]:
        entries = [HistoryEntry.model_validate(h) for h in reversed(self._read("history", []))]
        return entries[:limit] if limit is not None else entries

    async def clear_history(self) -> int:
        async with self._lock:
            count = len(self._read("history", []))
            self._write("history", [])
        return count

    # -- Settings and profiles ----------------------------------------------

    async def get_settings(self) -> Settings:
        data = self._read("settings", None)
        return Settings.model_validate(data) if data else Settings()

    async def save_settings(self, settings: Settings) -> Settings:
        async with self._lock:
            self._write("settings", settings.model_dump(mode="json"))
        return settings

    async def get_active_profile(self) -> Profile | None:
        for record in self._profiles():
            if record.get("is_active"):
                return Profile.model_validate({**record, "password": SecretStr(record.get("password", ""))})
        return None

    async def save_profile(self, profile: Profile) -> Profile:
        async with self._lock:
            record = profile.model_dump(mode="json", exclude={"password"})
            record["password"] = profile.password.get_secret_value()
            profiles = [p for p in self._profiles() if p.get("id") != profile.id]
            if profile.is_active:
                for p in profiles:
                    p["is_active"] = False
            profiles.append(record)
            self._write("profiles", profiles)
        return profile
