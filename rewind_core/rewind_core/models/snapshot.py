"""Snapshot models for coordinated multi-database captures.

A :class:`Snapshot` is one capture event across every database of a
:class:`~rewind_core.models.group.Group`.  Each member database contributes a
:class:`DatabaseSnapshot` recording whether the engine-side artifact was
created, its name, and the physical files backing it.  Failed entries carry
no artifact and are never used as drop or restore targets.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field

# Hard ceiling on live snapshots per group.
MAX_SNAPSHOTS_PER_GROUP = 9


class DatabaseSnapshot(BaseModel):
    """Per-database outcome of a single snapshot attempt."""

    database: str = Field(
        ...,
        min_length=1,
        description="Source database name.",
    )
    snapshot_name: str | None = Field(
        default=None,
        description="Engine-side artifact name, ``{snapshot_id}_{database}``; None on failure.",
    )
    files: list[str] = Field(
        default_factory=list,
        description="Physical file paths created for the artifact.",
    )
    success: bool = Field(
        default=False,
        description="Whether the engine accepted the create command.",
    )
    error: str | None = Field(
        default=None,
        description="Engine error text when the capture failed.",
    )

    @property
    def is_restorable(self) -> bool:
        """True when the entry owns an engine artifact."""
        return self.success and bool(self.snapshot_name)


class Snapshot(BaseModel):
    """One coordinated capture event for a group.

    ``group_name`` is denormalised at creation time and may be missing on
    records written by older releases; callers resolve the name through
    :func:`rewind_core.naming.resolve_group_name` instead of reading it
    directly.
    """

    id: str = Field(
        ...,
        min_length=1,
        description="Snapshot identifier: normalised group name plus an 8-char content hash.",
    )
    group_id: str = Field(
        ...,
        min_length=1,
        description="Identifier of the owning group.",
    )
    group_name: str | None = Field(
        default=None,
        description="Group name at creation time (denormalised, may be absent).",
    )
    display_name: str = Field(
        default="",
        description="Trimmed operator-supplied label.",
    )
    sequence: int = Field(
        default=1,
        ge=1,
        description="Per-group ordinal, max existing + 1 at creation time.",
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    created_by: str | None = Field(default=None)
    is_automatic: bool = Field(
        default=False,
        description="True for checkpoints taken automatically after a rollback.",
    )
    database_snapshots: list[DatabaseSnapshot] = Field(default_factory=list)

    @property
    def restorable(self) -> list[DatabaseSnapshot]:
        """Entries that own an engine artifact, in group order."""
        return [ds for ds in self.database_snapshots if ds.is_restorable]

    @property
    def artifact_names(self) -> set[str]:
        """Names of every engine artifact owned by this snapshot."""
        return {ds.snapshot_name for ds in self.restorable if ds.snapshot_name}

    @property
    def source_databases(self) -> list[str]:
        """Source databases captured by this snapshot, successful or not."""
        return [ds.database for ds in self.database_snapshots]

    @property
    def physical_files(self) -> set[str]:
        """Every physical file path referenced by successful entries."""
        files: set[str] = set()
        for ds in self.restorable:
            files.update(ds.files)
        return files
