"""Result types returned by the orchestration services.

Per-database failures and advisory cleanup failures are data, not
exceptions: they are accumulated in these models so the caller can tell a
clean outcome from a degraded one.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from rewind_core.models.history import OperationResult
from rewind_core.models.snapshot import Snapshot


class AdvisoryWarning(BaseModel):
    """A best-effort step that failed and was skipped."""

    step: str = Field(..., description="Which cleanup step produced the failure, e.g. 'sibling_purge'.")
    target: str = Field(..., description="Artifact, database or file the step was acting on.")
    error: str = Field(..., description="Engine or transport error text.")


class FailedRollback(BaseModel):
    """A database whose restore did not complete."""

    database: str
    error: str


class CreateSnapshotResult(BaseModel):
    """Outcome of one snapshot creation.

    ``success`` is true whenever the snapshot was persisted, even if some
    databases failed; see ``results`` for per-database outcomes.
    """

    success: bool = True
    snapshot: Snapshot
    results: list[OperationResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)


class RollbackResult(BaseModel):
    """Outcome of a rollback, including partial failures and advisories.

    ``success`` is false only when nothing was restored: either the target's
    artifacts were already gone or every database failed.  ``error`` then
    explains why.
    """

    success: bool
    error: str | None = None
    snapshot_id: str
    group_id: str
    group_name: str
    rolled_back_databases: list[str] = Field(default_factory=list)
    failed_rollbacks: list[FailedRollback] = Field(default_factory=list)
    dropped_siblings: list[str] = Field(default_factory=list)
    deleted_snapshots: int = 0
    checkpoint_created: bool = False
    checkpoint: Snapshot | None = None
    checkpoint_error: str | None = None
    warnings: list[AdvisoryWarning] = Field(default_factory=list)


class ReconcileResult(BaseModel):
    """Outcome of an orphan sweep."""

    cleaned_count: int = 0
    orphan_names: list[str] = Field(default_factory=list)
    warnings: list[AdvisoryWarning] = Field(default_factory=list)


class CleanupResult(BaseModel):
    """Outcome of dropping snapshot artifacts without restoring."""

    success: bool = True
    dropped: list[str] = Field(default_factory=list)
    deleted_snapshots: int = 0
    warnings: list[AdvisoryWarning] = Field(default_factory=list)


class GuardDecision(str, Enum):
    """Verdict of the group mutation guard."""

    OK = "ok"
    SNAPSHOTS_DELETED = "snapshots_deleted"
