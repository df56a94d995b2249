"""Domain models for the Rewind core layer."""

from rewind_core.models.group import Group
from rewind_core.models.history import HistoryEntry, OperationResult, OperationType
from rewind_core.models.profile import Profile
from rewind_core.models.results import (
    AdvisoryWarning,
    CleanupResult,
    CreateSnapshotResult,
    FailedRollback,
    GuardDecision,
    ReconcileResult,
    RollbackResult,
)
from rewind_core.models.settings import Settings
from rewind_core.models.snapshot import MAX_SNAPSHOTS_PER_GROUP, DatabaseSnapshot, Snapshot

__all__ = [
    "AdvisoryWarning",
    "CleanupResult",
    "CreateSnapshotResult",
    "DatabaseSnapshot",
    "FailedRollback",
    "Group",
    "GuardDecision",
    "HistoryEntry",
    "MAX_SNAPSHOTS_PER_GROUP",
    "OperationResult",
    "OperationType",
    "Profile",
    "ReconcileResult",
    "RollbackResult",
    "Settings",
    "Snapshot",
]
