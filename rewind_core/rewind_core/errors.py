"""Exception taxonomy for orchestration failures.

Only request-level failures are exceptions.  Per-database failures and
best-effort cleanup failures are returned as data in the result models of
:mod:`rewind_core.models.results`.

The API layer maps each class to an HTTP status through ``status_code``.
"""

from __future__ import annotations

from typing import Any


class RewindError(Exception):
    """Base class for all orchestration errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_detail(self) -> Any:
        """Value placed in the ``detail`` field of an error response."""
        return self.message


class NotFoundError(RewindError):
    """A group or snapshot identifier does not resolve."""

    status_code = 404

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class PreconditionFailedError(RewindError):
    """The request is valid but the current state forbids it."""

    status_code = 400


class SnapshotLimitError(PreconditionFailedError):
    """The group already holds the maximum number of live snapshots."""

    def __init__(self, group_name: str, limit: int) -> None:
        super().__init__(
            f"Group '{group_name}' already has {limit} snapshots. Delete one before creating another."
        )
        self.limit = limit

    def to_detail(self) -> dict[str, Any]:
        return {"error": self.message, "limit": self.limit}


class ConfirmationRequiredError(PreconditionFailedError):
    """A group edit would invalidate live snapshots and was not confirmed."""

    def __init__(self, snapshot_count: int, database_count: int) -> None:
        super().__init__(
            f"Changing this group will delete {snapshot_count} snapshot(s) across "
            f"{database_count} database(s). Resubmit with delete_snapshots=true to confirm."
        )
        self.snapshot_count = snapshot_count
        self.database_count = database_count

    def to_detail(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "requires_confirmation": True,
            "snapshot_count": self.snapshot_count,
            "database_count": self.database_count,
            "total_snapshots": self.snapshot_count * self.database_count,
        }


class ConflictError(RewindError):
    """The request collides with existing state."""

    status_code = 409


class RollbackInProgressError(ConflictError):
    """Another rollback for the same group has not finished yet."""

    def __init__(self, group_id: str) -> None:
        super().__init__(f"A rollback is already in progress for group {group_id}")
        self.group_id = group_id


class EngineUnavailableError(RewindError):
    """No connection to the engine could be established."""

    status_code = 503


class EngineCommandError(RewindError):
    """A single engine command failed.

    Raised by gateways; orchestration code converts it into a per-database
    result or an advisory warning instead of letting it escape.
    """

    status_code = 502

    def __init__(self, message: str, *, command: str | None = None) -> None:
        super().__init__(message)
        self.command = command


class MetadataStoreError(RewindError):
    """The metadata store rejected a read or write."""

    status_code = 500


class FileApiError(RewindError):
    """The external file-management API returned an error or was unreachable."""

    status_code = 502
