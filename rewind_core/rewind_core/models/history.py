"""Audit trail models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class OperationType(str, Enum):
    """Kinds of orchestration actions recorded in history."""

    CREATE_GROUP = "create_group"
    UPDATE_GROUP = "update_group"
    DELETE_GROUP = "delete_group"
    CREATE_SNAPSHOT = "create_snapshot"
    DELETE_SNAPSHOT = "delete_snapshot"
    CLEANUP_SNAPSHOT = "cleanup_snapshot"
    CLEANUP_ALL = "cleanup_snapshots"
    ROLLBACK = "rollback"
    ORPHAN_CLEANUP = "orphan_cleanup"
    FILE_CLEANUP = "file_cleanup"


class OperationResult(BaseModel):
    """Per-database outcome reported in a history entry or API response."""

    database: str
    success: bool
    error: str | None = None


class HistoryEntry(BaseModel):
    """Immutable record of one orchestration action."""

    id: int | None = Field(
        default=None,
        description="Store-assigned identifier; None until persisted.",
    )
    operation_type: OperationType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    user_name: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    results: list[OperationResult] = Field(default_factory=list)
