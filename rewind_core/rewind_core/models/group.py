"""Group model: a named set of source databases snapshotted together."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field


class Group(BaseModel):
    """Named, ordered set of source databases sharing one connection profile.

    The database list is ordered: the snapshot creator and rollback
    coordinator walk it front to back.  Change detection in the group guard
    treats it as an unordered set.
    """

    id: str = Field(
        ...,
        min_length=1,
        description="Unique identifier for the group.",
    )
    name: str = Field(
        ...,
        min_length=1,
        description="Human-readable group name, unique within its profile.",
    )
    databases: list[str] = Field(
        default_factory=list,
        description="Ordered source database names covered by the group.",
    )
    profile_id: str | None = Field(
        default=None,
        description="Owning connection profile, if any.",
    )
    created_by: str | None = Field(
        default=None,
        description="Identity that created the group.",
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
