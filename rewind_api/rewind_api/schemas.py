"""Request bodies shared by the API routers.

Responses are the result models from :mod:`rewind_core.models` or plain
dicts built by the services, so only inbound payloads live here.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


class CreateGroupRequest(BaseModel):
    """Body of ``POST /groups``."""

    name: str = Field(..., min_length=1, max_length=128, description="Unique name within the active profile.")
    databases: list[str] = Field(..., min_length=1, description="Source databases, snapshotted in this order.")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value

    @field_validator("databases")
    @classmethod
    def _require_database(cls, value: list[str]) -> list[str]:
        if not any(db.strip() for db in value):
            raise ValueError("databases must name at least one database")
        return value


class UpdateGroupRequest(CreateGroupRequest):
    """Body of ``PUT /groups/{id}``.

    Set ``delete_snapshots`` to confirm that live snapshots invalidated by
    the edit may be destroyed.
    """

    delete_snapshots: bool = Field(default=False, description="Confirm deletion of invalidated snapshots.")


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class CreateSnapshotRequest(BaseModel):
    """Body of ``POST /groups/{id}/snapshots``; the whole body is optional."""

    name: str = Field(default="", max_length=256, description="Display label; blank means 'Snapshot N'.")


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class SettingsUpdate(BaseModel):
    """Partial update of the runtime settings document."""

    max_history_entries: int | None = Field(default=None, ge=1, le=10_000)
    auto_create_checkpoint: bool | None = None
    default_group: str | None = None
