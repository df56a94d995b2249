"""Runtime settings persisted in the metadata store."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Operator-tunable behaviour, stored as a single document.

    Distinct from :class:`rewind_api.config.APISettings`, which is process
    configuration read from the environment at startup.
    """

    max_history_entries: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="History is trimmed oldest-first to this many entries.",
    )
    auto_create_checkpoint: bool = Field(
        default=True,
        description="Capture a fresh checkpoint immediately after every rollback.",
    )
    default_group: str = Field(
        default="",
        description="Group preselected by clients; empty for none.",
    )
