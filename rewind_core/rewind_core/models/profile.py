"""Connection profile model."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field, SecretStr

DEFAULT_ENGINE_PORT = 1433
DEFAULT_SNAPSHOT_PATH = "/var/opt/mssql/snapshots"


class Profile(BaseModel):
    """Connection identity scoping one or more groups.

    Only consumed to build an :class:`~rewind_core.engine.config.EngineConfig`;
    profile management happens outside the orchestrator.
    """

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    host: str = Field(default="localhost")
    port: int = Field(default=DEFAULT_ENGINE_PORT, ge=1, le=65535)
    username: str = Field(default="sa")
    password: SecretStr = Field(default=SecretStr(""))
    trust_certificate: bool = Field(default=True)
    snapshot_path: str = Field(
        default=DEFAULT_SNAPSHOT_PATH,
        description="Directory on the engine host where snapshot files are written.",
    )
    description: str | None = None
    is_active: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
