"""API-layer configuration loaded from environment variables."""

from __future__ import annotations

from enum import Enum
from typing import Self

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MetadataBackend(str, Enum):
    """Where orchestration metadata is persisted."""

    SQL = "sql"
    FILE = "file"


class EngineBackend(str, Enum):
    """Which engine gateway adapter to use."""

    MSSQL = "mssql"
    MEMORY = "memory"


class APISettings(BaseSettings):
    """FastAPI application settings.

    All values can be overridden via environment variables prefixed with
    ``REWIND_`` (e.g. ``REWIND_ENGINE_HOST=db01``) or through a ``.env`` file
    in the working directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="REWIND_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    host: str = "0.0.0.0"
    port: int = 3001
    debug: bool = False

    # Metadata store adapter, selected once at startup.
    metadata_backend: MetadataBackend = MetadataBackend.SQL
    # SQLite (embedded) or PostgreSQL (remote) connection string.
    metadata_url: str = "sqlite+aiosqlite:///.rewind/metadata.db"
    # Directory holding JSON documents when metadata_backend=file.
    metadata_dir: str = ".rewind"

    # Engine gateway adapter; "memory" runs without a SQL Server instance.
    engine_backend: EngineBackend = EngineBackend.MSSQL

    # Default connection profile, used when the store has no active profile.
    engine_host: str = "localhost"
    engine_port: int = 1433
    engine_username: str = "sa"
    engine_password: SecretStr = SecretStr("")
    engine_trust_certificate: bool = True
    engine_connect_timeout: int = 15
    odbc_driver: str = "ODBC Driver 18 for SQL Server"
    snapshot_path: str = "/var/opt/mssql/snapshots"

    # External file-management API used to list and delete snapshot files.
    file_api_url: str = ""
    file_api_username: str = ""
    file_api_password: SecretStr = SecretStr("")
    file_api_timeout: float = 10.0

    # Drop unreadable snapshot artifacts during startup.
    startup_orphan_sweep: bool = True

    # Identity recorded in history entries when the request carries none.
    default_user: str = "system"

    # Origins permitted by the CORS middleware.
    cors_origins: list[str] = ["http://localhost:3000"]

    # Whether CORS responses include credentials (cookies, auth headers).
    cors_allow_credentials: bool = True

    # Structured JSON logging for log aggregators.
    structured_logging: bool = False

    @model_validator(mode="after")
    def _validate_cors_credentials_not_wildcard(self) -> Self:
        """Reject wildcard origins when credentials are enabled.

        Browsers silently reject ``Access-Control-Allow-Origin: *`` when
        ``Access-Control-Allow-Credentials: true`` is present.  Fail fast at
        startup instead.
        """
        if self.cors_allow_credentials and "*" in self.cors_origins:
            raise ValueError(
                "Cannot use wildcard origins with credentials. "
                "Specify explicit origins instead of '*' when "
                "cors_allow_credentials=True."
            )
        return self


def load_api_settings() -> APISettings:
    """Construct settings from the environment / ``.env`` file."""
    return APISettings()
