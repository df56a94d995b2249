"""Immutable engine connection settings.

An :class:`EngineConfig` is built once per active profile and handed to
every gateway call.  Changing the profile produces a new value; nothing
mutates a shared connection object.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from sqlalchemy.engine import URL

from rewind_core.models.profile import DEFAULT_ENGINE_PORT, DEFAULT_SNAPSHOT_PATH, Profile

DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"


class EngineConfig(BaseModel):
    """Connection parameters for one engine instance."""

    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int = Field(default=DEFAULT_ENGINE_PORT, ge=1, le=65535)
    username: str = "sa"
    password: SecretStr = SecretStr("")
    trust_certificate: bool = True
    snapshot_path: str = DEFAULT_SNAPSHOT_PATH
    odbc_driver: str = DEFAULT_ODBC_DRIVER
    connect_timeout: int = Field(default=15, ge=1)
    profile_id: str | None = None

    @classmethod
    def from_profile(
        cls,
        profile: Profile,
        *,
        odbc_driver: str = DEFAULT_ODBC_DRIVER,
        connect_timeout: int = 15,
    ) -> EngineConfig:
        """Build the config for *profile*."""
        return cls(
            host=profile.host,
            port=profile.port,
            username=profile.username,
            password=profile.password,
            trust_certificate=profile.trust_certificate,
            snapshot_path=profile.snapshot_path,
            odbc_driver=odbc_driver,
            connect_timeout=connect_timeout,
            profile_id=profile.id,
        )

    def to_url(self) -> URL:
        """SQLAlchemy URL for the ``mssql+aioodbc`` dialect."""
        query = {
            "driver": self.odbc_driver,
            "TrustServerCertificate": "yes" if self.trust_certificate else "no",
        }
        return URL.create(
            "mssql+aioodbc",
            username=self.username,
            password=self.password.get_secret_value(),
            host=self.host,
            port=self.port,
            database="master",
            query=query,
        )

    @property
    def cache_key(self) -> tuple[str, int, str, str, bool, str]:
        """Identity used to share one pooled engine between equal configs."""
        return (
            self.host,
            self.port,
            self.username,
            self.password.get_secret_value(),
            self.trust_certificate,
            self.odbc_driver,
        )
