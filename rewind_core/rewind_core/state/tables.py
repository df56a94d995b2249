"""SQLAlchemy 2.0 ORM table definitions for the Rewind metadata store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
same definitions back the embedded SQLite store and the remote PostgreSQL
store.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Cross-dialect JSON type: JSONB on PostgreSQL, plain JSON (TEXT) on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all Rewind tables."""


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


class GroupTable(Base):
    """Named sets of source databases."""

    __tablename__ = "groups"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    databases: Mapped[list[str]] = mapped_column(_JsonType, nullable=False, default=list)
    profile_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (UniqueConstraint("name", "profile_id", name="uq_groups_name_profile"),)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class SnapshotTable(Base):
    """One row per coordinated capture; per-database outcomes live in JSON."""

    __tablename__ = "snapshots"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    group_id: Mapped[str] = mapped_column(String(64), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    group_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    display_name: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    is_automatic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    database_snapshots: Mapped[list[dict[str, Any]]] = mapped_column(_JsonType, nullable=False, default=list)

    __table_args__ = (Index("ix_snapshots_group_sequence", "group_id", "sequence"),)


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class HistoryTable(Base):
    """Append-only audit trail of orchestration actions."""

    __tablename__ = "history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    operation_type: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    user_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(_JsonType, nullable=False, default=dict)
    results: Mapped[list[dict[str, Any]]] = mapped_column(_JsonType, nullable=False, default=list)

    __table_args__ = (Index("ix_history_timestamp", "timestamp"),)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class SettingsTable(Base):
    """Single-row document holding runtime settings."""

    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    data: Mapped[dict[str, Any]] = mapped_column(_JsonType, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class ProfileTable(Base):
    """Connection identities for the engine."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    host: Mapped[str] = mapped_column(String(256), nullable=False)
    port: Mapped[int] = mapped_column(Integer, nullable=False, default=1433)
    username: Mapped[str] = mapped_column(String(256), nullable=False)
    password: Mapped[str] = mapped_column(Text, nullable=False, default="")
    trust_certificate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    snapshot_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )
