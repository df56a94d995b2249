"""Naming conventions shared by snapshot creation, rollback and cleanup.

Every engine-side artifact name the orchestrator produces or recognises is
derived here.  The layout is::

    snapshot id   = <normalised group name>_<hash8>
    artifact name = <snapshot id>_<database>
    physical file = <snapshot path><sep><artifact name>_<logical file>.ss

Normalised group names contain only ``[a-z0-9]``, so the first underscore in
an artifact name always terminates the group segment and the eight hex
characters after it are the content hash.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable
from datetime import UTC, datetime

from rewind_core.models.group import Group
from rewind_core.models.snapshot import Snapshot

SNAPSHOT_FILE_EXTENSION = ".ss"
AUTOMATIC_CHECKPOINT_LABEL = "Automatic checkpoint"

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_MANAGED_RE = re.compile(r"^[a-z0-9]+_[0-9a-f]{8}_.+$")


def normalize_group_name(name: str) -> str:
    """Lowercase *name* and strip everything outside ``[a-z0-9]``.

    Falls back to ``"group"`` when nothing survives so identifiers never
    start with an underscore.
    """
    normalized = _NON_ALNUM_RE.sub("", (name or "").lower())
    return normalized or "group"


def hash8(label: str, timestamp_iso: str) -> str:
    """First eight hex digits of SHA-256 over *label* + *timestamp_iso*."""
    digest = hashlib.sha256(f"{label}{timestamp_iso}".encode()).hexdigest()
    return digest[:8]


def generate_snapshot_id(group_name: str, label: str, now: datetime | None = None) -> str:
    """Build a collision-resistant snapshot identifier.

    Parameters
    ----------
    group_name:
        Current group name; normalised before use.
    label:
        Operator-supplied display label.
    now:
        Creation instant.  Defaults to the current UTC time.
    """
    instant = now or datetime.now(UTC)
    return f"{normalize_group_name(group_name)}_{hash8(label, instant.isoformat())}"


def derive_artifact_name(snapshot_id: str, database: str) -> str:
    """Engine-side artifact name for *database* within *snapshot_id*."""
    return f"{snapshot_id}_{database}"


def snapshot_id_from_artifact(artifact: str, database: str) -> str | None:
    """Invert :func:`derive_artifact_name` given the artifact's source database."""
    suffix = f"_{database}"
    if not artifact.endswith(suffix) or len(artifact) == len(suffix):
        return None
    return artifact[: -len(suffix)]


def path_separator(snapshot_path: str) -> str:
    """Separator matching the engine host's path style."""
    return "\\" if "\\" in snapshot_path or re.match(r"^[A-Za-z]:", snapshot_path) else "/"


def derive_physical_file_name(snapshot_path: str, artifact: str, logical_file: str) -> str:
    """Physical sparse-file path for one data file of *artifact*."""
    sep = path_separator(snapshot_path)
    base = snapshot_path.rstrip("\\/")
    return f"{base}{sep}{artifact}_{logical_file}{SNAPSHOT_FILE_EXTENSION}"


def file_basename(path: str) -> str:
    """Last path component, accepting both separator styles."""
    return re.split(r"[\\/]", path)[-1]


def matches_group_convention(artifact: str, group_name: str) -> bool:
    """True when *artifact* was produced for the group called *group_name*."""
    prefix = f"{normalize_group_name(group_name)}_"
    if not artifact.startswith(prefix):
        return False
    rest = artifact[len(prefix) :]
    return bool(re.match(r"^[0-9a-f]{8}(_|$)", rest))


def matches_managed_convention(artifact: str) -> bool:
    """True when *artifact* has the shape of any orchestrator-created snapshot.

    This is deliberately wider than :func:`matches_group_convention`: it
    also catches artifacts left by other groups or by earlier metadata that
    was lost.
    """
    return bool(_MANAGED_RE.match(artifact))


def next_sequence(snapshots: Iterable[Snapshot]) -> int:
    """Max existing sequence + 1, so gaps left by deletions are never refilled."""
    return max((s.sequence for s in snapshots), default=0) + 1


def resolve_group_name(snapshot: Snapshot, group: Group | None) -> str:
    """Group name for *snapshot*, falling back to the live group's name.

    Older metadata may lack the denormalised ``group_name``.
    """
    if snapshot.group_name:
        return snapshot.group_name
    if group is not None and group.name:
        return group.name
    return snapshot.group_id


def default_label(sequence: int) -> str:
    return f"Snapshot {sequence}"
