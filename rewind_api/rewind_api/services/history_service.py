"""History recording shared by every orchestration service."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from rewind_core.models.history import HistoryEntry, OperationResult, OperationType
from rewind_core.state.store import MetadataStore

logger = logging.getLogger(__name__)

# Cap on names embedded in a single history entry.
MAX_NAMES_IN_DETAILS = 10


class HistoryService:
    """Append and read audit entries.

    Parameters
    ----------
    store:
        Metadata store; it trims history to the configured maximum on append.
    user:
        Identity recorded on entries written through this service.
    """

    def __init__(self, store: MetadataStore, user: str | None = None) -> None:
        self._store = store
        self._user = user

    async def record(
        self,
        operation_type: OperationType,
        details: dict[str, Any] | None = None,
        results: Iterable[OperationResult] = (),
    ) -> HistoryEntry:
        entry = HistoryEntry(
            operation_type=operation_type,
            user_name=self._user,
            details=details or {},
            results=list(results),
        )
        stored = await self._store.add_history_entry(entry)
        logger.debug("Recorded %s history entry", operation_type.value)
        return stored

    async def list_entries(self, limit: int | None = None) -> list[dict[str, Any]]:
        entries = await self._store.list_history(limit)
        return [e.model_dump(mode="json") for e in entries]

    async def clear(self) -> dict[str, Any]:
        removed = await self._store.clear_history()
        logger.info("History cleared (%d entries)", removed)
        return {"success": True, "deleted": removed}
