"""Audit trail of orchestration actions."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from rewind_api.dependencies import StoreDep, UserDep
from rewind_api.services.history_service import HistoryService

router = APIRouter(prefix="/history", tags=["history"])


@router.get("")
async def list_history(
    store: StoreDep,
    user: UserDep,
    limit: int | None = Query(None, ge=1, le=10_000, description="Newest entries to return."),
) -> list[dict[str, Any]]:
    """History entries, newest first."""
    return await HistoryService(store, user=user).list_entries(limit)


@router.delete("")
async def clear_history(store: StoreDep, user: UserDep) -> dict[str, Any]:
    return await HistoryService(store, user=user).clear()
