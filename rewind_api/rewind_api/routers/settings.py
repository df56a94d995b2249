"""Runtime settings stored in the metadata store."""

from __future__ import annotations

import logging

from fastapi import APIRouter
from rewind_core.models.settings import Settings

from rewind_api.dependencies import StoreDep
from rewind_api.schemas import SettingsUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("")
async def get_settings(store: StoreDep) -> Settings:
    return await store.get_settings()


@router.put("")
async def update_settings(body: SettingsUpdate, store: StoreDep) -> Settings:
    """Apply the fields present in the body; omitted fields keep their value."""
    current = await store.get_settings()
    changes = body.model_dump(exclude_none=True)
    updated = await store.save_settings(current.model_copy(update=changes))
    logger.info("Settings updated: %s", ", ".join(sorted(changes)) or "no changes")
    return updated
