"""Engine introspection: source databases and the connection test."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from rewind_api.dependencies import EngineConfigDep, GatewayDep
from rewind_api.services.database_service import DatabaseService

router = APIRouter(tags=["databases"])


@router.get("/databases")
async def list_databases(gateway: GatewayDep, config: EngineConfigDep) -> list[dict[str, Any]]:
    """User databases on the engine, excluding system databases and snapshots."""
    return await DatabaseService(gateway, config).list_databases()


@router.post("/test-connection")
async def test_connection(gateway: GatewayDep, config: EngineConfigDep) -> dict[str, Any]:
    """Probe the engine; always 200, with ``success`` telling the outcome."""
    return await DatabaseService(gateway, config).test_connection()
