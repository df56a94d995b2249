"""Health endpoint: engine connectivity and orphaned snapshot count.

Always returns HTTP 200 so load balancers see the service as alive; the
``engine`` field tells whether the engine is reachable.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter
from rewind_core.errors import EngineCommandError, EngineUnavailableError

from rewind_api import __version__
from rewind_api.dependencies import EngineConfigDep, GatewayDep, StoreDep
from rewind_api.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)

# Keep probes fast even when the engine hangs.
_ENGINE_HEALTH_TIMEOUT = 5.0

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(store: StoreDep, gateway: GatewayDep, config: EngineConfigDep) -> dict[str, Any]:
    result: dict[str, Any] = {
        "status": "healthy",
        "version": __version__,
        "engine": "ok",
        "orphaned_snapshots": 0,
    }
    service = ReconciliationService(store, gateway, config)
    try:
        orphans = await asyncio.wait_for(service.find_orphans(), timeout=_ENGINE_HEALTH_TIMEOUT)
    except (EngineUnavailableError, EngineCommandError, TimeoutError) as exc:
        logger.warning("Engine health check failed: %s", exc)
        result["status"] = "degraded"
        result["engine"] = "unavailable"
        return result
    result["orphaned_snapshots"] = len(orphans)
    return result
