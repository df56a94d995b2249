"""FastAPI application entry-point for the Rewind API."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from rewind_core.errors import RewindError
from rewind_core.state.database import create_tables
from sqlalchemy.exc import SQLAlchemyError

from rewind_api import __version__
from rewind_api.config import APISettings, load_api_settings
from rewind_api.dependencies import (
    dispose_file_api,
    dispose_gateway,
    dispose_metadata,
    get_file_api,
    get_gateway,
    get_metadata_store,
    get_settings,
    init_file_api,
    init_gateway,
    init_metadata,
    resolve_engine_config,
)
from rewind_api.middleware.logging import RequestLoggingMiddleware
from rewind_api.routers import databases, groups, health, history, settings, snapshots
from rewind_api.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Startup orphan sweep
# ---------------------------------------------------------------------------


async def run_startup_sweep(app_settings: APISettings) -> None:
    """Drop unreadable snapshot artifacts left by a previous run.

    Failures are logged and never block startup.
    """
    try:
        async with asynccontextmanager(get_metadata_store)() as store:
            config = await resolve_engine_config(store, app_settings)
            service = ReconciliationService(
                store,
                get_gateway(),
                config,
                file_api=get_file_api(),
                user=app_settings.default_user,
            )
            result = await service.reconcile_orphans(record_empty=False)
    except (RewindError, SQLAlchemyError) as exc:
        logger.warning("Startup orphan sweep failed: %s", exc)
        return
    logger.info("Startup orphan sweep complete: %d snapshot(s) dropped", result.cleaned_count)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Initialise the metadata store and create its tables (SQL backend).
    - Initialise the engine gateway and the optional file API client.
    - Sweep orphaned snapshots when ``startup_orphan_sweep`` is set.

    On shutdown:
    - Close the file API client, engine pools and metadata engine.
    """
    app_settings = get_settings()

    if app_settings.structured_logging:
        from rewind_api.middleware.json_formatter import JSONFormatter

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.INFO)
        logger.info("Structured JSON logging enabled")

    engine = init_metadata(app_settings)
    if engine is not None:
        await create_tables(engine)

    init_gateway(app_settings)
    init_file_api(app_settings)

    if app_settings.startup_orphan_sweep:
        await run_startup_sweep(app_settings)

    yield

    await dispose_file_api()
    await dispose_gateway()
    await dispose_metadata()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Construct and configure the FastAPI application."""
    app_settings = load_api_settings()

    app = FastAPI(
        title="Rewind API",
        description="Snapshot lifecycle orchestration for SQL Server database groups.",
        version=__version__,
        lifespan=lifespan,
    )

    # -- Middleware (outermost first) ----------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=app_settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "X-Correlation-ID", "X-User"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(groups.router, prefix="/api/v1")
    app.include_router(snapshots.router, prefix="/api/v1")
    app.include_router(settings.router, prefix="/api/v1")
    app.include_router(history.router, prefix="/api/v1")
    app.include_router(databases.router, prefix="/api/v1")

    # -- Exception handlers --------------------------------------------------

    @app.exception_handler(RewindError)
    async def rewind_error_handler(request: Request, exc: RewindError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        else:
            logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal database error"},
        )

    return app


# Module-level application instance used by ``uvicorn rewind_api.main:app``.
app = create_app()
