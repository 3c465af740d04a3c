"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from functools import partial
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from sheetmirror.api.health import router as health_router
from sheetmirror.api.mappings import router as mappings_router
from sheetmirror.api.sync import router as sync_router
from sheetmirror.api.webhook import router as webhook_router
from sheetmirror.config import Settings
from sheetmirror.exceptions import InternalServerError, RemoteSheetError
from sheetmirror.services.checksum_store import ChecksumStore
from sheetmirror.services.mapping_registry import MappingRegistry
from sheetmirror.services.rate_limit_service import TokenBucket
from sheetmirror.services.scheduler import SyncScheduler
from sheetmirror.services.sheets_gateway import SheetsGateway, build_sheets_service
from sheetmirror.services.sync_service import SheetGateway, SyncEngine

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool, level_name: str = "INFO") -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)


def init_sync_state(
    app: FastAPI, settings: Settings, gateway: SheetGateway | None = None
) -> SyncScheduler:
    """Build the sync components and attach them to ``app.state``.

    Loads the checksum store and mappings from disk. Without an explicit
    ``gateway`` the Google Sheets client is built lazily on first use, so a
    missing credential only fails the first cycle, not startup.
    """
    store = ChecksumStore(settings.checksum_file)
    store.load()

    registry = MappingRegistry(path=settings.mappings_file)
    try:
        registry.load()
    except (OSError, ValueError) as exc:
        logger.critical(
            "Failed to load mappings from %s: %s. Fix or remove the file.",
            settings.mappings_file,
            exc,
        )
        raise

    limiter = TokenBucket(
        capacity=settings.rate_limit_max_ops_per_100s,
        window_seconds=settings.rate_limit_window_seconds,
    )

    if gateway is None:
        gateway = SheetsGateway(partial(build_sheets_service, settings.google_credentials_file))

    engine = SyncEngine(
        gateway,
        store,
        limiter,
        registry,
        retry_attempts=settings.retry_max_attempts,
        retry_base_delay=settings.retry_base_delay_seconds,
        retry_max_delay=settings.retry_max_delay_seconds,
        read_range=settings.sheet_read_range,
    )
    scheduler = SyncScheduler(engine, settings.full_sync_interval_seconds)

    app.state.checksum_store = store
    app.state.mapping_registry = registry
    app.state.rate_limiter = limiter
    app.state.sync_engine = engine
    app.state.scheduler = scheduler
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime()
    _configure_logging(settings.debug, settings.log_level)
    logger.info("Starting SheetMirror (debug=%s)", settings.debug)

    scheduler = init_sync_state(app, settings)

    logger.info("Loaded %d mappings", len(app.state.mapping_registry))

    if settings.sync_auto_start:
        await scheduler.start(run_immediately=False)

    yield

    # uvicorn turns SIGINT/SIGTERM into this shutdown phase.
    try:
        await scheduler.shutdown()
    except Exception as exc:
        logger.error("Error during scheduler shutdown: %s", exc, exc_info=True)

    logger.info("SheetMirror stopped")


def _logged_error(request: Request, exc: Exception, status_code: int, detail: str) -> JSONResponse:
    logger.error(
        "%s in %s %s: %s",
        type(exc).__name__,
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
    )
    return JSONResponse(status_code=status_code, content={"detail": detail})


def _register_error_handlers(app: FastAPI) -> None:
    """Map exceptions escaping route handlers to JSON error responses."""

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {
                "field": str(err["loc"][-1]) if err.get("loc") else "unknown",
                "message": err.get("msg", "Invalid value"),
            }
            for err in exc.errors()
        ]
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, errors)
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(RemoteSheetError)
    async def remote_sheet_error_handler(request: Request, exc: RemoteSheetError) -> JSONResponse:
        return _logged_error(request, exc, 502, "Spreadsheet service request failed")

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        return _logged_error(request, exc, 500, "Internal server error")

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        return _logged_error(request, exc, 500, "Local state file operation failed")

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return _logged_error(request, exc, 422, str(exc) or "Invalid value")

    @app.exception_handler(RuntimeError)
    async def runtime_error_handler(request: Request, exc: RuntimeError) -> JSONResponse:
        if isinstance(exc, (NotImplementedError, RecursionError)):
            raise exc
        return _logged_error(request, exc, 500, "Internal processing error")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="SheetMirror",
        description="One-way Google Sheets tab mirroring",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings

    app.include_router(health_router)
    app.include_router(sync_router)
    app.include_router(mappings_router)
    app.include_router(webhook_router)

    _register_error_handlers(app)

    # Optional static dashboard
    frontend_dir = settings.frontend_dir
    if frontend_dir.exists():
        app.mount("/", StaticFiles(directory=str(frontend_dir), html=True), name="static")

    return app


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings = Settings()
    uvicorn.run(
        "sheetmirror.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
