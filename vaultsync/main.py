"""FastAPI application entry point for the GUI shell."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from vaultsync.api.health import router as health_router
from vaultsync.api.sync import router as sync_router
from vaultsync.config import Settings
from vaultsync.exceptions import AuthError, LogParseError, ProviderError, SyncError, VaultIOError
from vaultsync.providers.registry import create_provider
from vaultsync.services.sync_service import SyncService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from vaultsync.providers.base import SyncProvider

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("watchdog").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    _configure_logging(settings.debug)
    logger.info("Starting vaultsync (provider=%s, vault=%s)", settings.provider, settings.vault_dir)

    if getattr(app.state, "sync_service", None) is None:
        try:
            provider = create_provider(settings)
        except Exception as exc:
            logger.critical("Failed to initialize the %s provider: %s", settings.provider, exc)
            raise
        app.state.sync_service = SyncService.from_settings(settings, provider)

    try:
        settings.vault_dir.mkdir(parents=True, exist_ok=True)
        service: SyncService = app.state.sync_service
        service.open_vault(settings.vault_dir).ensure_structure()
    except OSError as exc:
        logger.critical("Failed to initialize vault at %s: %s", settings.vault_dir, exc)
        raise

    yield

    close = getattr(app.state.sync_service.provider, "close", None)
    if callable(close):
        try:
            close()
        except Exception as exc:
            logger.error("Error during provider shutdown: %s", exc, exc_info=True)

    logger.info("vaultsync stopped")


def create_app(settings: Settings | None = None, provider: SyncProvider | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    ``provider`` overrides the one ``settings`` would build.
    """
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="vaultsync",
        description="Local-first vault synchronization engine",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.sync_service = (
        SyncService.from_settings(settings, provider) if provider is not None else None
    )

    app.include_router(health_router)
    app.include_router(sync_router)

    # Global exception handlers

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        logger.error("AuthError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=401, content={"detail": str(exc)})

    @app.exception_handler(ProviderError)
    async def provider_error_handler(request: Request, exc: ProviderError) -> JSONResponse:
        logger.error(
            "ProviderError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=502,
            content={"detail": "Remote sync provider unavailable"},
        )

    @app.exception_handler(VaultIOError)
    async def vault_io_error_handler(request: Request, exc: VaultIOError) -> JSONResponse:
        logger.error("VaultIOError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={"detail": f"Vault file operation failed: {exc.path}"},
        )

    @app.exception_handler(LogParseError)
    async def log_parse_error_handler(request: Request, exc: LogParseError) -> JSONResponse:
        logger.error(
            "LogParseError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Data integrity error"},
        )

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
        logger.error("SyncError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal sync error"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        message = str(exc) or "Invalid value"
        return JSONResponse(
            status_code=422,
            content={"detail": message},
        )

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        logger.error("OSError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Storage operation failed"},
        )

    return app


def cli_entry() -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    settings = Settings()
    _configure_logging(settings.debug)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
