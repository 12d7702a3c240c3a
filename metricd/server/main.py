"""
metricd - Server Application

FastAPI application that receives metrics from agents, stores them and
serves them back.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.middleware.gzip import GZipMiddleware

from metricd import __version__
from metricd.config import ServerSettings, load_server_settings
from metricd.lib.logger import configure_logging
from metricd.models import ParseError
from metricd.server.backup import BackupManager
from metricd.server.middleware import RequestDecompressionMiddleware, SignatureMiddleware
from metricd.server.routers import home, update, value
from metricd.storage import MetricNotFound, MetricStore, StorageUnavailable, open_storage

logger = structlog.get_logger(__name__)

# Seconds allowed for in-flight requests on shutdown
GRACE_PERIOD = 3


def create_app(
    settings: Optional[ServerSettings] = None,
    store: Optional[MetricStore] = None,
) -> FastAPI:
    """Build the server application; `store` overrides the configured backend."""
    settings = settings or ServerSettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        # Startup
        logger.info(
            "Starting metricd server",
            version=__version__,
            address=settings.address,
            store_interval=settings.store_interval,
            store_file=settings.store_file,
        )

        app.state.store = store if store is not None else await open_storage(settings.database_dsn)
        app.state.backup = BackupManager(
            app.state.store, settings.store_interval, settings.store_file
        )

        if settings.restore:
            await app.state.backup.restore()
        await app.state.backup.start()

        yield

        # Shutdown
        logger.info("Shutting down metricd server")
        await app.state.backup.stop()
        await app.state.store.close()

    app = FastAPI(
        title="metricd",
        description="Metric collection server",
        version=__version__,
        lifespan=lifespan,
    )

    # Added innermost first: signature checks see the decompressed body
    app.add_middleware(SignatureMiddleware, key=settings.key)
    app.add_middleware(RequestDecompressionMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=0)

    # Request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming requests."""
        start_time = datetime.utcnow()

        response = await call_next(request)

        duration_ms = (datetime.utcnow() - start_time).total_seconds() * 1000

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
            client=request.client.host if request.client else "unknown",
        )

        return response

    @app.exception_handler(ParseError)
    async def parse_error_handler(request: Request, exc: ParseError):
        logger.info("Bad metric value", path=request.url.path, error=str(exc))
        return PlainTextResponse(str(exc), status_code=400)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.info("Bad request body", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=400, content={"detail": _errors(exc)})

    @app.exception_handler(MetricNotFound)
    async def not_found_handler(request: Request, exc: MetricNotFound):
        logger.info("Metric not found", kind=exc.kind.value, name=exc.name)
        return PlainTextResponse(str(exc), status_code=404)

    @app.exception_handler(StorageUnavailable)
    async def storage_error_handler(request: Request, exc: StorageUnavailable):
        logger.error("Storage unavailable", path=request.url.path, op=exc.op, error=str(exc.cause))
        return PlainTextResponse("storage unavailable", status_code=500)

    # Exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions."""
        logger.exception("Unhandled exception", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    app.include_router(update.router, tags=["Update"])
    app.include_router(value.router, tags=["Value"])
    app.include_router(home.router, tags=["Home"])

    return app


def _errors(exc: RequestValidationError) -> List[str]:
    return [str(error.get("msg", "")) for error in exc.errors()]


def run(argv: Optional[List[str]] = None) -> None:
    """Console entry point."""
    settings = load_server_settings(argv)
    configure_logging(settings.log_level)

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        access_log=False,
        log_config=None,
        timeout_graceful_shutdown=GRACE_PERIOD,
    )


if __name__ == "__main__":
    run()
