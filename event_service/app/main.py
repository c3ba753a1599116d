"""
Event Service FastAPI Application
=================================

Hosts the pub/sub subsystem: starts the event router with the application
and shuts it down, releasing the broker connections, before exit.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api.v1.health import router as health_router
from .core.event_management import close_events, init_events
from .core.setting import get_settings
from .utils.logging import setup_event_logging

settings = get_settings()
logger = setup_event_logging(
    "event_service",
    log_level=settings.LOG_LEVEL,
    enable_file_logging=settings.ENABLE_FILE_LOGGING,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager for startup and shutdown."""
    startup_start = time.time()
    logger.info(
        "Starting event service",
        extra={
            "environment": settings.ENVIRONMENT,
            "debug_mode": settings.DEBUG,
            "service_version": settings.APP_VERSION,
        },
    )

    # Never raises: the service stays up without pub/sub
    await init_events()

    logger.info(
        "Event service started",
        extra={"total_startup_duration_ms": int((time.time() - startup_start) * 1000)},
    )

    yield

    logger.info("Shutting down event service")
    await close_events()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        docs_url="/docs" if settings.DEBUG else None,
    )
    _setup_routers(app)
    return app


def _setup_routers(app: FastAPI) -> None:
    app.include_router(health_router, tags=["Health"])
    logger.info(
        "API routes configured",
        extra={"routers": [{"router": "health", "prefix": "", "tags": ["Health"]}]},
    )


app = create_app()
