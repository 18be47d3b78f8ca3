"""FastAPI application for psi-agenda."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from psi_agenda import __version__
from psi_agenda.api.dependencies import AgendaRegistry
from psi_agenda.api.middleware import APIKeyMiddleware, RequestLoggingMiddleware
from psi_agenda.api.routes import agenda, health, workspaces
from psi_agenda.config import get_settings
from psi_agenda.core.database import close_db, get_session_factory, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting psi-agenda API")

    settings = get_settings()
    await init_db()

    registry = AgendaRegistry(
        get_session_factory(),
        debounce_seconds=settings.persist_debounce_seconds,
    )
    app.state.agenda_registry = registry

    logger.info("psi-agenda API started successfully")

    yield

    # Drain pending writes before the engine goes away
    logger.info("Shutting down psi-agenda API")
    await registry.close()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="psi-agenda API",
        description="Recurring session scheduling and billing for therapy practices",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestLoggingMiddleware)

    if settings.has_api_key:
        app.add_middleware(APIKeyMiddleware, api_key=settings.api_key)

    app.include_router(health.router, tags=["health"])
    app.include_router(agenda.router, prefix="/api/v1", tags=["agenda"])
    app.include_router(workspaces.router, prefix="/api/v1", tags=["workspaces"])

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.debug_mode else None,
            },
        )

    return app
