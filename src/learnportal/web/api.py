"""FastAPI application factory.

Main entry point for the portal Web API. One engine per app, kept in
app.state and shared by every request.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from learnportal import __version__
from learnportal.core.engine import PortalEngine, create_engine
from learnportal.core.errors import PersistenceError, SessionError
from learnportal.web.routes import (
    admin_router,
    auth_router,
    health_router,
    progress_router,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup/shutdown events."""
    engine: PortalEngine = app.state.engine
    engine.auth.initialize()
    if engine.config.sync.enabled:
        await engine.coordinator.check_connection()
    logger.info(
        "api_startup",
        data_dir=str(engine.config.storage.data_dir.absolute()),
        users=engine.users.count(),
        sync_online=engine.coordinator.is_online,
    )
    yield
    await engine.aclose()
    logger.info("api_shutdown")


async def _persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("request_persist_failed", path=request.url.path, table=exc.table)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc)},
    )


async def _session_error_handler(request: Request, exc: SessionError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": str(exc)},
    )


def create_app(engine: PortalEngine | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        engine: Engine to serve (built from the app config when None)

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="Learning Portal API",
        description="Session and progress engine of the learning portal",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.engine = engine or create_engine()

    # CORS middleware for web clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PersistenceError, _persistence_error_handler)
    app.add_exception_handler(SessionError, _session_error_handler)

    # Include routers
    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(progress_router)
    app.include_router(admin_router)

    return app
