"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown:

  startup:  wait for the database (with retries), create tables + seed,
            start the broadcast hub, create the call board
  shutdown: stop the hub (closes every subscriber), dispose the engine

Typed queue errors become HTTP statuses here, in one place.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from queueboard import __version__
from queueboard.api import api_router
from queueboard.config import settings
from queueboard.errors import (
    ConflictError,
    NotFoundError,
    StoreUnavailableError,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. The hub loop is a background task on the server's event loop.
    """
    from queueboard.db.bootstrap import init_db
    from queueboard.db.engine import engine
    from queueboard.realtime.hub import BroadcastHub
    from queueboard.services.queue_coordinator import CallBoard

    logger.info(
        "queueboard.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    await init_db(engine)

    hub = BroadcastHub()
    hub.start()
    app.state.hub = hub
    app.state.board = CallBoard()

    yield

    # Shutdown
    logger.info("queueboard.shutdown")
    await hub.stop()
    await engine.dispose()


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    """Map the queue error taxonomy onto HTTP statuses."""

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return _error_response(404, exc)

    @app.exception_handler(ConflictError)
    async def conflict(request: Request, exc: ConflictError):
        logger.warning("queue.conflict", error=str(exc))
        return _error_response(409, exc)

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable(request: Request, exc: StoreUnavailableError):
        return _error_response(503, exc)

    @app.exception_handler(SQLAlchemyError)
    async def store_error(request: Request, exc: SQLAlchemyError):
        logger.error("store.error", error=str(exc))
        return JSONResponse(status_code=503, content={"detail": "Database error"})


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Queueboard",
        description="Ticket queue coordination — kiosk, admin console and live display",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    from queueboard.middleware.request_id import RequestIdMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Mount API routes
    app.include_router(api_router)

    # Mount WebSocket route (real-time events for display boards)
    from queueboard.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: queueboard.main:app)
app = create_app()
