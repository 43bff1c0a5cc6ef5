"""
JudgeSync - FastAPI Application

Entry point for the sync API.

Routes:
- /api/sync/*                  sync triggers (X-API-Key)
- /api/webhooks/courtlistener  CourtListener push events and handshake
- /api/admin/*                 status snapshot and queue control (X-Admin-Key)
- /health                      liveness
- /health/ready                readiness (database reachable)

Run:
    uvicorn judgesync.main:app --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from . import __version__
from .config import configure_logging, get_settings
from .core.errors import register_exception_handlers
from .db import close_db_pool, init_db_pool, ping_db
from .routers import admin_router, sync_router, webhooks_router
from .scheduler import init_scheduler, shutdown_scheduler
from .services.rate_limiter import close_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup: open the database pool, start the scheduler.
    Shutdown: stop the scheduler, close Redis and the pool.
    """
    settings = get_settings()
    logger.info(f"Starting JudgeSync v{__version__} ({settings.environment})")

    try:
        await init_db_pool()
    except Exception as e:
        # Stay up so /health answers; queries fail until the DB is back
        logger.error(f"Failed to initialize database pool: {e}")

    if settings.SCHEDULER_ENABLED:
        scheduler = init_scheduler()
        scheduler.start()
        logger.info(f"Job scheduler started with {len(scheduler.get_jobs())} jobs")

    yield

    logger.info("Shutting down JudgeSync...")
    shutdown_scheduler()
    await close_redis()
    await close_db_pool()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    configure_logging()

    app = FastAPI(
        title="JudgeSync",
        description="Keeps court, judge and decision records in sync with CourtListener.",
        version=__version__,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(sync_router, prefix="/api")
    app.include_router(webhooks_router, prefix="/api")
    app.include_router(admin_router, prefix="/api")

    @app.get("/health", tags=["Health"])
    async def health() -> Dict[str, Any]:
        """Liveness: the process is up."""
        return {"service": "judgesync", "status": "ok", "version": __version__}

    @app.get("/health/ready", tags=["Health"])
    async def ready() -> JSONResponse:
        if await ping_db():
            return JSONResponse({"status": "ready"})
        return JSONResponse({"status": "unavailable"}, status_code=503)

    return app


app = create_app()
