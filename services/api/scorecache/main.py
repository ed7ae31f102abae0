"""FastAPI application entry point.

Score Cache API - partitioned score computation with a two-tier result cache.
"""

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from scorecache.errors import ConfigurationInvalid, NotFound, ScoreCacheError
from scorecache.routes import api_router
from scorecache.services.cache_reader import init_cache_reader
from scorecache.settings import get_settings
from scorecache.stores.postgres import init_db, close_db, ping_db
from scorecache.stores.queue import init_queue, set_queue
from scorecache.stores.redis import init_redis, close_redis, get_redis

logger = logging.getLogger("uvicorn.error")

# Lease slack on top of the unit time budget before a claimed job is re-delivered
LEASE_SLACK_SECONDS = 60


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    settings = get_settings()
    lease = settings.unit_time_budget_seconds + LEASE_SLACK_SECONDS

    # Initialize database (skip in tests if no DB available)
    try:
        await init_db()
        await ping_db()
        logger.info("Postgres connected")
    except Exception:
        logger.exception("Postgres init failed")

    # Initialize Redis + job queue
    if settings.job_queue_backend == "redis":
        try:
            await init_redis()
            init_queue("redis", get_redis(), lease_seconds=lease)
        except Exception:
            logger.exception("Redis init failed")
    else:
        init_queue("memory", lease_seconds=lease)

    init_cache_reader()
    if settings.inline_compute_enabled:
        logger.warning("DEV inline compute on cache miss is ENABLED")

    yield

    # Shutdown
    set_queue(None)
    await close_redis()
    await close_db()


def _error(status_code: int, code: str, message: str, detail: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, "detail": detail}},
    )


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Partitioned score computation with a two-tier result cache",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers for structured error format
    @app.exception_handler(ConfigurationInvalid)
    async def configuration_invalid_handler(request: Request, exc: ConfigurationInvalid) -> JSONResponse:
        return _error(422, exc.code, str(exc), {"errors": exc.errors})

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
        return _error(404, exc.code, str(exc))

    @app.exception_handler(ScoreCacheError)
    async def score_cache_error_handler(request: Request, exc: ScoreCacheError) -> JSONResponse:
        logger.error(f"[api] {exc.code}: {exc}")
        return _error(
            500,
            "INTERNAL_ERROR",
            str(exc) if settings.debug else "Internal server error",
            {"code": exc.code},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler returning structured error format."""
        logger.exception("[api] unhandled error")
        return _error(500, "INTERNAL_ERROR", str(exc) if settings.debug else "Internal server error")

    # Health check endpoint
    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, bool]:
        """Health check endpoint."""
        return {"ok": True}

    # Include API routes
    app.include_router(api_router)

    return app


# Application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "scorecache.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
