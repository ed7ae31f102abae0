"""API routes."""

from fastapi import APIRouter

from scorecache.routes import admin, cache, refresh
from scorecache.schemas import ErrorResponse

api_router = APIRouter(
    responses={
        404: {"model": ErrorResponse, "description": "Unknown family, configuration or partition"},
        422: {"model": ErrorResponse, "description": "Configuration invalid"},
    }
)

# Cache reads (memory -> durable -> missing)
api_router.include_router(cache.router, prefix="/v1/cache", tags=["cache"])

# Refresh orchestration, status and staleness
api_router.include_router(refresh.router, prefix="/v1/refresh", tags=["refresh"])

# Admin endpoints (configurations, purge, source changes)
api_router.include_router(admin.router, prefix="/v1/admin", tags=["admin"])
