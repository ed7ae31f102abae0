"""Redis store backing the shared job queue.

Handles:
- Connection lifecycle
- Key layout and TTL policies for job records

TTL policies:
- Finished job records (completed/failed): 7 days (status reporting)
- Outstanding-work markers: 1 day (guards against a lost worker)
- Execution leases: unit time budget + slack (see stores.queue)
"""

import logging

import redis.asyncio as redis

from scorecache.settings import get_settings

# TTL constants (in seconds)
TTL_FINISHED_JOB = 604800  # 7 days
TTL_OUTSTANDING_MARKER = 86400  # 1 day

# Key prefixes
PREFIX_JOB = "jobs:job:"
PREFIX_OUTSTANDING = "jobs:outstanding:"
PREFIX_INDEX = "jobs:index:"
KEY_SCHEDULED = "jobs:scheduled"
KEY_EXECUTING = "jobs:executing"

# Redis client (initialized on startup)
_redis: redis.Redis | None = None
logger = logging.getLogger("uvicorn.error")


async def init_redis(url: str | None = None) -> None:
    """Initialize Redis connection."""
    global _redis
    settings = get_settings()
    _redis = redis.from_url(
        url or settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )
    # Validate connectivity early (especially for `rediss://` in production).
    await _redis.ping()
    logger.info("Redis connected")


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> redis.Redis:
    """Get Redis client instance."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis
