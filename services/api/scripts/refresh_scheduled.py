#!/usr/bin/env python3
"""Scheduled refresh trigger for Railway Cron.

Schedule:
- Run once per day (or week) in Railway Cron Jobs.

Behavior:
- For each family: orchestrate the family's active configuration
  (spaced unit jobs + trailing aggregation job). Units already outstanding
  are skipped, so overlapping runs queue no duplicates.
- Prunes source change signals older than twice the cache max age.

Run (local / Railway):
  cd services/api
  python -m scripts.refresh_scheduled

Optional env vars:
  REFRESH_FAMILIES="decades,festivals"
"""

import asyncio
import logging
import os
import sys
from dataclasses import asdict
from datetime import timedelta

# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv  # noqa: E402

from scorecache.errors import NotFound  # noqa: E402
from scorecache.services.families import FAMILIES  # noqa: E402
from scorecache.services.orchestrator import orchestrate_active  # noqa: E402
from scorecache.services.source_data import prune_source_changes  # noqa: E402
from scorecache.settings import get_settings  # noqa: E402
from scorecache.stores.postgres import close_db, get_session, init_db, ping_db, utcnow  # noqa: E402
from scorecache.stores.queue import init_queue  # noqa: E402
from scorecache.stores.redis import close_redis, get_redis, init_redis  # noqa: E402

load_dotenv()
logger = logging.getLogger("uvicorn.error")


def _parse_csv_env(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    return [p.strip() for p in raw.split(",") if p.strip()]


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    settings = get_settings()

    # Initialize shared connections (same as API lifespan, but for a one-off cron run)
    await init_db()
    await ping_db()
    if settings.job_queue_backend != "redis":
        raise SystemExit("refresh_scheduled requires JOB_QUEUE_BACKEND=redis (workers must see the jobs)")
    await init_redis()
    queue = init_queue("redis", get_redis())

    try:
        families = _parse_csv_env("REFRESH_FAMILIES", sorted(FAMILIES))
        results = []
        for family in families:
            try:
                result = await orchestrate_active(family, queue=queue)
            except NotFound as e:
                logger.warning(f"[refresh] skip {family}: {e}")
                continue
            results.append(asdict(result))

        cutoff = utcnow() - timedelta(hours=settings.cache_max_age_hours * 2)
        async with get_session() as session:
            pruned = await prune_source_changes(session, cutoff)

        print({"orchestrations": results, "pruned_source_changes": pruned})
    finally:
        await close_redis()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
