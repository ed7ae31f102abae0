#!/usr/bin/env python3
"""Job worker process.

Claims due unit/aggregation jobs from the shared queue and executes them with
bounded per-family concurrency. Run one or more of these next to the API.

Run (local / Railway):
  cd services/api
  python -m scripts.run_worker

Relevant env vars:
  JOB_QUEUE_BACKEND=redis          (memory only makes sense inside one process)
  FAMILY_CONCURRENCY=2
  WORKER_POLL_INTERVAL_SECONDS=2
  WORKER_BATCH_SIZE=10
"""

import asyncio
import logging
import os
import signal
import sys

# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv  # noqa: E402

from scorecache.services.worker import Worker  # noqa: E402
from scorecache.settings import get_settings  # noqa: E402
from scorecache.stores.postgres import close_db, init_db, ping_db  # noqa: E402
from scorecache.stores.queue import init_queue  # noqa: E402
from scorecache.stores.redis import close_redis, get_redis, init_redis  # noqa: E402

load_dotenv()
logger = logging.getLogger("uvicorn.error")

LEASE_SLACK_SECONDS = 60


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    settings = get_settings()
    if settings.job_queue_backend != "redis":
        logger.warning("[worker] JOB_QUEUE_BACKEND is not redis; this worker only sees its own jobs")

    await init_db()
    await ping_db()
    lease = settings.unit_time_budget_seconds + LEASE_SLACK_SECONDS
    if settings.job_queue_backend == "redis":
        await init_redis()
        queue = init_queue("redis", get_redis(), lease_seconds=lease)
    else:
        queue = init_queue("memory", lease_seconds=lease)

    worker = Worker(queue)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.run_forever()
    finally:
        await queue.close()
        await close_redis()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
