"""Job worker: claims due jobs and runs them with bounded per-family concurrency.

Each job succeeds or fails on its own:
- success: complete
- failure with attempts left: retryable, rescheduled with exponential backoff
- failure on the last attempt: failed, failure callback runs

A job whose worker died is re-delivered when its lease expires, and counts
against the same attempt limit. A failing job never cancels or fails its
siblings.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from scorecache.services.aggregation import run_aggregation
from scorecache.services.unit_computation import compute_unit
from scorecache.settings import get_settings
from scorecache.stores.postgres import utcnow
from scorecache.stores.queue import LEASE_EXPIRED_ERROR, Job, JobKind, JobQueue

logger = logging.getLogger("uvicorn.error")

JobHandler = Callable[[Job], Awaitable[object]]
FailureCallback = Callable[[Job, str], Awaitable[None]]


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retrying after the given (1-based) attempt: base * 2^(attempt-1), capped."""
    return min(max_delay, base_delay * (2 ** max(0, attempt - 1)))


async def run_unit_job(job: Job) -> object:
    return await compute_unit(
        job.family,
        job.partition_key or "",
        job.configuration_id,
        orchestration_id=job.orchestration_id,
    )


async def run_aggregate_job(job: Job) -> object:
    return await run_aggregation(job.family, job.configuration_id, orchestration_id=job.orchestration_id)


async def log_failed_job(job: Job, error: str) -> None:
    """Default failure callback."""
    target = job.partition_key or job.kind.value
    logger.error(
        f"[worker] giving up on {job.family}/{target} configuration={job.configuration_id} "
        f"after {job.attempts} attempts: {error}"
    )


DEFAULT_HANDLERS: dict[JobKind, JobHandler] = {
    JobKind.UNIT: run_unit_job,
    JobKind.AGGREGATE: run_aggregate_job,
}


class Worker:
    """Polls a JobQueue and executes due jobs."""

    def __init__(
        self,
        queue: JobQueue,
        handlers: dict[JobKind, JobHandler] | None = None,
        on_failure: FailureCallback | None = None,
        family_concurrency: int | None = None,
        retry_base_delay: float | None = None,
        retry_max_delay: float | None = None,
        batch_size: int | None = None,
    ):
        settings = get_settings()
        self.queue = queue
        self.handlers = dict(handlers or DEFAULT_HANDLERS)
        self.on_failure = on_failure or log_failed_job
        self.family_concurrency = family_concurrency or settings.family_concurrency
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.retry_base_delay_seconds
        )
        self.retry_max_delay = (
            retry_max_delay if retry_max_delay is not None else settings.retry_max_delay_seconds
        )
        self.batch_size = batch_size or settings.worker_batch_size
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._stopping = asyncio.Event()

    def _semaphore(self, family: str) -> asyncio.Semaphore:
        if family not in self._semaphores:
            self._semaphores[family] = asyncio.Semaphore(self.family_concurrency)
        return self._semaphores[family]

    async def _run(self, job: Job, now: datetime | None) -> None:
        handler = self.handlers.get(job.kind)
        async with self._semaphore(job.family):
            try:
                if handler is None:
                    raise RuntimeError(f"no handler for job kind {job.kind.value}")
                await handler(job)
            except Exception as e:
                error = str(e)
            else:
                error = None

        # Queue bookkeeping errors stay with this job; the lease re-delivers it
        try:
            if error is not None:
                await self._handle_failure(job, error, now)
                return
            await self.queue.complete(job, now=now)
        except Exception:
            logger.exception(f"[worker] could not record outcome of {job.unique_key}")
            return
        logger.info(f"[worker] done {job.unique_key} attempt={job.attempts}")

    async def _recover(self, now: datetime | None) -> None:
        for job in await self.queue.recover_expired_leases(now):
            await self.on_failure(job, job.last_error or LEASE_EXPIRED_ERROR)

    async def _handle_failure(self, job: Job, error: str, now: datetime | None) -> None:
        failed_at = now or utcnow()
        if job.attempts < job.max_attempts:
            delay = backoff_delay(job.attempts, self.retry_base_delay, self.retry_max_delay)
            retry_at = failed_at + timedelta(seconds=delay)
            logger.warning(
                f"[worker] {job.unique_key} attempt {job.attempts}/{job.max_attempts} failed: "
                f"{error}; retrying at {retry_at.isoformat()}"
            )
            await self.queue.fail(job, error, retry_at=retry_at, now=failed_at)
            return

        await self.queue.fail(job, error, retry_at=None, now=failed_at)
        await self.on_failure(job, error)

    async def run_once(self, now: datetime | None = None) -> list[Job]:
        """Recover expired leases, then claim due jobs and run them to completion.

        Returns:
            The jobs that were claimed in this pass.
        """
        await self._recover(now)
        jobs = await self.queue.fetch_due(now=now, limit=self.batch_size)
        if jobs:
            await asyncio.gather(*(self._run(job, now) for job in jobs))
        return jobs

    async def run_forever(self, poll_interval: float | None = None) -> None:
        """Poll until stop() is called."""
        interval = poll_interval if poll_interval is not None else get_settings().worker_poll_interval_seconds
        logger.info(f"[worker] started concurrency={self.family_concurrency} poll={interval}s")
        while not self._stopping.is_set():
            try:
                jobs = await self.run_once()
            except Exception:
                logger.exception("[worker] poll failed")
                jobs = []
            if jobs:
                continue
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("[worker] stopped")

    def stop(self) -> None:
        self._stopping.set()
