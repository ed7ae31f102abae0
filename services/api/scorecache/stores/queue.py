"""Job queue capability.

Semantics shared by both backends:
- enqueue(job): schedule unconditionally at job.run_at
- enqueue_if_absent(job): schedule only if no job with the same unique key is
  outstanding (scheduled, executing or waiting for retry); returns None otherwise
- fetch_due(now): claim due jobs; a claimed job holds an execution lease until
  complete()/fail()
- recover_expired_leases(now): re-deliver jobs whose lease expired
  (at-least-once); a job that already used max_attempts is marked failed
  ("lease expired") and returned so the worker can run its failure callback
- fail(job, error, retry_at): reschedule for retry, or mark failed when
  retry_at is None; failed/completed jobs release their unique key

RedisJobQueue is the shared production backend. InMemoryJobQueue keeps the same
semantics inside one process (development, tests).
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

import redis.asyncio as redis

from scorecache.stores.postgres import utcnow
from scorecache.stores.redis import (
    KEY_EXECUTING,
    KEY_SCHEDULED,
    PREFIX_INDEX,
    PREFIX_JOB,
    PREFIX_OUTSTANDING,
    TTL_FINISHED_JOB,
    TTL_OUTSTANDING_MARKER,
)

logger = logging.getLogger("uvicorn.error")

DEFAULT_LEASE_SECONDS = 300
LEASE_EXPIRED_ERROR = "lease expired"


class JobKind(str, Enum):
    UNIT = "unit"
    AGGREGATE = "aggregate"


class JobState(str, Enum):
    SCHEDULED = "scheduled"
    EXECUTING = "executing"
    RETRYABLE = "retryable"
    COMPLETED = "completed"
    FAILED = "failed"


OUTSTANDING_STATES = (JobState.SCHEDULED, JobState.EXECUTING, JobState.RETRYABLE)


def unique_key_for(
    kind: JobKind,
    family: str,
    configuration_id: int,
    partition_key: str | None = None,
) -> str:
    if kind == JobKind.AGGREGATE:
        return f"aggregate:{family}:{configuration_id}"
    return f"unit:{family}:{partition_key}:{configuration_id}"


@dataclass
class Job:
    """A unit of work as job arguments (WorkUnit) plus queue bookkeeping."""

    kind: JobKind
    family: str
    configuration_id: int
    run_at: datetime
    partition_key: str | None = None
    orchestration_id: str | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    state: JobState = JobState.SCHEDULED
    attempts: int = 0
    max_attempts: int = 3
    last_error: str | None = None
    inserted_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    @property
    def unique_key(self) -> str:
        return unique_key_for(self.kind, self.family, self.configuration_id, self.partition_key)

    @property
    def is_outstanding(self) -> bool:
        return self.state in OUTSTANDING_STATES

    @property
    def attempts_exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def to_json(self) -> str:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["state"] = self.state.value
        for name in ("run_at", "inserted_at", "completed_at"):
            value = getattr(self, name)
            data[name] = value.isoformat() if value else None
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "Job":
        data: dict[str, Any] = json.loads(raw)
        data["kind"] = JobKind(data["kind"])
        data["state"] = JobState(data["state"])
        for name in ("run_at", "inserted_at", "completed_at"):
            if data.get(name):
                data[name] = datetime.fromisoformat(data[name])
        return cls(**data)


def _ts(moment: datetime) -> float:
    return moment.astimezone(timezone.utc).timestamp()


class JobQueue(ABC):
    """Queue capability used by the orchestrator and the worker."""

    @abstractmethod
    async def enqueue(self, job: Job) -> Job: ...

    @abstractmethod
    async def enqueue_if_absent(self, job: Job) -> Job | None: ...

    @abstractmethod
    async def recover_expired_leases(self, now: datetime | None = None) -> list[Job]:
        """Re-deliver expired leases; return the jobs marked failed instead."""

    @abstractmethod
    async def fetch_due(self, now: datetime | None = None, limit: int = 10) -> list[Job]: ...

    @abstractmethod
    async def complete(self, job: Job, now: datetime | None = None) -> None: ...

    @abstractmethod
    async def fail(
        self,
        job: Job,
        error: str,
        retry_at: datetime | None = None,
        now: datetime | None = None,
    ) -> None: ...

    @abstractmethod
    async def is_outstanding(self, unique_key: str) -> bool: ...

    @abstractmethod
    async def jobs_for(self, family: str, configuration_id: int) -> list[Job]:
        """Latest job per unique key for a family/configuration."""

    async def latest_by_partition(self, family: str, configuration_id: int) -> dict[str, Job]:
        """Latest unit job per partition key."""
        return {
            job.partition_key: job
            for job in await self.jobs_for(family, configuration_id)
            if job.kind == JobKind.UNIT and job.partition_key is not None
        }

    async def close(self) -> None:
        return None


# ============================================================
# In-process backend
# ============================================================


class InMemoryJobQueue(JobQueue):
    """Single-process queue with the same semantics as RedisJobQueue."""

    def __init__(self, lease_seconds: float = DEFAULT_LEASE_SECONDS):
        self.lease_seconds = lease_seconds
        self._jobs: dict[str, Job] = {}
        self._outstanding: dict[str, str] = {}  # unique_key -> job id
        self._latest: dict[tuple[str, int], dict[str, str]] = {}
        self._leases: dict[str, datetime] = {}  # job id -> lease expiry

    def _store(self, job: Job) -> Job:
        self._jobs[job.id] = job
        self._outstanding[job.unique_key] = job.id
        self._latest.setdefault((job.family, job.configuration_id), {})[job.unique_key] = job.id
        return job

    async def enqueue(self, job: Job) -> Job:
        job.state = JobState.SCHEDULED
        return self._store(job)

    async def enqueue_if_absent(self, job: Job) -> Job | None:
        if await self.is_outstanding(job.unique_key):
            return None
        return await self.enqueue(job)

    async def recover_expired_leases(self, now: datetime | None = None) -> list[Job]:
        now = now or utcnow()
        exhausted: list[Job] = []
        for job_id, expiry in list(self._leases.items()):
            if expiry > now:
                continue
            job = self._jobs[job_id]
            del self._leases[job_id]
            if job.attempts_exhausted:
                logger.error(f"[queue] lease expired job={job_id} {job.unique_key}; attempts exhausted")
                await self.fail(job, LEASE_EXPIRED_ERROR, now=now)
                exhausted.append(job)
                continue
            logger.warning(f"[queue] lease expired job={job_id} {job.unique_key}; re-delivering")
            job.state = JobState.RETRYABLE
            job.last_error = LEASE_EXPIRED_ERROR
            job.run_at = now
        return exhausted

    async def fetch_due(self, now: datetime | None = None, limit: int = 10) -> list[Job]:
        now = now or utcnow()
        due = sorted(
            (
                j
                for j in self._jobs.values()
                if j.state in (JobState.SCHEDULED, JobState.RETRYABLE) and j.run_at <= now
            ),
            key=lambda j: j.run_at,
        )[:limit]
        for job in due:
            job.state = JobState.EXECUTING
            job.attempts += 1
            self._leases[job.id] = now + timedelta(seconds=self.lease_seconds)
        return due

    def _release(self, job: Job) -> None:
        self._leases.pop(job.id, None)
        if self._outstanding.get(job.unique_key) == job.id:
            del self._outstanding[job.unique_key]

    async def complete(self, job: Job, now: datetime | None = None) -> None:
        job.state = JobState.COMPLETED
        job.completed_at = now or utcnow()
        self._jobs[job.id] = job
        self._release(job)

    async def fail(
        self,
        job: Job,
        error: str,
        retry_at: datetime | None = None,
        now: datetime | None = None,
    ) -> None:
        job.last_error = error
        self._jobs[job.id] = job
        if retry_at is not None:
            job.state = JobState.RETRYABLE
            job.run_at = retry_at
            self._leases.pop(job.id, None)
            return
        job.state = JobState.FAILED
        job.completed_at = now or utcnow()
        self._release(job)

    async def is_outstanding(self, unique_key: str) -> bool:
        job_id = self._outstanding.get(unique_key)
        return job_id is not None and self._jobs[job_id].is_outstanding

    async def jobs_for(self, family: str, configuration_id: int) -> list[Job]:
        ids = self._latest.get((family, configuration_id), {})
        return [self._jobs[i] for i in ids.values()]


# ============================================================
# Redis backend
# ============================================================


class RedisJobQueue(JobQueue):
    """Shared queue on Redis.

    Keys:
    - jobs:job:{id}                      JSON job record
    - jobs:scheduled                     ZSET job id -> run_at
    - jobs:executing                     ZSET job id -> lease expiry
    - jobs:outstanding:{unique_key}      job id, SET NX (duplicate suppression)
    - jobs:index:{family}:{configuration} HASH unique_key -> latest job id
    """

    def __init__(self, client: redis.Redis, lease_seconds: float = DEFAULT_LEASE_SECONDS):
        self.client = client
        self.lease_seconds = lease_seconds

    async def _save(self, job: Job) -> None:
        key = f"{PREFIX_JOB}{job.id}"
        if job.is_outstanding:
            await self.client.set(key, job.to_json())
        else:
            await self.client.setex(key, TTL_FINISHED_JOB, job.to_json())

    async def _load(self, job_id: str) -> Job | None:
        raw = await self.client.get(f"{PREFIX_JOB}{job_id}")
        return Job.from_json(raw) if raw else None

    async def _schedule(self, job: Job) -> Job:
        await self._save(job)
        await self.client.zadd(KEY_SCHEDULED, {job.id: _ts(job.run_at)})
        await self.client.hset(
            f"{PREFIX_INDEX}{job.family}:{job.configuration_id}", job.unique_key, job.id
        )
        return job

    async def enqueue(self, job: Job) -> Job:
        job.state = JobState.SCHEDULED
        await self.client.set(
            f"{PREFIX_OUTSTANDING}{job.unique_key}", job.id, ex=TTL_OUTSTANDING_MARKER
        )
        return await self._schedule(job)

    async def enqueue_if_absent(self, job: Job) -> Job | None:
        job.state = JobState.SCHEDULED
        # SET NX (only if not exists): the marker is the duplicate check
        acquired = await self.client.set(
            f"{PREFIX_OUTSTANDING}{job.unique_key}", job.id, nx=True, ex=TTL_OUTSTANDING_MARKER
        )
        if acquired is None:
            return None
        return await self._schedule(job)

    async def recover_expired_leases(self, now: datetime | None = None) -> list[Job]:
        now = now or utcnow()
        exhausted: list[Job] = []
        expired = await self.client.zrangebyscore(KEY_EXECUTING, "-inf", _ts(now))
        for job_id in expired:
            # ZREM returns 1 for exactly one recovering worker
            if await self.client.zrem(KEY_EXECUTING, job_id) != 1:
                continue
            job = await self._load(job_id)
            if job is None or not job.is_outstanding:
                continue
            if job.attempts_exhausted:
                logger.error(f"[queue] lease expired job={job_id} {job.unique_key}; attempts exhausted")
                await self.fail(job, LEASE_EXPIRED_ERROR, now=now)
                exhausted.append(job)
                continue
            logger.warning(f"[queue] lease expired job={job_id} {job.unique_key}; re-delivering")
            job.state = JobState.RETRYABLE
            job.last_error = LEASE_EXPIRED_ERROR
            job.run_at = now
            await self._save(job)
            await self.client.zadd(KEY_SCHEDULED, {job.id: _ts(now)})
        return exhausted

    async def fetch_due(self, now: datetime | None = None, limit: int = 10) -> list[Job]:
        now = now or utcnow()
        ids = await self.client.zrangebyscore(KEY_SCHEDULED, "-inf", _ts(now), start=0, num=limit)
        claimed: list[Job] = []
        for job_id in ids:
            # ZREM returns 1 for exactly one competing worker
            if await self.client.zrem(KEY_SCHEDULED, job_id) != 1:
                continue
            job = await self._load(job_id)
            if job is None:
                continue
            job.state = JobState.EXECUTING
            job.attempts += 1
            await self._save(job)
            await self.client.zadd(KEY_EXECUTING, {job.id: _ts(now) + self.lease_seconds})
            claimed.append(job)
        return claimed

    async def _release(self, job: Job) -> None:
        await self.client.zrem(KEY_EXECUTING, job.id)
        marker = f"{PREFIX_OUTSTANDING}{job.unique_key}"
        if await self.client.get(marker) == job.id:
            await self.client.delete(marker)

    async def complete(self, job: Job, now: datetime | None = None) -> None:
        job.state = JobState.COMPLETED
        job.completed_at = now or utcnow()
        await self._save(job)
        await self._release(job)

    async def fail(
        self,
        job: Job,
        error: str,
        retry_at: datetime | None = None,
        now: datetime | None = None,
    ) -> None:
        job.last_error = error
        if retry_at is not None:
            job.state = JobState.RETRYABLE
            job.run_at = retry_at
            await self.client.zrem(KEY_EXECUTING, job.id)
            await self._save(job)
            await self.client.zadd(KEY_SCHEDULED, {job.id: _ts(retry_at)})
            return
        job.state = JobState.FAILED
        job.completed_at = now or utcnow()
        await self._save(job)
        await self._release(job)

    async def is_outstanding(self, unique_key: str) -> bool:
        return bool(await self.client.exists(f"{PREFIX_OUTSTANDING}{unique_key}"))

    async def jobs_for(self, family: str, configuration_id: int) -> list[Job]:
        index = await self.client.hgetall(f"{PREFIX_INDEX}{family}:{configuration_id}")
        if not index:
            return []
        raws = await self.client.mget([f"{PREFIX_JOB}{i}" for i in index.values()])
        return [Job.from_json(raw) for raw in raws if raw]


# ============================================================
# Process-wide instance (initialized on startup)
# ============================================================

_queue: JobQueue | None = None


def init_queue(backend: str, client: redis.Redis | None = None, lease_seconds: float = DEFAULT_LEASE_SECONDS) -> JobQueue:
    """Create the process-wide queue for the configured backend."""
    global _queue
    if backend == "redis":
        if client is None:
            raise RuntimeError("Redis client required for the redis job queue backend")
        _queue = RedisJobQueue(client, lease_seconds=lease_seconds)
    else:
        _queue = InMemoryJobQueue(lease_seconds=lease_seconds)
    logger.info(f"Job queue initialized backend={backend}")
    return _queue


def set_queue(queue: JobQueue | None) -> None:
    global _queue
    _queue = queue


def get_queue() -> JobQueue:
    if _queue is None:
        raise RuntimeError("Job queue not initialized. Call init_queue() first.")
    return _queue
