"""Orchestrator: decompose a family refresh into spaced unit jobs.

Scheduling:
- unit i (counting only units actually queued) runs at now + i * spacing
- one aggregation job runs at last unit + aggregation delay
- duplicate units are suppressed per (family, partition, configuration) while
  one is outstanding; a re-orchestration during a sweep queues nothing

Failures are isolated per partition; retry_failed() re-queues only the
partitions without a cache entry or whose latest job failed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import uuid4

from scorecache.errors import ConfigurationInvalid, NotFound
from scorecache.services import durable_cache
from scorecache.services.configuration import get_active_configuration, get_configuration
from scorecache.services.families import Family, get_family
from scorecache.settings import get_settings
from scorecache.stores.postgres import get_session, utcnow
from scorecache.stores.queue import Job, JobKind, JobQueue, JobState, get_queue

logger = logging.getLogger("uvicorn.error")


@dataclass
class OrchestrationResult:
    family: str
    configuration_id: int
    orchestration_id: str
    units_queued: int
    duplicates_skipped: int
    aggregation_queued: bool
    partitions: list[str] = field(default_factory=list)
    finishes_by: datetime | None = None


async def _verify_configuration(family: Family, configuration_id: int) -> None:
    async with get_session() as session:
        config = await get_configuration(session, configuration_id)
        if config.family != family.name:
            raise ConfigurationInvalid(
                [f"configuration {configuration_id} belongs to family {config.family!r}, not {family.name!r}"]
            )


async def _schedule(
    queue: JobQueue,
    family: Family,
    configuration_id: int,
    partitions: Iterable[str],
    now: datetime | None,
) -> OrchestrationResult:
    settings = get_settings()
    now = now or utcnow()
    orchestration_id = str(uuid4())
    spacing = timedelta(seconds=settings.unit_spacing_seconds)

    queued: list[Job] = []
    skipped = 0
    for partition_key in partitions:
        job = Job(
            kind=JobKind.UNIT,
            family=family.name,
            configuration_id=configuration_id,
            partition_key=partition_key,
            orchestration_id=orchestration_id,
            run_at=now + spacing * len(queued),
            max_attempts=settings.max_attempts,
        )
        if await queue.enqueue_if_absent(job) is None:
            skipped += 1
            logger.info(f"[orchestrator] skip duplicate {job.unique_key}")
            continue
        queued.append(job)

    finishes_by = None
    if queued:
        aggregate = Job(
            kind=JobKind.AGGREGATE,
            family=family.name,
            configuration_id=configuration_id,
            orchestration_id=orchestration_id,
            run_at=queued[-1].run_at + timedelta(seconds=settings.aggregation_delay_seconds),
            max_attempts=settings.max_attempts,
        )
        await queue.enqueue(aggregate)
        finishes_by = aggregate.run_at

    logger.info(
        f"[orchestrator] {family.name} configuration={configuration_id} "
        f"orchestration={orchestration_id} queued={len(queued)} skipped={skipped}"
    )
    return OrchestrationResult(
        family=family.name,
        configuration_id=configuration_id,
        orchestration_id=orchestration_id,
        units_queued=len(queued),
        duplicates_skipped=skipped,
        aggregation_queued=bool(queued),
        partitions=[j.partition_key for j in queued if j.partition_key],
        finishes_by=finishes_by,
    )


async def orchestrate(
    family_name: str,
    configuration_id: int,
    queue: JobQueue | None = None,
    now: datetime | None = None,
) -> OrchestrationResult:
    """Queue one unit per partition of the family, then an aggregation job.

    Raises:
        UnknownFamily: If the family is not registered.
        NotFound: If the configuration does not exist.
        ConfigurationInvalid: If the configuration belongs to another family.
    """
    family = get_family(family_name)
    await _verify_configuration(family, configuration_id)
    return await _schedule(queue or get_queue(), family, configuration_id, family.partitions, now)


async def retry_failed(
    family_name: str,
    configuration_id: int,
    queue: JobQueue | None = None,
    now: datetime | None = None,
) -> OrchestrationResult:
    """Re-queue partitions whose cache entry is missing or whose latest job failed."""
    family = get_family(family_name)
    await _verify_configuration(family, configuration_id)
    queue = queue or get_queue()

    latest = await queue.latest_by_partition(family.name, configuration_id)
    async with get_session() as session:
        cached = {e.partition_key for e in await durable_cache.list_entries(session, configuration_id)}

    targets = [
        key
        for key in family.partitions
        if key not in cached or (key in latest and latest[key].state == JobState.FAILED)
    ]
    logger.info(f"[orchestrator] retry {family.name} configuration={configuration_id} targets={targets}")
    return await _schedule(queue, family, configuration_id, targets, now)


async def orchestrate_active(
    family_name: str,
    queue: JobQueue | None = None,
    now: datetime | None = None,
) -> OrchestrationResult:
    """Scheduled trigger: orchestrate the family's currently active configuration."""
    family = get_family(family_name)
    async with get_session() as session:
        config = await get_active_configuration(session, family.name)
    if config is None:
        raise NotFound(f"No active configuration for family: {family.name}")
    return await orchestrate(family.name, config.id, queue=queue, now=now)


# ============================================================
# Status
# ============================================================


@dataclass
class PartitionStatus:
    partition_key: str
    state: str  # job state, or "missing" when no job is known
    attempts: int = 0
    last_error: str | None = None
    run_at: datetime | None = None
    cached: bool = False
    calculated_at: datetime | None = None


@dataclass
class RefreshStatus:
    family: str
    configuration_id: int
    partitions: list[PartitionStatus]
    aggregation_state: str = "missing"

    @property
    def counts(self) -> dict[str, int]:
        counts = {s.value: 0 for s in JobState}
        counts["missing"] = 0
        for p in self.partitions:
            counts[p.state] = counts.get(p.state, 0) + 1
        return counts

    @property
    def failed_partitions(self) -> list[str]:
        return [p.partition_key for p in self.partitions if p.state == JobState.FAILED.value]


async def refresh_status(
    family_name: str,
    configuration_id: int,
    queue: JobQueue | None = None,
) -> RefreshStatus:
    """Latest job state and cache presence per partition."""
    family = get_family(family_name)
    queue = queue or get_queue()
    jobs = await queue.jobs_for(family.name, configuration_id)
    by_partition = {j.partition_key: j for j in jobs if j.kind == JobKind.UNIT}
    aggregate = next((j for j in jobs if j.kind == JobKind.AGGREGATE), None)

    async with get_session() as session:
        entries = {e.partition_key: e for e in await durable_cache.list_entries(session, configuration_id)}

    partitions = []
    for key in family.partitions:
        job = by_partition.get(key)
        entry = entries.get(key)
        partitions.append(
            PartitionStatus(
                partition_key=key,
                state=job.state.value if job else "missing",
                attempts=job.attempts if job else 0,
                last_error=job.last_error if job else None,
                run_at=job.run_at if job else None,
                cached=entry is not None,
                calculated_at=entry.calculated_at if entry else None,
            )
        )
    return RefreshStatus(
        family=family.name,
        configuration_id=configuration_id,
        partitions=partitions,
        aggregation_state=aggregate.state.value if aggregate else "missing",
    )
