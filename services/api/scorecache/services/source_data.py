"""Source-data layer: read-only entity loading and change signals.

Unit computations never mutate source records. Change signals are appended by
ingestion pipelines (or the admin endpoint) and read by the staleness tracker.
"""

import logging
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from scorecache.models import SourceChange, Work, WorkNomination
from scorecache.services.families import Family, PartitionKind, decade_bounds
from scorecache.services.scoring import Category, Entity
from scorecache.stores.postgres import utcnow

logger = logging.getLogger("uvicorn.error")

SOURCE_DOMAINS = ("works", "metrics", "nominations", "people")


def work_to_entity(work: Work) -> Entity:
    """Map a Work row to a scoring Entity."""
    return Entity(
        id=work.id,
        title=work.title,
        year=work.release_year,
        values={category: getattr(work, category.value) for category in Category},
        vote_count=work.vote_count or 0,
    )


def _partition_filter(family: Family, partition_key: str):
    if family.kind == PartitionKind.DECADE:
        start, end = decade_bounds(partition_key)
        return (Work.release_year >= start) & (Work.release_year <= end)
    nominated = select(WorkNomination.work_id).where(WorkNomination.organization == partition_key)
    return Work.id.in_(nominated)


async def entities_for_partition(
    session: AsyncSession,
    family: Family,
    partition_key: str,
) -> list[Entity]:
    """Load the entity set for one partition.

    Args:
        session: Database session (read-only use).
        family: Computation family the partition belongs to.
        partition_key: Partition within the family.

    Returns:
        Entities ordered by id.
    """
    query = select(Work).where(_partition_filter(family, partition_key)).order_by(Work.id)
    result = await session.execute(query)
    return [work_to_entity(w) for w in result.scalars().all()]


async def reference_ids_for_partition(
    session: AsyncSession,
    family: Family,
    partition_key: str,
) -> set[int]:
    """Ids of the partition's works that are on the curated reference list."""
    result = await session.execute(
        select(Work.id).where(_partition_filter(family, partition_key), Work.on_reference_list.is_(True))
    )
    return set(result.scalars().all())


# ============================================================
# Change signals
# ============================================================


async def record_source_change(
    session: AsyncSession,
    domain: str,
    partition_keys: Iterable[str | None] = (None,),
    entity_id: int | None = None,
    changed_at: datetime | None = None,
) -> int:
    """Append change signals; a None partition key affects every partition.

    Returns:
        Number of signals written.
    """
    if domain not in SOURCE_DOMAINS:
        raise ValueError(f"Unknown source domain: {domain}")
    when = changed_at or utcnow()
    rows = [
        SourceChange(domain=domain, partition_key=key, entity_id=entity_id, changed_at=when)
        for key in partition_keys
    ]
    session.add_all(rows)
    await session.flush()
    return len(rows)


async def latest_source_change(
    session: AsyncSession,
    partition_key: str,
) -> datetime | None:
    """Most recent change relevant to a partition (its own or a global one)."""
    result = await session.execute(
        select(func.max(SourceChange.changed_at)).where(
            or_(SourceChange.partition_key == partition_key, SourceChange.partition_key.is_(None))
        )
    )
    return result.scalar()


async def count_changes_since(
    session: AsyncSession,
    partition_key: str,
    since: datetime | None,
) -> dict[str, int]:
    """Count change signals per domain for a partition since a timestamp."""
    query = (
        select(SourceChange.domain, func.count(SourceChange.id))
        .where(or_(SourceChange.partition_key == partition_key, SourceChange.partition_key.is_(None)))
        .group_by(SourceChange.domain)
    )
    if since is not None:
        query = query.where(SourceChange.changed_at > since)
    result = await session.execute(query)
    counts = {domain: 0 for domain in SOURCE_DOMAINS}
    for domain, count in result.all():
        counts[domain] = int(count)
    return counts


async def prune_source_changes(session: AsyncSession, older_than: datetime) -> int:
    """Delete change signals older than a cutoff. Returns rows deleted."""
    result = await session.execute(delete(SourceChange).where(SourceChange.changed_at < older_than))
    deleted = result.rowcount or 0
    logger.info(f"[source_data] pruned {deleted} change signals older than {older_than.isoformat()}")
    return deleted
