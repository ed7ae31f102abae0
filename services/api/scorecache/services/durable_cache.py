"""Durable cache: one persisted result per (partition_key, configuration_id).

Writes go through a single INSERT ... ON CONFLICT DO UPDATE, so:
- repeated writes for a key leave exactly one row (last write wins)
- concurrent writers to the same key are serialized by the database
- there is no application-level locking and no CacheWriteConflict to handle

Rows are only deleted by the administrative purge.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from scorecache.models import PartitionCache
from scorecache.stores.postgres import dialect_insert, utcnow

logger = logging.getLogger("uvicorn.error")

_table = PartitionCache.__table__


@dataclass(frozen=True)
class CacheEntry:
    """Detached snapshot of a durable cache row."""

    partition_key: str
    configuration_id: int
    payload: dict[str, Any]
    statistics: dict[str, Any]
    calculated_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: PartitionCache) -> "CacheEntry":
        return cls(
            partition_key=row.partition_key,
            configuration_id=row.configuration_id,
            payload=row.payload or {},
            statistics=row.statistics or {},
            calculated_at=row.calculated_at,
            metadata=row.meta or {},
        )

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or utcnow()) - self.calculated_at


async def upsert_entry(
    session: AsyncSession,
    partition_key: str,
    configuration_id: int,
    payload: dict[str, Any],
    statistics: dict[str, Any],
    metadata: dict[str, Any] | None = None,
    calculated_at: datetime | None = None,
) -> CacheEntry:
    """Insert or replace the cache row for (partition_key, configuration_id).

    Args:
        session: Database session. The caller's transaction decides visibility.
        partition_key: Partition within the family.
        configuration_id: Scoring configuration the result was computed under.
        payload: Computed result (ranked items with breakdowns).
        statistics: Summary statistics.
        metadata: Free-form metadata.
        calculated_at: Computation timestamp (defaults to now).

    Returns:
        Snapshot of what was written.
    """
    when = calculated_at or utcnow()
    values = {
        "partition_key": partition_key,
        "configuration_id": configuration_id,
        "payload": payload,
        "statistics": statistics,
        "metadata": metadata or {},
        "calculated_at": when,
        "created_at": when,
    }
    stmt = dialect_insert(session, _table).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[_table.c.partition_key, _table.c.configuration_id],
        set_={
            "payload": stmt.excluded["payload"],
            "statistics": stmt.excluded["statistics"],
            "metadata": stmt.excluded["metadata"],
            "calculated_at": stmt.excluded["calculated_at"],
        },
    )
    await session.execute(stmt)

    logger.info(
        "[durable_cache] upsert partition=%s configuration=%s items=%s",
        partition_key,
        configuration_id,
        len(payload.get("items", [])),
    )
    return CacheEntry(
        partition_key=partition_key,
        configuration_id=configuration_id,
        payload=payload,
        statistics=statistics,
        calculated_at=when,
        metadata=metadata or {},
    )


async def get_entry(
    session: AsyncSession,
    partition_key: str,
    configuration_id: int,
) -> CacheEntry | None:
    """Get the cache entry for a key, or None when absent."""
    result = await session.execute(
        select(PartitionCache).where(
            PartitionCache.partition_key == partition_key,
            PartitionCache.configuration_id == configuration_id,
        )
        # Upserts bypass the identity map; always reload.
        .execution_options(populate_existing=True)
    )
    row = result.scalar_one_or_none()
    return CacheEntry.from_row(row) if row else None


async def entry_age(
    session: AsyncSession,
    partition_key: str,
    configuration_id: int,
    now: datetime | None = None,
) -> timedelta | None:
    """Age of the cache entry for a key, or None when absent."""
    entry = await get_entry(session, partition_key, configuration_id)
    if entry is None:
        return None
    return entry.age(now)


async def list_entries(session: AsyncSession, configuration_id: int) -> list[CacheEntry]:
    """All cache entries for a configuration, newest first."""
    result = await session.execute(
        select(PartitionCache)
        .where(PartitionCache.configuration_id == configuration_id)
        .order_by(PartitionCache.calculated_at.desc())
        .execution_options(populate_existing=True)
    )
    return [CacheEntry.from_row(row) for row in result.scalars().all()]


async def purge_entries(
    session: AsyncSession,
    configuration_id: int,
    partition_key: str | None = None,
) -> int:
    """Administrative purge. Returns the number of rows deleted."""
    query = delete(PartitionCache).where(PartitionCache.configuration_id == configuration_id)
    if partition_key is not None:
        query = query.where(PartitionCache.partition_key == partition_key)
    result = await session.execute(query)
    deleted = result.rowcount or 0
    logger.warning(
        "[durable_cache] purged %s entries configuration=%s partition=%s",
        deleted,
        configuration_id,
        partition_key or "*",
    )
    return deleted
