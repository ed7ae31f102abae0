"""Staleness tracker.

A cache entry is:
- missing: no entry for the key
- stale:   older than max_age, or computed before the latest relevant source change
- fresh:   otherwise

Verdicts are derived on read and never stored. Operator/admin views must check
them before presenting a cache hit; end-user views may tolerate staleness.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession

from scorecache.services import durable_cache, source_data
from scorecache.services.durable_cache import CacheEntry
from scorecache.services.families import Family
from scorecache.settings import get_settings
from scorecache.stores.postgres import utcnow


class StalenessVerdict(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    MISSING = "missing"


def default_max_age() -> timedelta:
    return timedelta(hours=get_settings().cache_max_age_hours)


def classify(
    entry: CacheEntry | None,
    max_age: timedelta,
    source_changed_at: datetime | None = None,
    now: datetime | None = None,
) -> StalenessVerdict:
    """Classify a cache entry's freshness."""
    if entry is None:
        return StalenessVerdict.MISSING
    now = now or utcnow()
    if now - entry.calculated_at > max_age:
        return StalenessVerdict.STALE
    if source_changed_at is not None and entry.calculated_at < source_changed_at:
        return StalenessVerdict.STALE
    return StalenessVerdict.FRESH


def is_stale(
    entry: CacheEntry | None,
    max_age: timedelta,
    source_changed_at: datetime | None = None,
    now: datetime | None = None,
) -> bool:
    """True if the entry is absent, too old, or predates the latest source change."""
    return classify(entry, max_age, source_changed_at, now) != StalenessVerdict.FRESH


async def is_key_stale(
    session: AsyncSession,
    partition_key: str,
    configuration_id: int,
    max_age: timedelta | None = None,
    source_changed_at: datetime | None = None,
    now: datetime | None = None,
) -> bool:
    """Key-based variant: looks up the entry and, if not given, the latest source change."""
    entry = await durable_cache.get_entry(session, partition_key, configuration_id)
    if entry is None:
        return True
    if source_changed_at is None:
        source_changed_at = await source_data.latest_source_change(session, partition_key)
    return is_stale(entry, max_age or default_max_age(), source_changed_at, now)


@dataclass
class PartitionStaleness:
    partition_key: str
    verdict: StalenessVerdict
    calculated_at: datetime | None
    age_seconds: float | None
    source_changed_at: datetime | None
    changes_since: dict[str, int] = field(default_factory=dict)


@dataclass
class StalenessReport:
    family: str
    configuration_id: int
    max_age_hours: float
    last_refresh: datetime | None
    partitions: list[PartitionStaleness]

    @property
    def stale_partitions(self) -> list[str]:
        return [p.partition_key for p in self.partitions if p.verdict != StalenessVerdict.FRESH]

    @property
    def recommendation(self) -> str:
        stale = len(self.stale_partitions)
        if stale == 0:
            return "none"
        if stale == len(self.partitions):
            return "full_refresh"
        return "retry_stale"


async def check_partition(
    session: AsyncSession,
    partition_key: str,
    configuration_id: int,
    max_age: timedelta | None = None,
    now: datetime | None = None,
) -> PartitionStaleness:
    """Verdict plus supporting detail for one partition."""
    now = now or utcnow()
    entry = await durable_cache.get_entry(session, partition_key, configuration_id)
    changed_at = await source_data.latest_source_change(session, partition_key)
    verdict = classify(entry, max_age or default_max_age(), changed_at, now)
    changes = await source_data.count_changes_since(
        session, partition_key, entry.calculated_at if entry else None
    )
    return PartitionStaleness(
        partition_key=partition_key,
        verdict=verdict,
        calculated_at=entry.calculated_at if entry else None,
        age_seconds=entry.age(now).total_seconds() if entry else None,
        source_changed_at=changed_at,
        changes_since=changes,
    )


async def staleness_report(
    session: AsyncSession,
    family: Family,
    configuration_id: int,
    max_age: timedelta | None = None,
    now: datetime | None = None,
) -> StalenessReport:
    """Freshness of every partition of a family under one configuration."""
    max_age = max_age or default_max_age()
    partitions = [
        await check_partition(session, key, configuration_id, max_age, now)
        for key in family.partitions
    ]
    computed = [p.calculated_at for p in partitions if p.calculated_at is not None]
    return StalenessReport(
        family=family.name,
        configuration_id=configuration_id,
        max_age_hours=max_age.total_seconds() / 3600,
        last_refresh=max(computed) if computed else None,
        partitions=partitions,
    )
