"""Two-tier cache reader.

Read order:
1. Memory tier (process-local LRU + TTL)
2. Durable cache (repopulates the memory tier on hit)
3. ReadStatus.MISSING

Reads never compute. The only exception is the development escape hatch,
enabled solely by ENVIRONMENT=development plus DEV_INLINE_COMPUTE=true;
settings validation rejects the flag anywhere else.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from scorecache.errors import NotFound
from scorecache.services import durable_cache, source_data
from scorecache.services.configuration import resolve_configuration_id
from scorecache.services.durable_cache import CacheEntry
from scorecache.services.families import AGGREGATE_PARTITION_KEY, get_family
from scorecache.services.orchestrator import orchestrate
from scorecache.services.staleness import StalenessVerdict, classify, default_max_age
from scorecache.services.unit_computation import compute_unit
from scorecache.settings import get_settings
from scorecache.stores.memory import MemoryCache
from scorecache.stores.postgres import get_session, utcnow

logger = logging.getLogger("uvicorn.error")


class ReadStatus(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    MISSING = "missing"


class ReadTier(str, Enum):
    MEMORY = "memory"
    DURABLE = "durable"
    INLINE = "inline"


@dataclass(frozen=True)
class CacheRead:
    family: str
    partition_key: str
    configuration_id: int
    status: ReadStatus
    payload: dict[str, Any] | None = None
    statistics: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    calculated_at: datetime | None = None
    tier: ReadTier | None = None

    @property
    def is_missing(self) -> bool:
        return self.status == ReadStatus.MISSING


def _status(verdict: StalenessVerdict) -> ReadStatus:
    return ReadStatus(verdict.value)


class CacheReader:
    """Serves cache reads for (family, partition, configuration)."""

    def __init__(
        self,
        memory: MemoryCache,
        max_age: timedelta | None = None,
        inline_compute: bool | None = None,
    ):
        self.memory = memory
        self.max_age = max_age or default_max_age()
        self.inline_compute = (
            inline_compute if inline_compute is not None else get_settings().inline_compute_enabled
        )

    def _hit(self, family: str, entry: CacheEntry, status: ReadStatus, tier: ReadTier) -> CacheRead:
        return CacheRead(
            family=family,
            partition_key=entry.partition_key,
            configuration_id=entry.configuration_id,
            status=status,
            payload=entry.payload,
            statistics=entry.statistics,
            metadata=entry.metadata,
            calculated_at=entry.calculated_at,
            tier=tier,
        )

    async def read(
        self,
        family: str,
        partition_key: str,
        configuration_id: int | None = None,
        *,
        operator: bool = False,
        now: datetime | None = None,
    ) -> CacheRead:
        """Read one partition result.

        Args:
            family: Computation family.
            partition_key: Partition within the family.
            configuration_id: Configuration id (defaults to the active one).
            operator: Operator/admin read; always checks source-change staleness.
            now: Clock override.

        Returns:
            CacheRead whose status is fresh, stale or missing.

        Raises:
            UnknownFamily: If the family is not registered.
            NotFound: If the partition is not in the family, or no configuration
                is given and none is active.
        """
        fam = get_family(family)
        if partition_key != AGGREGATE_PARTITION_KEY and not fam.has_partition(partition_key):
            raise NotFound(f"Unknown partition for family {fam.name}: {partition_key}")
        if configuration_id is None:
            async with get_session() as session:
                configuration_id = await resolve_configuration_id(session, fam.name, None)
        now = now or utcnow()

        entry = self.memory.get(fam.name, partition_key, configuration_id)
        if entry is not None and not operator:
            # End-user read: age-only verdict, no database round trip
            return self._hit(fam.name, entry, _status(classify(entry, self.max_age, now=now)), ReadTier.MEMORY)

        async with get_session() as session:
            if entry is None:
                entry = await durable_cache.get_entry(session, partition_key, configuration_id)
                tier = ReadTier.DURABLE
                if entry is not None:
                    self.memory.put(fam.name, entry)
            else:
                tier = ReadTier.MEMORY
            changed_at = (
                await source_data.latest_source_change(session, partition_key) if entry else None
            )

        if entry is not None:
            verdict = classify(entry, self.max_age, changed_at, now)
            if operator and verdict != StalenessVerdict.FRESH:
                logger.info(
                    f"[cache_reader] operator read of stale {fam.name}/{partition_key} "
                    f"configuration={configuration_id}"
                )
            return self._hit(fam.name, entry, _status(verdict), tier)

        if self.inline_compute and partition_key != AGGREGATE_PARTITION_KEY:
            return await self._compute_inline(fam.name, partition_key, configuration_id)

        return CacheRead(
            family=fam.name,
            partition_key=partition_key,
            configuration_id=configuration_id,
            status=ReadStatus.MISSING,
        )

    async def _compute_inline(self, family: str, partition_key: str, configuration_id: int) -> CacheRead:
        """Development-only: compute on miss, warm both tiers, queue a family refresh."""
        logger.warning(
            f"[cache_reader] DEV inline compute {family}/{partition_key} configuration={configuration_id}"
        )
        entry = await compute_unit(family, partition_key, configuration_id)
        self.memory.put(family, entry)
        await orchestrate(family, configuration_id)
        return self._hit(family, entry, ReadStatus.FRESH, ReadTier.INLINE)

    def invalidate(
        self,
        family: str | None = None,
        partition_key: str | None = None,
        configuration_id: int | None = None,
    ) -> int:
        """Drop matching memory-tier entries. The durable cache is untouched."""
        dropped = self.memory.invalidate(family, partition_key, configuration_id)
        logger.info(f"[cache_reader] invalidated {dropped} memory entries")
        return dropped


# ============================================================
# Process-wide instance (initialized on startup)
# ============================================================

_reader: CacheReader | None = None


def init_cache_reader() -> CacheReader:
    global _reader
    settings = get_settings()
    _reader = CacheReader(
        MemoryCache(
            max_size=settings.memory_cache_max_size,
            ttl_seconds=settings.memory_cache_ttl_seconds,
        )
    )
    return _reader


def set_cache_reader(reader: CacheReader | None) -> None:
    global _reader
    _reader = reader


def get_cache_reader() -> CacheReader:
    if _reader is None:
        raise RuntimeError("Cache reader not initialized. Call init_cache_reader() first.")
    return _reader
