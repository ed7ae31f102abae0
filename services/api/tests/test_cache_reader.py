from datetime import datetime, timedelta, timezone

import pytest

from scorecache.errors import NotFound, UnknownFamily
from scorecache.services import durable_cache, source_data
from scorecache.services.cache_reader import CacheReader, ReadStatus, ReadTier
from scorecache.services.families import AGGREGATE_PARTITION_KEY
from scorecache.stores.memory import MemoryCache
from scorecache.stores.postgres import get_session

T = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tiered_reader(clock) -> CacheReader:
    memory = MemoryCache(max_size=16, ttl_seconds=30 * 60, clock=clock)
    return CacheReader(memory, max_age=timedelta(hours=24), inline_compute=False)


async def _write(configuration_id: int, key: str = "1990", when: datetime = T) -> None:
    async with get_session() as session:
        await durable_cache.upsert_entry(
            session, key, configuration_id, {"items": [{"id": 1}]}, {"count": 1}, calculated_at=when
        )


async def test_miss_returns_missing_value_not_exception(make_configuration, tiered_reader):
    config = await make_configuration()
    result = await tiered_reader.read("decades", "1990", config.id)
    assert result.status == ReadStatus.MISSING
    assert result.is_missing
    assert result.payload is None
    assert result.tier is None


async def test_durable_hit_populates_memory(make_configuration, tiered_reader):
    config = await make_configuration()
    await _write(config.id)

    first = await tiered_reader.read("decades", "1990", config.id, now=T + timedelta(minutes=1))
    second = await tiered_reader.read("decades", "1990", config.id, now=T + timedelta(minutes=2))

    assert first.tier == ReadTier.DURABLE
    assert first.status == ReadStatus.FRESH
    assert second.tier == ReadTier.MEMORY
    assert second.payload == {"items": [{"id": 1}]}


async def test_expired_memory_falls_back_to_durable_and_repopulates(make_configuration, tiered_reader, clock):
    config = await make_configuration()
    await _write(config.id)
    await tiered_reader.read("decades", "1990", config.id, now=T)

    # 31 minutes later: memory TTL (30 min) expired, durable entry still within max age
    clock.now += 31 * 60
    later = await tiered_reader.read("decades", "1990", config.id, now=T + timedelta(minutes=31))

    assert later.tier == ReadTier.DURABLE
    assert later.status == ReadStatus.FRESH
    assert later.calculated_at == T
    assert tiered_reader.memory.get("decades", "1990", config.id) is not None


async def test_operator_read_flags_source_change_even_from_memory(make_configuration, tiered_reader):
    config = await make_configuration()
    await _write(config.id)
    await tiered_reader.read("decades", "1990", config.id, now=T)

    async with get_session() as session:
        await source_data.record_source_change(session, "metrics", ["1990"], changed_at=T + timedelta(minutes=5))

    user = await tiered_reader.read("decades", "1990", config.id, now=T + timedelta(minutes=10))
    operator = await tiered_reader.read("decades", "1990", config.id, operator=True, now=T + timedelta(minutes=10))

    assert user.tier == ReadTier.MEMORY
    assert user.status == ReadStatus.FRESH
    assert operator.tier == ReadTier.MEMORY
    assert operator.status == ReadStatus.STALE


async def test_old_entry_is_stale(make_configuration, tiered_reader):
    config = await make_configuration()
    await _write(config.id)
    result = await tiered_reader.read("decades", "1990", config.id, now=T + timedelta(hours=25))
    assert result.status == ReadStatus.STALE
    assert result.payload is not None


async def test_defaults_to_active_configuration(make_configuration, tiered_reader):
    with pytest.raises(NotFound):
        await tiered_reader.read("decades", "1990")
    config = await make_configuration()
    await _write(config.id)
    result = await tiered_reader.read("decades", "1990", now=T)
    assert result.configuration_id == config.id
    assert result.status == ReadStatus.FRESH


async def test_unknown_family(db, tiered_reader):
    with pytest.raises(UnknownFamily):
        await tiered_reader.read("eras", "1990", 1)


async def test_partition_outside_family_is_not_found(make_configuration, tiered_reader):
    config = await make_configuration()
    with pytest.raises(NotFound):
        await tiered_reader.read("decades", "1995", config.id)

    aggregate = await tiered_reader.read("decades", AGGREGATE_PARTITION_KEY, config.id, now=T)
    assert aggregate.status == ReadStatus.MISSING


async def test_invalidate_drops_memory_only(make_configuration, tiered_reader):
    config = await make_configuration()
    await _write(config.id)
    await tiered_reader.read("decades", "1990", config.id, now=T)

    assert tiered_reader.invalidate(configuration_id=config.id) == 1
    result = await tiered_reader.read("decades", "1990", config.id, now=T)
    assert result.tier == ReadTier.DURABLE


async def test_no_inline_compute_outside_development(make_configuration, tiered_reader, monkeypatch):
    from scorecache.services import cache_reader as module

    async def boom(*args, **kwargs):
        raise AssertionError("reads must not compute")

    monkeypatch.setattr(module, "compute_unit", boom)
    config = await make_configuration()
    result = await tiered_reader.read("decades", "1990", config.id)
    assert result.status == ReadStatus.MISSING


async def test_dev_inline_compute_warms_tiers_and_queues_refresh(make_configuration, add_works, queue, clock):
    config = await make_configuration()
    await add_works(("Heat", 1995, {"popular_opinion": 8.3}, 700000, []))
    reader = CacheReader(MemoryCache(clock=clock), max_age=timedelta(hours=24), inline_compute=True)

    result = await reader.read("decades", "1990", config.id)

    assert result.tier == ReadTier.INLINE
    assert result.status == ReadStatus.FRESH
    assert result.payload["items"][0]["title"] == "Heat"
    assert reader.memory.get("decades", "1990", config.id) is not None
    async with get_session() as session:
        assert await durable_cache.get_entry(session, "1990", config.id) is not None
    # Background refresh for the family was queued
    assert len([j for j in await queue.jobs_for("decades", config.id) if j.partition_key]) == 11
