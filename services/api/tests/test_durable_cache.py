"""Durable cache upsert semantics."""

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from scorecache.models import PartitionCache
from scorecache.services import durable_cache
from scorecache.stores.postgres import get_session

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


async def _count_rows() -> int:
    async with get_session() as session:
        return (await session.execute(select(func.count(PartitionCache.id)))).scalar()


async def test_upsert_twice_leaves_one_row_with_latest_write(make_configuration):
    config = await make_configuration()
    payload = {"items": [{"id": 1, "score": 0.5}]}

    async with get_session() as session:
        await durable_cache.upsert_entry(session, "1990", config.id, payload, {"count": 1}, calculated_at=T0)
    async with get_session() as session:
        await durable_cache.upsert_entry(
            session,
            "1990",
            config.id,
            {"items": []},
            {"count": 0},
            metadata={"orchestration_id": "b"},
            calculated_at=T0 + timedelta(hours=1),
        )

    assert await _count_rows() == 1
    async with get_session() as session:
        entry = await durable_cache.get_entry(session, "1990", config.id)
    assert entry.calculated_at == T0 + timedelta(hours=1)
    assert entry.payload == {"items": []}
    assert entry.statistics == {"count": 0}
    assert entry.metadata == {"orchestration_id": "b"}


async def test_upsert_preserves_created_at(make_configuration):
    config = await make_configuration()
    async with get_session() as session:
        await durable_cache.upsert_entry(session, "2000", config.id, {}, {}, calculated_at=T0)
    async with get_session() as session:
        await durable_cache.upsert_entry(session, "2000", config.id, {}, {}, calculated_at=T0 + timedelta(days=1))
    async with get_session() as session:
        row = (await session.execute(select(PartitionCache))).scalar_one()
    assert row.created_at == T0
    assert row.calculated_at == T0 + timedelta(days=1)


async def test_keys_are_per_partition_and_configuration(make_configuration):
    first = await make_configuration()
    second = await make_configuration()
    async with get_session() as session:
        await durable_cache.upsert_entry(session, "1990", first.id, {}, {})
        await durable_cache.upsert_entry(session, "1990", second.id, {}, {})
        await durable_cache.upsert_entry(session, "2000", first.id, {}, {})

    assert await _count_rows() == 3
    async with get_session() as session:
        entries = await durable_cache.list_entries(session, first.id)
    assert sorted(e.partition_key for e in entries) == ["1990", "2000"]


async def test_get_and_age_absent(make_configuration):
    config = await make_configuration()
    async with get_session() as session:
        assert await durable_cache.get_entry(session, "1950", config.id) is None
        assert await durable_cache.entry_age(session, "1950", config.id) is None


async def test_entry_age(make_configuration):
    config = await make_configuration()
    async with get_session() as session:
        await durable_cache.upsert_entry(session, "1950", config.id, {}, {}, calculated_at=T0)
        age = await durable_cache.entry_age(session, "1950", config.id, now=T0 + timedelta(minutes=5))
    assert age == timedelta(minutes=5)


async def test_purge(make_configuration):
    config = await make_configuration()
    async with get_session() as session:
        for key in ("1990", "2000", "2010"):
            await durable_cache.upsert_entry(session, key, config.id, {}, {})

    async with get_session() as session:
        assert await durable_cache.purge_entries(session, config.id, "1990") == 1
    async with get_session() as session:
        assert await durable_cache.purge_entries(session, config.id) == 2
    assert await _count_rows() == 0
