from datetime import datetime, timedelta, timezone

from scorecache.services import durable_cache, source_data
from scorecache.services.durable_cache import CacheEntry
from scorecache.services.families import get_family
from scorecache.services.staleness import (
    StalenessVerdict,
    classify,
    is_key_stale,
    is_stale,
    staleness_report,
)
from scorecache.stores.postgres import get_session

T0 = datetime(2026, 3, 1, tzinfo=timezone.utc)
MAX_AGE = timedelta(hours=24)


def _entry(calculated_at: datetime) -> CacheEntry:
    return CacheEntry(partition_key="1990", configuration_id=7, payload={}, statistics={}, calculated_at=calculated_at)


def test_absent_entry_is_stale():
    assert is_stale(None, MAX_AGE) is True
    assert classify(None, MAX_AGE) == StalenessVerdict.MISSING


def test_entry_older_than_max_age_is_stale():
    assert is_stale(_entry(T0), MAX_AGE, now=T0 + timedelta(hours=25)) is True


def test_fresh_entry_without_newer_source_change():
    entry = _entry(T0)
    now = T0 + timedelta(hours=1)
    assert is_stale(entry, MAX_AGE, source_changed_at=T0 - timedelta(hours=1), now=now) is False
    assert is_stale(entry, MAX_AGE, source_changed_at=None, now=now) is False


def test_entry_predating_source_change_is_stale():
    entry = _entry(T0)
    verdict = classify(entry, MAX_AGE, source_changed_at=T0 + timedelta(minutes=1), now=T0 + timedelta(hours=1))
    assert verdict == StalenessVerdict.STALE


async def test_is_key_stale_reads_source_changes(make_configuration):
    config = await make_configuration()
    async with get_session() as session:
        await durable_cache.upsert_entry(session, "1990", config.id, {}, {}, calculated_at=T0)

    now = T0 + timedelta(hours=2)
    async with get_session() as session:
        assert await is_key_stale(session, "1990", config.id, MAX_AGE, now=now) is False
        assert await is_key_stale(session, "2000", config.id, MAX_AGE, now=now) is True

        # A change to another partition is irrelevant
        await source_data.record_source_change(session, "metrics", ["2000"], changed_at=T0 + timedelta(hours=1))
        assert await is_key_stale(session, "1990", config.id, MAX_AGE, now=now) is False

        # A global change affects every partition
        await source_data.record_source_change(session, "works", changed_at=T0 + timedelta(hours=1))
        assert await is_key_stale(session, "1990", config.id, MAX_AGE, now=now) is True


async def test_staleness_report(make_configuration):
    config = await make_configuration()
    family = get_family("decades")
    async with get_session() as session:
        for key in family.partitions:
            await durable_cache.upsert_entry(session, key, config.id, {}, {}, calculated_at=T0)
        await source_data.record_source_change(session, "nominations", ["1990", "1990"], changed_at=T0 + timedelta(hours=1))

    async with get_session() as session:
        report = await staleness_report(session, family, config.id, MAX_AGE, now=T0 + timedelta(hours=2))

    assert report.stale_partitions == ["1990"]
    assert report.recommendation == "retry_stale"
    assert report.last_refresh == T0
    stale = next(p for p in report.partitions if p.partition_key == "1990")
    assert stale.changes_since["nominations"] == 2
    assert stale.age_seconds == 7200


async def test_report_recommends_full_refresh_when_nothing_cached(make_configuration):
    config = await make_configuration()
    async with get_session() as session:
        report = await staleness_report(session, get_family("festivals"), config.id, MAX_AGE)
    assert report.recommendation == "full_refresh"
    assert all(p.verdict == StalenessVerdict.MISSING for p in report.partitions)


async def test_prune_source_changes(db):
    async with get_session() as session:
        await source_data.record_source_change(session, "works", changed_at=T0)
        await source_data.record_source_change(session, "works", changed_at=T0 + timedelta(days=10))
    async with get_session() as session:
        assert await source_data.prune_source_changes(session, T0 + timedelta(days=1)) == 1
        assert await source_data.latest_source_change(session, "1990") == T0 + timedelta(days=10)
