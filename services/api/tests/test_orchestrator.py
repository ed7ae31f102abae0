from datetime import datetime, timedelta, timezone

import pytest

from scorecache.errors import ConfigurationInvalid, NotFound, UnknownFamily
from scorecache.services import durable_cache
from scorecache.services.orchestrator import orchestrate, orchestrate_active, refresh_status, retry_failed
from scorecache.settings import get_settings
from scorecache.stores.postgres import get_session
from scorecache.stores.queue import JobKind, JobState

NOW = datetime(2026, 4, 1, 3, 0, tzinfo=timezone.utc)


async def _units(queue, family: str, configuration_id: int):
    jobs = await queue.jobs_for(family, configuration_id)
    return sorted((j for j in jobs if j.kind == JobKind.UNIT), key=lambda j: j.run_at)


async def test_orchestrate_queues_one_unit_per_partition_plus_aggregation(make_configuration, queue):
    config = await make_configuration()
    settings = get_settings()

    result = await orchestrate("decades", config.id, now=NOW)

    assert result.units_queued == 11
    assert result.duplicates_skipped == 0
    assert result.aggregation_queued is True

    units = await _units(queue, "decades", config.id)
    assert [u.partition_key for u in units] == [str(y) for y in range(1920, 2030, 10)]
    spacing = timedelta(seconds=settings.unit_spacing_seconds)
    assert [u.run_at for u in units] == [NOW + spacing * i for i in range(11)]
    assert all(u.orchestration_id == result.orchestration_id for u in units)

    [aggregate] = [j for j in await queue.jobs_for("decades", config.id) if j.kind == JobKind.AGGREGATE]
    assert aggregate.run_at == units[-1].run_at + timedelta(seconds=settings.aggregation_delay_seconds)
    assert result.finishes_by == aggregate.run_at


async def test_reorchestrating_in_flight_queues_no_duplicates(make_configuration, queue):
    config = await make_configuration()
    await orchestrate("decades", config.id, now=NOW)
    # Some units start executing
    await queue.fetch_due(NOW + timedelta(minutes=5))

    again = await orchestrate("decades", config.id, now=NOW + timedelta(minutes=5))

    assert again.units_queued == 0
    assert again.duplicates_skipped == 11
    assert again.aggregation_queued is False
    assert again.finishes_by is None
    assert len(await _units(queue, "decades", config.id)) == 11


async def test_spacing_counts_only_queued_units(make_configuration, queue):
    config = await make_configuration(family="festivals")
    await orchestrate("festivals", config.id, now=NOW)
    # cannes finishes; the rest are still outstanding
    [cannes] = [j for j in await queue.fetch_due(NOW) if j.partition_key == "cannes"]
    await queue.complete(cannes)

    later = NOW + timedelta(hours=1)
    result = await orchestrate("festivals", config.id, now=later)

    assert result.units_queued == 1
    assert result.partitions == ["cannes"]
    newest = [j for j in await _units(queue, "festivals", config.id) if j.orchestration_id == result.orchestration_id]
    assert newest[0].run_at == later


async def test_orchestrate_validates_family_and_configuration(make_configuration, queue):
    festivals = await make_configuration(family="festivals")
    with pytest.raises(UnknownFamily):
        await orchestrate("centuries", festivals.id)
    with pytest.raises(NotFound):
        await orchestrate("decades", 12345)
    with pytest.raises(ConfigurationInvalid):
        await orchestrate("decades", festivals.id)
    assert await queue.jobs_for("decades", festivals.id) == []
    assert await queue.jobs_for("festivals", festivals.id) == []


async def test_retry_failed_targets_missing_or_failed_partitions(make_configuration, queue):
    config = await make_configuration(family="festivals")
    await orchestrate("festivals", config.id, now=NOW)

    jobs = {j.partition_key: j for j in await queue.fetch_due(NOW + timedelta(days=1), limit=50) if j.partition_key}
    async with get_session() as session:
        for key in ("cannes", "venice", "berlin"):
            await durable_cache.upsert_entry(session, key, config.id, {"items": []}, {})
            await queue.complete(jobs[key])
        # oscars: cached by an earlier sweep, but its latest job failed
        await durable_cache.upsert_entry(session, "oscars", config.id, {"items": []}, {})
    await queue.fail(jobs["oscars"], "boom")
    await queue.fail(jobs["sundance"], "boom")

    result = await retry_failed("festivals", config.id, now=NOW + timedelta(days=2))

    assert sorted(result.partitions) == ["oscars", "sundance"]
    assert result.units_queued == 2
    assert result.aggregation_queued is True


async def test_refresh_status_counts(make_configuration, queue):
    config = await make_configuration(family="festivals")
    await orchestrate("festivals", config.id, now=NOW)
    due = {j.partition_key: j for j in await queue.fetch_due(NOW + timedelta(minutes=3), limit=50)}
    await queue.complete(due["cannes"])
    await queue.fail(due["venice"], "boom")

    status = await refresh_status("festivals", config.id)

    assert status.counts["completed"] == 1
    assert status.counts["failed"] == 1
    assert status.counts["scheduled"] == 3
    assert status.counts["missing"] == 0
    assert status.failed_partitions == ["venice"]
    assert status.aggregation_state == JobState.SCHEDULED.value
    venice = next(p for p in status.partitions if p.partition_key == "venice")
    assert venice.last_error == "boom"


async def test_refresh_status_without_jobs(make_configuration, queue):
    config = await make_configuration()
    status = await refresh_status("decades", config.id)
    assert status.counts["missing"] == 11
    assert status.aggregation_state == "missing"


async def test_orchestrate_active(make_configuration, queue):
    with pytest.raises(NotFound):
        await orchestrate_active("decades", now=NOW)
    config = await make_configuration()
    result = await orchestrate_active("decades", now=NOW)
    assert result.configuration_id == config.id
    assert result.units_queued == 11
