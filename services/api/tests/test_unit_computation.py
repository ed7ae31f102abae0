import asyncio

import pytest

from scorecache.errors import ConfigurationInvalid, PartitionComputeFailed
from scorecache.services import durable_cache, unit_computation
from scorecache.services.aggregation import compare_configurations, run_aggregation, validate_partition
from scorecache.services.families import AGGREGATE_PARTITION_KEY
from scorecache.services.unit_computation import compute_unit, score_statistics
from scorecache.stores.postgres import get_session


def _values(po: float | None, ci: float | None = 5.0) -> dict:
    return {"popular_opinion": po, "cultural_impact": ci}


async def test_compute_ranks_partition_and_writes_one_entry(make_configuration, add_works):
    config = await make_configuration(
        category_weights={"popular_opinion": 0.5, "cultural_impact": 0.5},
    )
    ids = await add_works(
        ("Low", 1991, _values(4.0), 100, []),
        ("High", 1995, _values(9.0), 100, []),
        ("Mid", 1999, _values(7.0), 100, []),
        ("Other decade", 2001, _values(10.0), 100, []),
    )

    entry = await compute_unit("decades", "1990", config.id, orchestration_id="orch-1")

    items = entry.payload["items"]
    assert [i["title"] for i in items] == ["High", "Mid", "Low"]
    assert [i["rank"] for i in items] == [1, 2, 3]
    assert items[0]["id"] == ids[1]
    assert items[0]["score"] == pytest.approx(0.7)
    assert sum(items[0]["breakdown"].values()) == pytest.approx(items[0]["score"], abs=1e-3)

    assert entry.statistics["count"] == 3
    assert entry.statistics["max"] == pytest.approx(0.7)
    assert entry.statistics["median"] == pytest.approx(0.6)
    assert entry.metadata["family"] == "decades"
    assert entry.metadata["configuration_version"] == config.version
    assert entry.metadata["total_candidates"] == 3
    assert entry.metadata["orchestration_id"] == "orch-1"

    async with get_session() as session:
        stored = await durable_cache.get_entry(session, "1990", config.id)
    assert stored.payload == entry.payload


async def test_ties_break_by_id(make_configuration, add_works):
    config = await make_configuration()
    ids = await add_works(
        ("B", 1990, _values(6.0), 0, []),
        ("A", 1990, _values(6.0), 0, []),
    )
    entry = await compute_unit("decades", "1990", config.id)
    assert [i["id"] for i in entry.payload["items"]] == sorted(ids)


async def test_organization_partition_uses_nominations(make_configuration, add_works):
    config = await make_configuration(family="festivals")
    await add_works(
        ("In competition", 1994, _values(8.0), 0, ["cannes"]),
        ("Elsewhere", 1994, _values(9.0), 0, ["venice"]),
    )
    entry = await compute_unit("festivals", "cannes", config.id)
    assert [i["title"] for i in entry.payload["items"]] == ["In competition"]


async def test_empty_partition_still_writes_entry(make_configuration):
    config = await make_configuration()
    entry = await compute_unit("decades", "1920", config.id)
    assert entry.payload == {"items": []}
    assert entry.statistics["count"] == 0


async def test_failure_writes_nothing(make_configuration, add_works, monkeypatch):
    config = await make_configuration()
    await add_works(("X", 1990, _values(5.0), 0, []))

    def explode(*args, **kwargs):
        raise ValueError("engine blew up")

    monkeypatch.setattr(unit_computation, "rank_entities", explode)
    with pytest.raises(PartitionComputeFailed) as exc_info:
        await compute_unit("decades", "1990", config.id)

    assert "engine blew up" in exc_info.value.reason
    async with get_session() as session:
        assert await durable_cache.get_entry(session, "1990", config.id) is None


async def test_exceeding_time_budget_asks_for_finer_partition(make_configuration, monkeypatch):
    config = await make_configuration()

    async def slow(*args, **kwargs):
        await asyncio.sleep(5)

    monkeypatch.setattr(unit_computation, "_compute", slow)
    with pytest.raises(PartitionComputeFailed) as exc_info:
        await compute_unit("decades", "1990", config.id, time_budget=0.05)
    assert "split this partition finer" in str(exc_info.value)


async def test_rejects_unknown_partition_and_foreign_configuration(make_configuration):
    decades = await make_configuration()
    festivals = await make_configuration(family="festivals")

    with pytest.raises(PartitionComputeFailed):
        await compute_unit("decades", "1985", decades.id)
    with pytest.raises(PartitionComputeFailed):
        await compute_unit("decades", AGGREGATE_PARTITION_KEY, decades.id)
    with pytest.raises(PartitionComputeFailed) as exc_info:
        await compute_unit("decades", "1990", festivals.id)
    assert "festivals" in exc_info.value.reason
    with pytest.raises(PartitionComputeFailed):
        await compute_unit("decades", "1990", 9999)


def test_score_statistics():
    stats = score_statistics([0.2, 0.4, 0.6, 0.8])
    assert stats["count"] == 4
    assert stats["average"] == pytest.approx(0.5)
    assert stats["median"] == pytest.approx(0.5)
    assert stats["min"] == 0.2 and stats["max"] == 0.8
    assert stats["std_dev"] == pytest.approx(0.2236, abs=1e-4)
    assert score_statistics([])["average"] is None


async def test_aggregation_summarizes_cached_partitions(make_configuration, add_works):
    config = await make_configuration()
    await add_works(
        ("A", 1990, _values(8.0), 0, []),
        ("B", 1991, _values(6.0), 0, []),
        ("C", 2005, _values(4.0), 0, []),
    )
    await compute_unit("decades", "1990", config.id)
    await compute_unit("decades", "2000", config.id)

    entry = await run_aggregation("decades", config.id)

    assert entry.partition_key == AGGREGATE_PARTITION_KEY
    assert entry.statistics["partitions_cached"] == 2
    assert entry.statistics["partitions_missing"] == 9
    assert entry.statistics["count"] == 3
    assert "1920" in entry.payload["missing_partitions"]
    top = {row["partition"]: row["top_score"] for row in entry.payload["partitions"]}
    assert top["1990"] == pytest.approx(0.56)


def test_validate_partition_takes_top_n_by_reference_count():
    items = [{"id": 3}, {"id": 1}, {"id": 2}, {"id": 4}]

    result = validate_partition(items, {1, 4})

    assert result == {
        "reference_count": 2,
        "correctly_predicted": 1,
        "accuracy": 50.0,
        "missed_count": 1,
        "false_positive_count": 1,
    }
    assert validate_partition(items, set())["accuracy"] is None


def _reference(po: float, ci: float) -> dict:
    return {**_values(po, ci), "on_reference_list": True}


async def _aggregate_both(make_configuration, add_works):
    by_opinion = await make_configuration(name="Opinion", category_weights={"popular_opinion": 1.0})
    by_impact = await make_configuration(name="Impact", category_weights={"cultural_impact": 1.0})
    await add_works(
        ("Classic", 1990, _reference(9.0, 2.0), 0, []),
        ("Hit", 1991, _values(8.0, 1.0), 0, []),
        ("Landmark", 1992, _reference(3.0, 9.0), 0, []),
        ("Later", 2003, _reference(5.0, 5.0), 0, []),
    )
    for config in (by_opinion, by_impact):
        await compute_unit("decades", "1990", config.id)
        await compute_unit("decades", "2000", config.id)
        await run_aggregation("decades", config.id)
    return by_opinion, by_impact


async def test_aggregation_validates_against_reference_list(make_configuration, add_works):
    by_opinion, _ = await _aggregate_both(make_configuration, add_works)

    async with get_session() as session:
        entry = await durable_cache.get_entry(session, AGGREGATE_PARTITION_KEY, by_opinion.id)

    rows = {row["partition"]: row["validation"] for row in entry.payload["partitions"]}
    assert rows["1990"]["reference_count"] == 2
    assert rows["1990"]["correctly_predicted"] == 1
    assert rows["1990"]["accuracy"] == 50.0
    assert rows["2000"]["accuracy"] == 100.0
    assert entry.statistics["reference_count"] == 3
    assert entry.statistics["correctly_predicted"] == 2
    assert entry.statistics["accuracy"] == pytest.approx(66.7)


async def test_compare_configurations_picks_best_overall_and_per_partition(make_configuration, add_works):
    by_opinion, by_impact = await _aggregate_both(make_configuration, add_works)

    comparison = await compare_configurations("decades")

    assert {c.configuration_id for c in comparison.configurations} == {by_opinion.id, by_impact.id}
    assert comparison.best_overall.configuration_id == by_impact.id
    assert comparison.best_overall.accuracy == 100.0
    best = comparison.best_per_partition
    assert best["1990"] == by_impact.id
    # Tied partitions go to the newer version
    assert best["2000"] == by_impact.id
    assert best["1920"] is None


async def test_compare_configurations_lists_unaggregated_and_rejects_foreign(make_configuration, add_works):
    by_opinion, _ = await _aggregate_both(make_configuration, add_works)
    draft = await make_configuration(activate=False)
    festival = await make_configuration(family="festivals", activate=False)

    comparison = await compare_configurations("decades", [by_opinion.id, draft.id])

    pending = next(c for c in comparison.configurations if c.configuration_id == draft.id)
    assert pending.aggregated is False
    assert pending.accuracy is None
    assert comparison.best_overall.configuration_id == by_opinion.id

    with pytest.raises(ConfigurationInvalid):
        await compare_configurations("decades", [by_opinion.id, festival.id])
