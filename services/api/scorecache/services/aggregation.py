"""Aggregation unit: cross-partition summary and validation for one family/configuration.

Reads the partition entries already in the durable cache and writes one
summary row under AGGREGATE_PARTITION_KEY. No partition is recomputed.

Validation: for a partition with N works on the curated reference list, the
top N ranked items are the prediction; accuracy is the share of the reference
works found among them. compare_configurations() reads the stored aggregates
of several configurations side by side.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from scorecache.errors import ConfigurationInvalid, NotFound
from scorecache.models import ScoringConfiguration
from scorecache.services import durable_cache, source_data
from scorecache.services.configuration import get_configuration, list_configurations
from scorecache.services.durable_cache import CacheEntry
from scorecache.services.families import AGGREGATE_PARTITION_KEY, get_family
from scorecache.stores.postgres import get_session

logger = logging.getLogger("uvicorn.error")


def _accuracy(correct: int, total: int) -> float | None:
    return round(correct / total * 100, 1) if total else None


def validate_partition(items: list[dict[str, Any]], reference_ids: set[int]) -> dict[str, Any]:
    """Compare a ranked item list against the partition's reference works."""
    reference_count = len(reference_ids)
    predicted = [item["id"] for item in items[:reference_count]]
    correct = sum(1 for work_id in predicted if work_id in reference_ids)
    return {
        "reference_count": reference_count,
        "correctly_predicted": correct,
        "accuracy": _accuracy(correct, reference_count),
        "missed_count": reference_count - correct,
        "false_positive_count": len(predicted) - correct,
    }


def summarize(
    partitions: tuple[str, ...],
    entries: dict[str, CacheEntry],
    reference_ids: dict[str, set[int]] | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Build (payload, statistics) for the aggregate row."""
    reference_ids = reference_ids or {}
    rows: list[dict[str, Any]] = []
    total = 0
    weighted_sum = 0.0
    reference_total = 0
    correct_total = 0
    for key in partitions:
        entry = entries.get(key)
        if entry is None:
            continue
        stats = entry.statistics
        items = entry.payload.get("items") or []
        count = int(stats.get("count") or 0)
        average = stats.get("average")
        validation = validate_partition(items, reference_ids.get(key, set()))
        rows.append(
            {
                "partition": key,
                "count": count,
                "average": average,
                "top_score": items[0]["score"] if items else None,
                "top_id": items[0]["id"] if items else None,
                "calculated_at": entry.calculated_at.isoformat(),
                "validation": validation,
            }
        )
        if count and average is not None:
            total += count
            weighted_sum += average * count
        reference_total += validation["reference_count"]
        correct_total += validation["correctly_predicted"]

    missing = [key for key in partitions if key not in entries]
    payload = {"partitions": rows, "missing_partitions": missing}
    statistics = {
        "partitions_cached": len(rows),
        "partitions_missing": len(missing),
        "count": total,
        "average": round(weighted_sum / total, 4) if total else None,
        "reference_count": reference_total,
        "correctly_predicted": correct_total,
        "accuracy": _accuracy(correct_total, reference_total),
    }
    return payload, statistics


async def run_aggregation(
    family_name: str,
    configuration_id: int,
    orchestration_id: str | None = None,
) -> CacheEntry:
    """Summarize and validate every cached partition of a family under one configuration."""
    family = get_family(family_name)
    async with get_session() as session:
        if await session.get(ScoringConfiguration, configuration_id) is None:
            raise NotFound(f"Scoring configuration not found: {configuration_id}")

        entries = {
            e.partition_key: e
            for e in await durable_cache.list_entries(session, configuration_id)
            if family.has_partition(e.partition_key)
        }
        reference_ids = {
            key: await source_data.reference_ids_for_partition(session, family, key) for key in entries
        }
        payload, statistics = summarize(family.partitions, entries, reference_ids)
        entry = await durable_cache.upsert_entry(
            session,
            partition_key=AGGREGATE_PARTITION_KEY,
            configuration_id=configuration_id,
            payload=payload,
            statistics=statistics,
            metadata={"family": family.name, "orchestration_id": orchestration_id},
        )

    if payload["missing_partitions"]:
        logger.warning(
            f"[aggregation] {family.name} configuration={configuration_id} "
            f"missing partitions: {', '.join(payload['missing_partitions'])}"
        )
    else:
        logger.info(
            f"[aggregation] {family.name} configuration={configuration_id} complete "
            f"accuracy={statistics['accuracy']}"
        )
    return entry


# ============================================================
# Cross-configuration comparison
# ============================================================


@dataclass
class ConfigurationAccuracy:
    configuration_id: int
    version: int
    name: str
    is_active: bool
    aggregated: bool
    accuracy: float | None = None
    partition_accuracy: dict[str, float | None] = field(default_factory=dict)
    calculated_at: datetime | None = None


@dataclass
class ConfigurationComparison:
    family: str
    partitions: tuple[str, ...]
    configurations: list[ConfigurationAccuracy]

    @property
    def best_overall(self) -> ConfigurationAccuracy | None:
        scored = [c for c in self.configurations if c.accuracy is not None]
        return max(scored, key=lambda c: (c.accuracy, c.version), default=None)

    @property
    def best_per_partition(self) -> dict[str, int | None]:
        """Partition key -> id of the configuration with the highest accuracy there."""
        best: dict[str, int | None] = {}
        for key in self.partitions:
            scored = [
                (c.partition_accuracy[key], c.version, c.configuration_id)
                for c in self.configurations
                if c.partition_accuracy.get(key) is not None
            ]
            best[key] = max(scored)[2] if scored else None
        return best


def _accuracy_from_aggregate(config: ScoringConfiguration, entry: CacheEntry | None) -> ConfigurationAccuracy:
    result = ConfigurationAccuracy(
        configuration_id=config.id,
        version=config.version,
        name=config.name,
        is_active=config.is_active,
        aggregated=entry is not None,
    )
    if entry is None:
        return result
    result.accuracy = entry.statistics.get("accuracy")
    result.calculated_at = entry.calculated_at
    result.partition_accuracy = {
        row["partition"]: (row.get("validation") or {}).get("accuracy")
        for row in entry.payload.get("partitions", [])
    }
    return result


async def compare_configurations(
    family_name: str,
    configuration_ids: list[int] | None = None,
) -> ConfigurationComparison:
    """Compare stored aggregates of several configurations of one family.

    Only cached aggregates are read. A configuration whose aggregation has not
    run yet is listed with aggregated=False.

    Args:
        family_name: Computation family.
        configuration_ids: Configurations to compare. Defaults to every
            configuration of the family that was ever activated.

    Raises:
        UnknownFamily: If the family is not registered.
        NotFound: If a given configuration does not exist.
        ConfigurationInvalid: If a given configuration belongs to another family.
    """
    family = get_family(family_name)
    async with get_session() as session:
        if configuration_ids is None:
            configs = await list_configurations(session, family.name, include_drafts=False)
        else:
            configs = [await get_configuration(session, cid) for cid in configuration_ids]
            foreign = [c.id for c in configs if c.family != family.name]
            if foreign:
                raise ConfigurationInvalid(
                    [f"configurations {foreign} do not belong to family {family.name!r}"]
                )
        results = [
            _accuracy_from_aggregate(
                config, await durable_cache.get_entry(session, AGGREGATE_PARTITION_KEY, config.id)
            )
            for config in configs
        ]
    return ConfigurationComparison(family=family.name, partitions=family.partitions, configurations=results)
