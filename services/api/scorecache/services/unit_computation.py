"""Unit computation: score one partition under one configuration.

Flow:
1. Load configuration + entity set (read-only)
2. Build population stats, score and rank
3. Single durable cache upsert

Any failure leaves the cache untouched for this key; the previous entry (if
any) stays in place and keeps serving reads.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from statistics import fmean, median, pstdev
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from scorecache.errors import NotFound, PartitionComputeFailed, ScoreCacheError
from scorecache.models import ScoringConfiguration
from scorecache.services import durable_cache
from scorecache.services.durable_cache import CacheEntry
from scorecache.services.families import AGGREGATE_PARTITION_KEY, Family, get_family
from scorecache.services.scoring import (
    Entity,
    ScoringRules,
    build_population,
    rules_from_configuration,
    score,
)
from scorecache.services.source_data import entities_for_partition
from scorecache.settings import get_settings
from scorecache.stores.postgres import get_session

logger = logging.getLogger("uvicorn.error")

SCORE_PRECISION = 4


@dataclass(frozen=True)
class RankedItem:
    id: int
    title: str
    year: int | None
    score: float
    rank: int
    breakdown: dict[str, float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "year": self.year,
            "score": self.score,
            "rank": self.rank,
            "breakdown": self.breakdown,
        }


def score_statistics(scores: list[float]) -> dict[str, Any]:
    """count/average/median/min/max/std_dev over a list of scores."""
    if not scores:
        return {"count": 0, "average": None, "median": None, "min": None, "max": None, "std_dev": None}
    return {
        "count": len(scores),
        "average": round(fmean(scores), SCORE_PRECISION),
        "median": round(median(scores), SCORE_PRECISION),
        "min": round(min(scores), SCORE_PRECISION),
        "max": round(max(scores), SCORE_PRECISION),
        "std_dev": round(pstdev(scores), SCORE_PRECISION) if len(scores) > 1 else 0.0,
    }


def rank_entities(entities: list[Entity], rules: ScoringRules, limit: int) -> tuple[list[RankedItem], list[float]]:
    """Score and rank an entity set.

    Returns:
        (top `limit` ranked items, all scores for statistics)
    """
    population = build_population(entities, rules)
    scored = [(entity, score(entity, rules, population)) for entity in entities]
    # Highest total first; entity id breaks ties
    scored.sort(key=lambda pair: (-pair[1].total, pair[0].id))

    items = [
        RankedItem(
            id=entity.id,
            title=entity.title,
            year=entity.year,
            score=round(result.total, SCORE_PRECISION),
            rank=position,
            breakdown={k: round(v, SCORE_PRECISION) for k, v in result.breakdown.items()},
        )
        for position, (entity, result) in enumerate(scored[:limit], start=1)
    ]
    return items, [result.total for _, result in scored]


async def _load_configuration(
    session: AsyncSession,
    family: Family,
    partition_key: str,
    configuration_id: int,
) -> ScoringConfiguration:
    config = await session.get(ScoringConfiguration, configuration_id)
    if config is None:
        raise NotFound(f"Scoring configuration not found: {configuration_id}")
    if config.family != family.name:
        raise PartitionComputeFailed(
            family.name,
            partition_key,
            configuration_id,
            f"configuration belongs to family {config.family!r}",
        )
    return config


async def _compute(
    family: Family,
    partition_key: str,
    configuration_id: int,
    orchestration_id: str | None,
) -> CacheEntry:
    started = time.monotonic()
    async with get_session() as session:
        config = await _load_configuration(session, family, partition_key, configuration_id)
        rules = rules_from_configuration(config)
        entities = await entities_for_partition(session, family, partition_key)
        items, scores = rank_entities(entities, rules, family.ranking_limit)

        metadata = {
            "family": family.name,
            "configuration_version": config.version,
            "normalization_method": rules.method.value,
            "total_candidates": len(entities),
            "orchestration_id": orchestration_id,
            "duration_ms": int((time.monotonic() - started) * 1000),
        }
        return await durable_cache.upsert_entry(
            session,
            partition_key=partition_key,
            configuration_id=configuration_id,
            payload={"items": [item.to_dict() for item in items]},
            statistics=score_statistics(scores),
            metadata=metadata,
        )


async def compute_unit(
    family_name: str,
    partition_key: str,
    configuration_id: int,
    orchestration_id: str | None = None,
    time_budget: float | None = None,
) -> CacheEntry:
    """Compute and persist one partition.

    Args:
        family_name: Computation family.
        partition_key: Partition within the family.
        configuration_id: Scoring configuration to apply.
        orchestration_id: Parent orchestration (recorded in metadata).
        time_budget: Wall-clock budget in seconds (defaults to settings).

    Returns:
        The written cache entry.

    Raises:
        PartitionComputeFailed: On any failure, including exceeding the budget.
            Nothing is written in that case.
    """
    family = get_family(family_name)
    if partition_key == AGGREGATE_PARTITION_KEY or not family.has_partition(partition_key):
        raise PartitionComputeFailed(
            family_name, partition_key, configuration_id, "unknown partition for family"
        )

    budget = time_budget if time_budget is not None else get_settings().unit_time_budget_seconds
    try:
        entry = await asyncio.wait_for(
            _compute(family, partition_key, configuration_id, orchestration_id),
            timeout=budget,
        )
    except asyncio.TimeoutError as e:
        raise PartitionComputeFailed(
            family_name,
            partition_key,
            configuration_id,
            f"exceeded time budget of {budget}s; split this partition finer",
        ) from e
    except PartitionComputeFailed:
        raise
    except ScoreCacheError as e:
        raise PartitionComputeFailed(family_name, partition_key, configuration_id, str(e)) from e
    except Exception as e:
        logger.exception(f"[unit] {family_name}/{partition_key} crashed")
        raise PartitionComputeFailed(
            family_name, partition_key, configuration_id, f"{type(e).__name__}: {e}"
        ) from e

    logger.info(
        f"[unit] {family_name}/{partition_key} configuration={configuration_id} "
        f"candidates={entry.metadata.get('total_candidates')} "
        f"duration_ms={entry.metadata.get('duration_ms')}"
    )
    return entry
