"""Scoring engine: (entity, configuration) -> total score + per-category breakdown.

Pipeline per category:
1. Raw value (0-10 scale) or None when the source has no data
2. Missing values resolved by the category's missing-data strategy
3. Normalization to [0, 1] by the configuration's method
4. Weighted sum; weights renormalized to 1.0 over the applied categories

The engine is pure: no database or cache access. Population statistics for
percentile/zscore/average are computed by the caller over the partition's
entity set (see build_population).
"""

from __future__ import annotations

import math
from bisect import bisect_left, bisect_right
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from statistics import fmean, pstdev
from typing import Any

from scorecache.errors import ConfigurationInvalid


class Category(str, Enum):
    """Closed allow-list of scoring categories (version 1 of the category set)."""

    POPULAR_OPINION = "popular_opinion"
    INDUSTRY_RECOGNITION = "industry_recognition"
    CULTURAL_IMPACT = "cultural_impact"
    PEOPLE_QUALITY = "people_quality"
    FINANCIAL_PERFORMANCE = "financial_performance"


class NormalizationMethod(str, Enum):
    NONE = "none"
    BAYESIAN = "bayesian"
    PERCENTILE = "percentile"
    ZSCORE = "zscore"


class MissingDataStrategy(str, Enum):
    NEUTRAL = "neutral"  # midpoint
    EXCLUDE = "exclude"  # drop category, redistribute weight
    AVERAGE = "average"  # population mean
    PENALIZE = "penalize"  # floor


CATEGORY_SET_VERSION = 1
CATEGORY_SCALE = 10.0
WEIGHT_SUM_TOLERANCE = 1e-3

NEUTRAL_VALUE = 0.5
PENALTY_VALUE = 0.0

DEFAULT_BAYESIAN_PRIOR_MEAN = 6.5
DEFAULT_BAYESIAN_MIN_VOTES = 500
DEFAULT_ZSCORE_FLOOR = -3.0
DEFAULT_ZSCORE_CEILING = 3.0

# Categories whose raw value is a rate backed by a sample count
_RATE_CATEGORIES = frozenset({Category.POPULAR_OPINION})

_CATEGORY_VALUES = {c.value for c in Category}
_METHOD_VALUES = {m.value for m in NormalizationMethod}
_STRATEGY_VALUES = {s.value for s in MissingDataStrategy}


# ============================================================
# Validated rules
# ============================================================


@dataclass(frozen=True)
class ScoringRules:
    """Validated, typed view of a scoring configuration."""

    weights: dict[Category, float]
    method: NormalizationMethod = NormalizationMethod.NONE
    settings: dict[str, float] = field(default_factory=dict)
    strategies: dict[Category, MissingDataStrategy] = field(default_factory=dict)

    def strategy_for(self, category: Category) -> MissingDataStrategy:
        return self.strategies.get(category, MissingDataStrategy.NEUTRAL)

    @property
    def prior_mean(self) -> float:
        return float(self.settings.get("prior_mean", DEFAULT_BAYESIAN_PRIOR_MEAN))

    @property
    def min_votes(self) -> float:
        return float(self.settings.get("min_votes", DEFAULT_BAYESIAN_MIN_VOTES))

    @property
    def zscore_floor(self) -> float:
        return float(self.settings.get("floor", DEFAULT_ZSCORE_FLOOR))

    @property
    def zscore_ceiling(self) -> float:
        return float(self.settings.get("ceiling", DEFAULT_ZSCORE_CEILING))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_rules(
    category_weights: Mapping[str, Any] | None,
    normalization_method: str | None,
    normalization_settings: Mapping[str, Any] | None,
    missing_data_strategies: Mapping[str, Any] | None,
) -> list[str]:
    """Validate raw configuration values.

    Returns:
        List of human-readable problems; empty when the configuration is valid.
    """
    errors: list[str] = []
    weights = category_weights or {}
    settings = normalization_settings or {}
    strategies = missing_data_strategies or {}

    if not isinstance(weights, Mapping) or not weights:
        errors.append("category_weights must be a non-empty mapping")
        weights = {}

    unknown = sorted(str(k) for k in weights if k not in _CATEGORY_VALUES)
    if unknown:
        errors.append(f"category_weights contains unknown categories: {', '.join(unknown)}")

    non_numeric = sorted(str(k) for k, v in weights.items() if not _is_number(v))
    if non_numeric:
        errors.append(f"category_weights must be numbers: {', '.join(non_numeric)}")
    out_of_range = sorted(
        str(k) for k, v in weights.items() if _is_number(v) and not 0.0 <= v <= 1.0
    )
    if out_of_range:
        errors.append(f"category_weights must be between 0 and 1: {', '.join(out_of_range)}")

    if weights and not non_numeric:
        total = sum(float(v) for v in weights.values())
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            errors.append(f"category_weights must sum to 1.0 (currently {total:.4f})")

    method = normalization_method or NormalizationMethod.NONE.value
    if method not in _METHOD_VALUES:
        errors.append(
            f"normalization_method must be one of: {', '.join(sorted(_METHOD_VALUES))}"
        )
    elif method == NormalizationMethod.BAYESIAN.value:
        prior_mean = settings.get("prior_mean")
        min_votes = settings.get("min_votes")
        if prior_mean is not None and (not _is_number(prior_mean) or not 0 <= prior_mean <= CATEGORY_SCALE):
            errors.append("prior_mean must be between 0 and 10")
        if min_votes is not None and (not _is_number(min_votes) or min_votes < 1):
            errors.append("min_votes must be at least 1")
    elif method == NormalizationMethod.ZSCORE.value:
        floor = settings.get("floor", DEFAULT_ZSCORE_FLOOR)
        ceiling = settings.get("ceiling", DEFAULT_ZSCORE_CEILING)
        if not _is_number(floor) or not _is_number(ceiling):
            errors.append("zscore floor and ceiling must be numbers")
        elif floor >= ceiling:
            errors.append("floor must be less than ceiling")

    if not isinstance(strategies, Mapping):
        errors.append("missing_data_strategies must be a mapping")
    else:
        unknown_keys = sorted(str(k) for k in strategies if k not in _CATEGORY_VALUES)
        if unknown_keys:
            errors.append(
                f"missing_data_strategies contains unknown categories: {', '.join(unknown_keys)}"
            )
        bad_values = sorted(str(k) for k, v in strategies.items() if v not in _STRATEGY_VALUES)
        if bad_values:
            errors.append(
                "missing_data_strategies values must be one of: "
                f"{', '.join(sorted(_STRATEGY_VALUES))} (invalid for {', '.join(bad_values)})"
            )

    return errors


def build_rules(
    category_weights: Mapping[str, Any] | None,
    normalization_method: str | None = None,
    normalization_settings: Mapping[str, Any] | None = None,
    missing_data_strategies: Mapping[str, Any] | None = None,
) -> ScoringRules:
    """Validate and convert raw configuration values into ScoringRules.

    Raises:
        ConfigurationInvalid: If any value fails validation. Nothing is coerced.
    """
    errors = validate_rules(
        category_weights, normalization_method, normalization_settings, missing_data_strategies
    )
    if errors:
        raise ConfigurationInvalid(errors)

    return ScoringRules(
        weights={Category(k): float(v) for k, v in (category_weights or {}).items()},
        method=NormalizationMethod(normalization_method or NormalizationMethod.NONE.value),
        settings={k: float(v) for k, v in (normalization_settings or {}).items() if _is_number(v)},
        strategies={
            Category(k): MissingDataStrategy(v) for k, v in (missing_data_strategies or {}).items()
        },
    )


def rules_from_configuration(config: Any) -> ScoringRules:
    """Build rules from a ScoringConfiguration row (or any object with the same fields)."""
    return build_rules(
        config.category_weights,
        config.normalization_method,
        config.normalization_settings,
        config.missing_data_strategies,
    )


# ============================================================
# Entities and population
# ============================================================


@dataclass
class Entity:
    """One scorable record. Raw category values are on a 0-10 scale."""

    id: int
    title: str = ""
    year: int | None = None
    values: dict[Category, float | None] = field(default_factory=dict)
    vote_count: int = 0

    def value(self, category: Category) -> float | None:
        v = self.values.get(category)
        return float(v) if v is not None else None


@dataclass(frozen=True)
class CategoryStats:
    sorted_values: tuple[float, ...]
    mean: float
    stddev: float
    normalized_mean: float | None = None


@dataclass(frozen=True)
class Population:
    """Per-category distribution over one partition's entity set."""

    categories: dict[Category, CategoryStats]

    def get(self, category: Category) -> CategoryStats | None:
        return self.categories.get(category)


def _raw_population(entities: Iterable[Entity]) -> Population:
    buckets: dict[Category, list[float]] = {c: [] for c in Category}
    for entity in entities:
        for category in Category:
            v = entity.value(category)
            if v is not None:
                buckets[category].append(v)

    stats: dict[Category, CategoryStats] = {}
    for category, values in buckets.items():
        if not values:
            continue
        values.sort()
        stats[category] = CategoryStats(
            sorted_values=tuple(values),
            mean=fmean(values),
            stddev=pstdev(values) if len(values) > 1 else 0.0,
        )
    return Population(categories=stats)


def build_population(entities: list[Entity], rules: ScoringRules) -> Population:
    """Compute raw and normalized distribution statistics for the entity set."""
    raw = _raw_population(entities)
    enriched: dict[Category, CategoryStats] = {}
    for category, stats in raw.categories.items():
        normalized = [
            normalize(category, entity.value(category), entity.vote_count, rules, raw)
            for entity in entities
            if entity.value(category) is not None
        ]
        enriched[category] = CategoryStats(
            sorted_values=stats.sorted_values,
            mean=stats.mean,
            stddev=stats.stddev,
            normalized_mean=fmean(normalized) if normalized else None,
        )
    return Population(categories=enriched)


# ============================================================
# Normalization
# ============================================================


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def bayesian_average(rating: float, votes: float, prior_mean: float, min_votes: float) -> float:
    """Shrink a rating toward the prior mean, weighted by evidence.

    Formula: (v * R + m * C) / (v + m)
    """
    votes = max(0.0, float(votes))
    return (votes * rating + min_votes * prior_mean) / (votes + min_votes)


def percentile_rank(value: float, sorted_values: tuple[float, ...]) -> float:
    """Mid-rank percentile of value within sorted_values, in [0, 1]."""
    n = len(sorted_values)
    if n == 0:
        return NEUTRAL_VALUE
    below = bisect_left(sorted_values, value)
    equal = bisect_right(sorted_values, value) - below
    return (below + 0.5 * equal) / n


def normalize(
    category: Category,
    value: float,
    vote_count: int,
    rules: ScoringRules,
    population: Population,
) -> float:
    """Normalize a present raw value to [0, 1] using the configured method."""
    method = rules.method

    if method == NormalizationMethod.BAYESIAN and category in _RATE_CATEGORIES:
        shrunk = bayesian_average(value, vote_count, rules.prior_mean, rules.min_votes)
        return _clamp(shrunk / CATEGORY_SCALE)

    if method == NormalizationMethod.PERCENTILE:
        stats = population.get(category)
        return percentile_rank(value, stats.sorted_values if stats else ())

    if method == NormalizationMethod.ZSCORE:
        stats = population.get(category)
        if stats is None or stats.stddev == 0:
            return NEUTRAL_VALUE
        floor, ceiling = rules.zscore_floor, rules.zscore_ceiling
        z = _clamp((value - stats.mean) / stats.stddev, floor, ceiling)
        return (z - floor) / (ceiling - floor)

    return _clamp(value / CATEGORY_SCALE)


# ============================================================
# Scoring
# ============================================================


@dataclass(frozen=True)
class ScoreResult:
    total: float
    breakdown: dict[str, float]
    applied_weights: dict[str, float]
    missing: list[str]


def effective_weights(rules: ScoringRules, excluded: Iterable[Category]) -> dict[Category, float]:
    """Weights after dropping excluded categories, renormalized to sum to 1.0."""
    dropped = set(excluded)
    kept = {c: w for c, w in rules.weights.items() if c not in dropped and w > 0}
    total = sum(kept.values())
    if total <= 0:
        return {}
    return {c: w / total for c, w in kept.items()}


def _resolve_missing(
    category: Category,
    rules: ScoringRules,
    population: Population,
) -> float | None:
    strategy = rules.strategy_for(category)
    if strategy == MissingDataStrategy.EXCLUDE:
        return None
    if strategy == MissingDataStrategy.PENALIZE:
        return PENALTY_VALUE
    if strategy == MissingDataStrategy.AVERAGE:
        stats = population.get(category)
        if stats is not None and stats.normalized_mean is not None:
            return stats.normalized_mean
        return NEUTRAL_VALUE
    return NEUTRAL_VALUE


def score(entity: Entity, rules: ScoringRules, population: Population | None = None) -> ScoreResult:
    """Score one entity.

    Args:
        entity: Entity with raw category values.
        rules: Validated scoring rules.
        population: Distribution over the partition; defaults to the entity alone.

    Returns:
        ScoreResult with total in [0, 1] and a breakdown of weighted
        contributions that sums to total.
    """
    if population is None:
        population = build_population([entity], rules)

    normalized: dict[Category, float] = {}
    excluded: list[Category] = []
    missing: list[str] = []

    for category, weight in rules.weights.items():
        if weight <= 0:
            continue
        raw = entity.value(category)
        if raw is None:
            missing.append(category.value)
            resolved = _resolve_missing(category, rules, population)
            if resolved is None:
                excluded.append(category)
                continue
            normalized[category] = resolved
        else:
            normalized[category] = normalize(category, raw, entity.vote_count, rules, population)

    weights = effective_weights(rules, excluded)
    breakdown = {c.value: weights[c] * normalized[c] for c in weights}
    total = sum(breakdown.values())

    return ScoreResult(
        total=total,
        breakdown=breakdown,
        applied_weights={c.value: w for c, w in weights.items()},
        missing=missing,
    )
