import pytest

from scorecache.errors import ConfigurationInvalid
from scorecache.services.scoring import (
    Category,
    Entity,
    bayesian_average,
    build_population,
    build_rules,
    percentile_rank,
    score,
    validate_rules,
)

PO = Category.POPULAR_OPINION
IR = Category.INDUSTRY_RECOGNITION
CI = Category.CULTURAL_IMPACT


def _entity(votes: int = 1000, **values) -> Entity:
    return Entity(id=1, title="t", year=1990, values={Category(k): v for k, v in values.items()}, vote_count=votes)


def test_none_normalization_scales_to_unit_interval():
    rules = build_rules({"popular_opinion": 0.5, "cultural_impact": 0.5})
    result = score(_entity(popular_opinion=8.0, cultural_impact=6.0), rules)
    assert result.total == pytest.approx(0.7)
    assert result.breakdown == pytest.approx({"popular_opinion": 0.4, "cultural_impact": 0.3})


def test_exclude_renormalizes_remaining_weights():
    rules = build_rules(
        {"popular_opinion": 0.5, "industry_recognition": 0.3, "cultural_impact": 0.2},
        missing_data_strategies={"industry_recognition": "exclude"},
    )
    result = score(_entity(popular_opinion=8.0, industry_recognition=None, cultural_impact=6.0), rules)

    assert result.applied_weights == pytest.approx(
        {"popular_opinion": 0.5 / 0.7, "cultural_impact": 0.2 / 0.7}
    )
    assert result.total == pytest.approx(0.5 / 0.7 * 0.8 + 0.2 / 0.7 * 0.6)
    assert result.missing == ["industry_recognition"]
    assert sum(result.breakdown.values()) == pytest.approx(result.total)


def test_bayesian_shrinks_low_evidence_rating():
    weights = {"popular_opinion": 0.6, "industry_recognition": 0.2, "cultural_impact": 0.2}
    entity = _entity(votes=10, popular_opinion=9.0, industry_recognition=8.0, cultural_impact=7.0)

    linear = score(entity, build_rules(weights))
    shrunk = score(
        entity,
        build_rules(weights, "bayesian", {"prior_mean": 6.5, "min_votes": 500}),
    )

    expected_rating = (10 * 9.0 + 500 * 6.5) / 510 / 10
    assert shrunk.breakdown["popular_opinion"] == pytest.approx(0.6 * expected_rating)
    assert 0.65 < expected_rating < 0.9
    assert shrunk.total < linear.total


def test_bayesian_leaves_other_categories_linear():
    rules = build_rules({"popular_opinion": 0.5, "cultural_impact": 0.5}, "bayesian", {})
    result = score(_entity(votes=0, popular_opinion=9.0, cultural_impact=4.0), rules)
    assert result.breakdown["cultural_impact"] == pytest.approx(0.2)
    # No votes: rating collapses to the default prior mean (6.5)
    assert result.breakdown["popular_opinion"] == pytest.approx(0.325)


def test_bayesian_average_formula():
    assert bayesian_average(9.0, 500, 6.5, 500) == pytest.approx(7.75)
    assert bayesian_average(9.0, 0, 6.5, 500) == pytest.approx(6.5)


def test_percentile_rank_uses_mid_rank():
    values = (1.0, 2.0, 3.0, 4.0)
    assert percentile_rank(3.0, values) == pytest.approx(0.625)
    assert percentile_rank(0.0, values) == 0.0
    assert percentile_rank(5.0, values) == 1.0
    assert percentile_rank(2.0, (2.0, 2.0)) == pytest.approx(0.5)
    assert percentile_rank(3.0, (1.0, 2.0, 3.0)) == pytest.approx(5 / 6)
    assert percentile_rank(7.0, (7.0,)) == 0.5


def test_zscore_with_zero_stddev_is_neutral():
    rules = build_rules({"popular_opinion": 1.0}, "zscore")
    entities = [
        Entity(id=i, values={PO: 7.0}) for i in range(3)
    ]
    population = build_population(entities, rules)
    assert score(entities[0], rules, population).total == pytest.approx(0.5)


def test_zscore_clamps_and_rescales():
    rules = build_rules({"popular_opinion": 1.0}, "zscore", {"floor": -1, "ceiling": 1})
    entities = [Entity(id=i, values={PO: v}) for i, v in enumerate([2.0, 4.0, 6.0, 8.0, 10.0])]
    population = build_population(entities, rules)

    top = score(entities[-1], rules, population).total
    middle = score(entities[2], rules, population).total
    assert top == pytest.approx(1.0)
    assert middle == pytest.approx(0.5)


def test_missing_strategies():
    weights = {"popular_opinion": 0.5, "cultural_impact": 0.5}
    entity = _entity(popular_opinion=8.0)

    neutral = score(entity, build_rules(weights, missing_data_strategies={"cultural_impact": "neutral"}))
    penalize = score(entity, build_rules(weights, missing_data_strategies={"cultural_impact": "penalize"}))
    assert neutral.breakdown["cultural_impact"] == pytest.approx(0.25)
    assert penalize.breakdown["cultural_impact"] == 0.0

    rules = build_rules(weights, missing_data_strategies={"cultural_impact": "average"})
    others = [Entity(id=i, values={PO: 5.0, CI: v}) for i, v in enumerate([4.0, 8.0], start=2)]
    population = build_population([entity, *others], rules)
    average = score(entity, rules, population)
    assert average.breakdown["cultural_impact"] == pytest.approx(0.5 * 0.6)


def test_all_weight_excluded_scores_zero():
    rules = build_rules({"cultural_impact": 1.0}, missing_data_strategies={"cultural_impact": "exclude"})
    result = score(_entity(popular_opinion=9.0), rules)
    assert result.total == 0.0
    assert result.breakdown == {}


# ============================================================
# Validation
# ============================================================


def test_valid_configuration_has_no_errors():
    assert validate_rules(
        {"popular_opinion": 0.6, "industry_recognition": 0.2, "cultural_impact": 0.2},
        "bayesian",
        {"prior_mean": 6.5, "min_votes": 500},
        {"cultural_impact": "exclude"},
    ) == []


def test_weight_sum_tolerance():
    assert validate_rules({"popular_opinion": 0.5, "cultural_impact": 0.5004}, "none", {}, {}) == []
    errors = validate_rules({"popular_opinion": 0.5, "cultural_impact": 0.4}, "none", {}, {})
    assert any("sum to 1.0" in e for e in errors)


@pytest.mark.parametrize(
    "weights,method,settings,strategies,needle",
    [
        ({"ratings": 1.0}, "none", {}, {}, "unknown categories"),
        ({"popular_opinion": 1.5, "cultural_impact": -0.5}, "none", {}, {}, "between 0 and 1"),
        ({"popular_opinion": 1.0}, "magic", {}, {}, "normalization_method"),
        ({"popular_opinion": 1.0}, "zscore", {"floor": 2, "ceiling": 2}, {}, "floor must be less"),
        ({"popular_opinion": 1.0}, "bayesian", {"prior_mean": 11}, {}, "prior_mean"),
        ({"popular_opinion": 1.0}, "bayesian", {"min_votes": 0}, {}, "min_votes"),
        ({"popular_opinion": 1.0}, "none", {}, {"popular_opinion": "ignore"}, "missing_data_strategies"),
        ({}, "none", {}, {}, "non-empty"),
    ],
)
def test_validation_rejects(weights, method, settings, strategies, needle):
    errors = validate_rules(weights, method, settings, strategies)
    assert any(needle in e for e in errors), errors


def test_build_rules_raises_instead_of_coercing():
    with pytest.raises(ConfigurationInvalid) as exc_info:
        build_rules({"popular_opinion": "0.5", "cultural_impact": 0.5})
    assert exc_info.value.errors
