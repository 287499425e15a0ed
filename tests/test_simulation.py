import numpy as np
import pytest

from promo_analytics.core.config import ComputeLimits, SimulationConfig
from promo_analytics.core.errors import ComputeBudgetExceededError, InvalidInputError, NumericDegeneracyError
from promo_analytics.core.simulation import (
    COMPETITOR_RESPONSE,
    OUR_ACTION,
    PRICE_CHANGE,
    MonteCarloSimulator,
    SimulationSpec,
    SimulationType,
    elasticity,
    market_drift,
    pearson,
    rank_sensitivities,
)


def promotion_spec(**overrides):
    spec = {
        "type": "PROMOTION_IMPACT",
        "base_value": 1_000_000,
        "iterations": 10_000,
        "variables": [
            {"name": "uplift", "distribution": "normal", "params": {"mean": 0, "std": 0.1}, "impact": 1.0}
        ],
    }
    spec.update(overrides)
    return spec


def test_promotion_impact_percentiles_and_mean():
    result = MonteCarloSimulator().simulate(promotion_spec(seed=1))
    p = result.summary.percentiles
    assert p["p5"] < p["p50"] < p["p95"]
    # Cannibalization and competitive response always eat into the base
    assert result.summary.mean < 1_000_000
    assert result.iterations == 10_000
    assert result.type is SimulationType.PROMOTION_IMPACT


def test_summary_invariants():
    summary = MonteCarloSimulator().simulate(promotion_spec(seed=2)).summary
    assert summary.min <= summary.percentiles["p5"] <= summary.median <= summary.percentiles["p95"] <= summary.max
    lower, upper = summary.confidence_interval
    assert lower < summary.mean < upper
    assert len(summary.probability_distribution) == 50
    assert sum(prob for _, prob in summary.probability_distribution) == pytest.approx(1.0)


def test_scenarios_are_ordered():
    result = MonteCarloSimulator().simulate(promotion_spec(seed=3))
    scenarios = result.scenarios
    assert scenarios["worst"].value <= scenarios["most_likely"].value <= scenarios["best"].value
    assert set(scenarios["best"].conditions) == {"uplift"}
    assert scenarios["most_likely"].probability == 0.5


def test_same_seed_same_result():
    first = MonteCarloSimulator().simulate(promotion_spec(seed=42))
    second = MonteCarloSimulator().simulate(promotion_spec(seed=42))
    assert first.to_dict() == second.to_dict()


def test_worker_count_does_not_change_outcomes():
    spec = promotion_spec(seed=7, iterations=9_000)
    serial = MonteCarloSimulator(SimulationConfig(workers=1, chunk_size=1_000)).simulate(spec)
    parallel = MonteCarloSimulator(SimulationConfig(workers=4, chunk_size=1_000)).simulate(spec)
    assert serial.to_dict() == parallel.to_dict()


def test_config_seed_used_when_spec_has_none():
    simulator = MonteCarloSimulator(SimulationConfig(seed=5))
    assert simulator.simulate(promotion_spec()).to_dict() == simulator.simulate(promotion_spec()).to_dict()


def test_recommendations_end_with_priority_lever():
    result = MonteCarloSimulator().simulate(promotion_spec(seed=4))
    assert result.recommendations[-1] == "Priority lever: uplift"
    assert any(r.startswith("Focus on optimizing: uplift") for r in result.recommendations)
    assert any("below 20%" in r for r in result.recommendations)


def test_constraints_clip_outcomes():
    result = MonteCarloSimulator().simulate(
        promotion_spec(seed=5, constraints=[{"type": "min", "value": 750_000}, {"type": "max", "value": 800_000}])
    )
    assert result.summary.min >= 750_000
    assert result.summary.max <= 800_000


def test_unknown_type_rejected():
    with pytest.raises(InvalidInputError) as exc:
        MonteCarloSimulator().simulate(promotion_spec(type="WEATHER_IMPACT"))
    assert "allowed" in exc.value.details
    with pytest.raises(InvalidInputError):
        SimulationSpec(type="WEATHER_IMPACT", base_value=1.0)


def test_string_type_is_coerced():
    spec = SimulationSpec(type="MARKET_SCENARIO", base_value=1.0)
    assert spec.type is SimulationType.MARKET_SCENARIO


@pytest.mark.parametrize("iterations", [0, -5, 2.5])
def test_iterations_must_be_positive_integers(iterations):
    with pytest.raises(InvalidInputError):
        MonteCarloSimulator().simulate(promotion_spec(iterations=iterations))


def test_iteration_ceiling():
    simulator = MonteCarloSimulator(limits=ComputeLimits(max_iterations=1_000))
    with pytest.raises(ComputeBudgetExceededError):
        simulator.simulate(promotion_spec(iterations=1_001))


def test_variable_validation():
    bad_param = promotion_spec(variables=[{"name": "x", "distribution": "normal", "params": {"sigma": 1}}])
    with pytest.raises(InvalidInputError):
        MonteCarloSimulator().simulate(bad_param)

    bad_dist = promotion_spec(variables=[{"name": "x", "distribution": "cauchy"}])
    with pytest.raises(InvalidInputError):
        MonteCarloSimulator().simulate(bad_dist)

    duplicate = promotion_spec(variables=[{"name": "x"}, {"name": "x"}])
    with pytest.raises(InvalidInputError):
        MonteCarloSimulator().simulate(duplicate)

    with pytest.raises(InvalidInputError):
        MonteCarloSimulator().simulate(
            promotion_spec(variables=[{"name": "x", "distribution": "uniform", "params": {"min": 2, "max": 1}}])
        )


def test_price_optimization_tracks_price_change():
    result = MonteCarloSimulator().simulate({
        "type": "PRICE_OPTIMIZATION",
        "base_value": 500_000,
        "iterations": 5_000,
        "seed": 9,
        "variables": [{"name": PRICE_CHANGE, "distribution": "uniform", "params": {"min": -0.2, "max": 0.2}}],
    })
    assert PRICE_CHANGE in result.scenarios["best"].conditions
    assert [s.variable for s in result.sensitivities] == [PRICE_CHANGE]


def test_budget_allocation_needs_channels():
    with pytest.raises(InvalidInputError):
        MonteCarloSimulator().simulate({"type": "BUDGET_ALLOCATION", "base_value": 100_000})


def test_budget_allocation_prioritizes_a_channel():
    result = MonteCarloSimulator().simulate({
        "type": "BUDGET_ALLOCATION",
        "base_value": 100_000,
        "iterations": 5_000,
        "seed": 10,
        "variables": [
            {"name": "tv", "distribution": "normal", "params": {"mean": 1.2, "std": 0.3}},
            {"name": "digital", "distribution": "normal", "params": {"mean": 1.8, "std": 0.4}},
            {"name": "instore", "distribution": "uniform", "params": {"min": 0.8, "max": 1.4}},
        ],
    })
    assert {s.variable for s in result.sensitivities} == {"tv", "digital", "instore"}
    assert any(r.startswith("Prioritize budget allocation to") for r in result.recommendations)


def test_market_scenario_uses_context_drift():
    result = MonteCarloSimulator().simulate({
        "type": "MARKET_SCENARIO",
        "base_value": 1_000,
        "iterations": 20_000,
        "seed": 11,
        "market_context": {"seasonality": 1.2, "trend": 0.1},
    })
    assert result.summary.mean == pytest.approx(1_000 * 1.2 * 1.1, rel=0.01)


def test_market_drift_defaults_and_history():
    assert market_drift(SimulationSpec(type="MARKET_SCENARIO", base_value=1.0)) == (1.0, 0.0)

    rising = SimulationSpec(type="MARKET_SCENARIO", base_value=1.0, history=tuple(float(v) for v in range(100, 130)))
    _, trend = market_drift(rising)
    assert trend > 0


def test_competitive_response_records_both_sides():
    result = MonteCarloSimulator().simulate({
        "type": "COMPETITIVE_RESPONSE",
        "base_value": 200_000,
        "iterations": 5_000,
        "seed": 12,
    })
    names = {s.variable for s in result.sensitivities}
    assert names == {OUR_ACTION, COMPETITOR_RESPONSE}
    assert COMPETITOR_RESPONSE in result.scenarios["worst"].conditions


def test_elasticity_and_pearson():
    values = np.linspace(1, 2, 101)
    assert elasticity(2 * values, values) == pytest.approx(1.0)
    assert elasticity(np.ones(5), np.ones(5)) == 0.0
    assert pearson(np.ones(5), np.arange(5.0)) == 0.0
    assert pearson(np.arange(5.0), np.arange(5.0)) == pytest.approx(1.0)


def test_result_serializes():
    payload = MonteCarloSimulator().simulate(promotion_spec(seed=13, iterations=1_000)).to_dict()
    assert payload["type"] == "PROMOTION_IMPACT"
    assert set(payload["scenarios"]) == {"best", "worst", "most_likely"}
    assert set(payload["summary"]["percentiles"]) == {"p5", "p25", "p50", "p75", "p95"}


def test_overflowing_draws_are_rejected():
    spec = promotion_spec(
        seed=14,
        iterations=1_000,
        variables=[{"name": "blowup", "distribution": "lognormal", "params": {"mean": 0, "std": 1_000}}],
    )
    with pytest.raises(NumericDegeneracyError) as exc:
        MonteCarloSimulator().simulate(spec)
    assert exc.value.details["non_finite"] > 0


def test_sensitivity_ranking_survives_rescaling():
    rng = np.random.default_rng(21)
    draws = {name: rng.uniform(1.0, 2.0, 5_000) for name in ("strong", "medium", "weak")}
    outcomes = 1_000 * (1 + 3 * draws["strong"]) * (1 + 0.5 * draws["medium"]) * (1 + 0.05 * draws["weak"])
    baseline = [s.variable for s in rank_sensitivities(outcomes, draws)]
    assert baseline == ["strong", "medium", "weak"]

    for name in draws:
        rescaled = dict(draws)
        rescaled[name] = draws[name] * 25.0
        assert [s.variable for s in rank_sensitivities(outcomes, rescaled)] == baseline
