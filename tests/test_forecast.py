from datetime import timedelta

import numpy as np
import pytest

from promo_analytics.core.config import MODEL_FAMILIES, ComputeLimits, EnsembleWeights, ForecastConfig
from promo_analytics.core.ensemble import (
    ACCURACY_PRIORS,
    EnsembleForecaster,
    ForecastOptions,
    ForecastScenario,
)
from promo_analytics.core.errors import ComputeBudgetExceededError, InsufficientDataError, InvalidInputError
from promo_analytics.core.forecast_models import (
    MovingAverageModel,
    SeasonalRegressionModel,
    WorkingSeries,
    build_model,
)


@pytest.fixture(scope="module")
def ensemble_run(trending_series):
    """One 7-step ensemble forecast over the 90-day fixture, shared across tests."""
    return trending_series, EnsembleForecaster().forecast(trending_series, horizon=7)


def test_ensemble_returns_one_result_per_step(ensemble_run):
    series, results = ensemble_run
    assert len(results) == 7
    expected = [series[-1].timestamp + timedelta(days=k) for k in range(1, 8)]
    assert [r.timestamp for r in results] == expected


def test_ensemble_bounds_bracket_prediction(ensemble_run):
    _, results = ensemble_run
    for r in results:
        assert r.predicted_value >= 0
        assert r.confidence_lower <= r.predicted_value <= r.confidence_upper
        assert r.confidence_lower >= 0
        assert 0 <= r.accuracy_estimate <= 1


def test_ensemble_exposes_every_member(ensemble_run):
    _, results = ensemble_run
    first = results[0]
    assert set(first.member_predictions) == set(MODEL_FAMILIES)
    assert first.model_id.startswith("ensemble")
    if not first.fallbacks:
        assert first.model_id == "ensemble"
        assert first.accuracy_estimate == ACCURACY_PRIORS["ensemble"]


def test_ensemble_prediction_is_weighted_member_blend(ensemble_run):
    _, results = ensemble_run
    first = results[0]
    weights = EnsembleWeights().as_dict()
    blend = sum(weights[name] * first.member_predictions[name] for name in MODEL_FAMILIES)
    assert first.predicted_value == pytest.approx(max(0.0, blend))


def test_to_dict_shape(ensemble_run):
    _, results = ensemble_run
    payload = results[0].to_dict()
    assert set(payload["confidence_interval"]) == {"lower", "upper"}
    assert isinstance(payload["timestamp"], str)


def test_short_history_falls_back_to_moving_average(make_series):
    series = make_series([100 + i for i in range(12)])
    results = EnsembleForecaster().forecast(series, horizon=3)
    first = results[0]
    assert {"seasonal", "gbm", "sequence"} <= set(first.fallbacks)
    assert "fallback(" in first.model_id
    assert "seasonal=moving_average" in first.model_id
    assert first.accuracy_estimate < ACCURACY_PRIORS["ensemble"]
    assert any("moving average" in text for text in first.insights)


def test_single_family_selector(make_series):
    series = make_series([200 + 3 * i for i in range(30)])
    results = EnsembleForecaster().forecast(series, 5, ForecastOptions(model="seasonal"))
    assert all(r.model_id == "seasonal" for r in results)
    assert results[0].accuracy_estimate == ACCURACY_PRIORS["seasonal"]
    # A clean line is extrapolated: each step sits 3 above the last
    assert results[0].predicted_value == pytest.approx(200 + 3 * 30, rel=1e-6)
    assert any("Strong increasing trend" in text for text in results[0].insights)


def test_non_negative_clamp(make_series):
    series = make_series([100 - 5 * i for i in range(20)])
    clamped = EnsembleForecaster().forecast(series, 5, ForecastOptions(model="seasonal"))
    assert all(r.predicted_value >= 0 and r.confidence_lower >= 0 for r in clamped)

    raw = EnsembleForecaster().forecast(series, 5, ForecastOptions(model="seasonal", non_negative=False))
    assert raw[-1].predicted_value < 0


def test_wider_confidence_level_widens_band(make_series):
    series = make_series([50 + (i % 5) for i in range(30)])
    forecaster = EnsembleForecaster()
    narrow = forecaster.forecast(series, 1, ForecastOptions(model="seasonal", confidence_level=90))[0]
    wide = forecaster.forecast(series, 1, ForecastOptions(model="seasonal", confidence_level=99))[0]
    assert (wide.confidence_upper - wide.confidence_lower) > (narrow.confidence_upper - narrow.confidence_lower)


def test_invalid_requests(make_series):
    series = make_series(range(1, 31))
    forecaster = EnsembleForecaster()
    with pytest.raises(InvalidInputError):
        forecaster.forecast(series, 0)
    with pytest.raises(InvalidInputError):
        forecaster.forecast(series, True)
    with pytest.raises(InvalidInputError):
        forecaster.forecast(series, 3, ForecastOptions(model="prophet"))
    with pytest.raises(InvalidInputError):
        forecaster.forecast([], 3)


def test_horizon_ceiling(make_series):
    forecaster = EnsembleForecaster(limits=ComputeLimits(max_horizon=5))
    with pytest.raises(ComputeBudgetExceededError):
        forecaster.forecast(make_series(range(1, 31)), 6)


def test_regressors_must_cover_horizon(make_series):
    series = make_series(range(1, 31))
    options = ForecastOptions(model="gbm", regressors={"price": [1.0] * 30})
    with pytest.raises(InvalidInputError):
        EnsembleForecaster().forecast(series, 3, options)


def test_gbm_with_regressors(make_series):
    series = make_series([100 + (i % 7) * 10 for i in range(40)])
    price = [1.0 + 0.01 * (i % 3) for i in range(43)]
    results = EnsembleForecaster().forecast(series, 3, ForecastOptions(model="gbm", regressors={"price": price}))
    assert len(results) == 3
    assert all(np.isfinite(r.predicted_value) for r in results)


def test_scenarios_scale_history_and_weight_by_probability(make_series):
    series = make_series([200 + 3 * i for i in range(30)])
    scenarios = [
        ForecastScenario(name="base"),
        ForecastScenario(name="boost", adjustments={"global": 0.1}),
        ForecastScenario(name="unlikely", probability=0.5),
    ]
    out = EnsembleForecaster().forecast_with_scenarios(series, scenarios, 3, ForecastOptions(model="seasonal"))
    assert set(out) == {"base", "boost", "unlikely"}
    for base, boost, unlikely in zip(out["base"], out["boost"], out["unlikely"]):
        assert boost.predicted_value == pytest.approx(base.predicted_value * 1.1, rel=1e-6)
        assert unlikely.predicted_value == pytest.approx(base.predicted_value * 0.75, rel=1e-6)
    assert all(text.startswith("[boost]") for text in out["boost"][0].insights)


def test_scenario_probability_validated():
    with pytest.raises(InvalidInputError):
        ForecastScenario.from_dict({"name": "x", "probability": 1.5})
    with pytest.raises(InvalidInputError):
        ForecastScenario.from_dict({"probability": 0.5})


def test_scenarios_required(make_series):
    with pytest.raises(InvalidInputError):
        EnsembleForecaster().forecast_with_scenarios(make_series(range(1, 31)), [], 3)


def test_model_min_history(make_series):
    working = WorkingSeries.from_points(make_series(range(1, 6)))
    with pytest.raises(InsufficientDataError):
        SeasonalRegressionModel(ForecastConfig()).fit(working)
    assert MovingAverageModel().fit(working).predict_next(working) == pytest.approx(3.0)


def test_build_model_rejects_unknown_family():
    with pytest.raises(InvalidInputError):
        build_model("lstm")


def test_working_series_is_immutable(make_series):
    working = WorkingSeries.from_points(make_series([1, 2, 3]))
    grown = working.append(working.next_timestamp, 4.0)
    assert len(working) == 3
    assert len(grown) == 4
    assert grown.timestamps[-1] - working.timestamps[-1] == timedelta(days=1)


def test_forecast_is_repeatable(trending_series):
    forecaster = EnsembleForecaster()
    first = forecaster.forecast(trending_series[:40], horizon=5)
    second = forecaster.forecast(trending_series[:40], horizon=5)
    assert [r.to_dict() for r in first] == [r.to_dict() for r in second]


@pytest.mark.parametrize("n", [1, 5, 13, 14, 15, 21, 31, 32])
def test_ensemble_never_raises_on_valid_history(make_series, n):
    results = EnsembleForecaster().forecast(make_series([50.0 + (i % 7) for i in range(n)]), horizon=3)
    assert len(results) == 3
    for r in results:
        assert np.isfinite(r.predicted_value)
        assert set(r.member_predictions) == set(MODEL_FAMILIES)


def test_seasonal_prediction_is_a_plain_float(make_series):
    model = SeasonalRegressionModel().fit(WorkingSeries.from_points(make_series(range(20))))
    value = model.predict_next(WorkingSeries.from_points(make_series(range(20))))
    assert type(value) is float
    assert value == pytest.approx(20.0)
