import pandas as pd
import pytest

from promo_analytics.core.backtesting import (
    BacktestResult,
    BacktestRunner,
    ForecastMetrics,
    compute_metrics,
)
from promo_analytics.core.config import MODEL_FAMILIES
from promo_analytics.core.errors import InsufficientDataError, InvalidInputError


def test_compute_metrics_known_values():
    metrics = compute_metrics([100, 200], [110, 190])
    assert metrics.n_points == 2
    assert metrics.mae == pytest.approx(10.0)
    assert metrics.rmse == pytest.approx(10.0)
    assert metrics.bias == pytest.approx(0.0)
    assert metrics.mape == pytest.approx(7.5)


def test_compute_metrics_zero_actuals_stay_finite():
    metrics = compute_metrics([0.0, 10.0], [1.0, 10.0])
    assert metrics.mape > 0
    assert metrics.mape == metrics.mape  # not NaN


def test_compute_metrics_length_mismatch():
    with pytest.raises(InvalidInputError):
        compute_metrics([1, 2], [1])


def test_backtest_scores_every_family(trending_series):
    series = trending_series[:60]
    result = BacktestRunner(holdout=7).run(series)
    assert set(result.metrics) == set(MODEL_FAMILIES)
    assert list(result.daily_results.columns) == ["timestamp", "actual", *MODEL_FAMILIES]
    assert len(result.daily_results) == 7
    assert result.best_family() in MODEL_FAMILIES
    assert all(m.n_points == 7 for m in result.metrics.values())


def test_backtest_needs_more_than_holdout(make_series):
    with pytest.raises(InsufficientDataError):
        BacktestRunner(holdout=7).run(make_series(range(1, 9)))


def test_backtest_rejects_bad_configuration():
    with pytest.raises(InvalidInputError):
        BacktestRunner(holdout=0)
    with pytest.raises(InvalidInputError):
        BacktestRunner(families=["prophet"])


def _result(maes):
    metrics = {
        name: ForecastMetrics(n_points=7, mae=mae, mape=0.0, rmse=mae, bias=0.0)
        for name, mae in maes.items()
    }
    return BacktestResult(holdout=7, metrics=metrics, daily_results=pd.DataFrame())


def test_inverse_error_weights_favor_accurate_families():
    weights = BacktestRunner.inverse_error_weights(
        _result({"arima": 1.0, "seasonal": 2.0, "gbm": 4.0, "sequence": 4.0})
    )
    assert weights.arima > weights.seasonal > weights.gbm
    assert weights.gbm == pytest.approx(weights.sequence)
    assert sum(weights.as_dict().values()) == pytest.approx(1.0)


def test_perfect_family_takes_all_weight():
    weights = BacktestRunner.inverse_error_weights(
        _result({"arima": 0.0, "seasonal": 2.0, "gbm": 4.0, "sequence": 4.0})
    )
    assert weights.arima == pytest.approx(1.0)
    assert weights.seasonal == 0.0
