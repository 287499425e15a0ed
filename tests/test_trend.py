import numpy as np
import pytest

from promo_analytics.core.errors import InvalidInputError
from promo_analytics.core.trend import (
    ChangeType,
    TrendDirection,
    analyze_trend,
    autocorrelation,
    detect_seasonality,
    fit_trend,
)


def test_steep_linear_series_is_strongly_increasing(make_series):
    series = make_series([100 + 50 * i for i in range(30)])
    analysis = analyze_trend(series)
    assert analysis.direction is TrendDirection.INCREASING
    assert analysis.strength > 0.95
    assert analysis.slope == pytest.approx(50.0)


def test_decreasing_series(make_series):
    analysis = analyze_trend(make_series([500 - 3 * i for i in range(20)]))
    assert analysis.direction is TrendDirection.DECREASING


def test_constant_series_is_stable_with_zero_strength(make_series):
    analysis = analyze_trend(make_series([42.0] * 25))
    assert analysis.direction is TrendDirection.STABLE
    assert analysis.strength == 0.0
    assert not analysis.seasonality.detected
    assert analysis.change_points == ()


def test_tiny_slope_counts_as_stable():
    fit = fit_trend([10.0, 10.001, 10.002, 10.003])
    assert fit.direction is TrendDirection.STABLE


def test_single_point():
    fit = fit_trend([5.0])
    assert fit.slope == 0.0
    assert fit.intercept == 5.0


def test_weekly_cycle_is_detected():
    values = 100 + 20 * np.sin(2 * np.pi * np.arange(56) / 7)
    seasonality = detect_seasonality(values)
    assert seasonality.detected
    assert seasonality.period == 7
    assert seasonality.strength > 0.5


def test_short_series_has_no_seasonality():
    assert not detect_seasonality([1, 2, 1, 2, 1, 2]).detected


def test_autocorrelation_edge_lags():
    assert autocorrelation([1, 2, 3], 0) == 0.0
    assert autocorrelation([1, 2, 3], 3) == 0.0
    assert autocorrelation([4, 4, 4, 4], 1) == 0.0


def test_level_shift_produces_increase_change_point(make_series):
    series = make_series([100.0] * 14 + [200.0] * 14)
    analysis = analyze_trend(series)
    stamps = [cp.timestamp for cp in analysis.change_points]
    assert series[14].timestamp in stamps
    assert all(cp.type is ChangeType.INCREASE for cp in analysis.change_points)
    shift = next(cp for cp in analysis.change_points if cp.timestamp == series[14].timestamp)
    assert shift.magnitude == pytest.approx(100.0)


def test_unsorted_input_is_sorted_first(make_series):
    series = make_series([10 * i for i in range(20)])
    analysis = analyze_trend(list(reversed(series)))
    assert analysis.direction is TrendDirection.INCREASING


def test_empty_series_rejected():
    with pytest.raises(InvalidInputError):
        analyze_trend([])
