"""
Trend & Seasonality Analyzer

Three independent reads of a single series:
1. Trend - OLS of value against time index; R-squared is the strength
2. Seasonality - autocorrelation scan over candidate weekly-to-monthly lags
3. Change points - sliding before/after windows, flagged on mean shifts
   larger than a multiple of the "before" standard deviation

Short series never raise; they come back as stable / not detected / empty.

Copyright (c) 2024-2025 Tim Kaye / Local Cannabis Co.
All Rights Reserved. Proprietary and Confidential.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .config import TrendConfig
from .signals import EPSILON, TimeSeriesPoint, prepare_series, values_of

logger = logging.getLogger(__name__)


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class ChangeType(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class Seasonality:
    detected: bool
    period: Optional[int] = None
    strength: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"detected": self.detected, "period": self.period, "strength": self.strength}


@dataclass(frozen=True)
class ChangePoint:
    timestamp: datetime
    magnitude: float
    type: ChangeType

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "magnitude": self.magnitude,
            "type": self.type.value,
        }


@dataclass(frozen=True)
class TrendFit:
    """Raw regression output."""
    slope: float
    intercept: float
    r_squared: float
    direction: TrendDirection


@dataclass(frozen=True)
class TrendAnalysis:
    direction: TrendDirection
    strength: float
    seasonality: Seasonality
    change_points: tuple = field(default_factory=tuple)
    slope: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.value,
            "strength": self.strength,
            "slope": self.slope,
            "seasonality": self.seasonality.to_dict(),
            "change_points": [cp.to_dict() for cp in self.change_points],
        }


# =============================================================================
# BUILDING BLOCKS
# =============================================================================

def fit_trend(values: Sequence[float], cfg: Optional[TrendConfig] = None) -> TrendFit:
    """Least-squares line through (index, value)."""
    cfg = cfg or TrendConfig()
    y = np.asarray(values, dtype=float)
    n = y.size
    if n < 2:
        intercept = float(y[0]) if n else 0.0
        return TrendFit(slope=0.0, intercept=intercept, r_squared=0.0, direction=TrendDirection.STABLE)

    x = np.arange(n, dtype=float)
    x_mean = x.mean()
    y_mean = y.mean()
    sxx = float(np.sum((x - x_mean) ** 2))
    slope = float(np.sum((x - x_mean) * (y - y_mean)) / sxx)
    intercept = float(y_mean - slope * x_mean)

    predictions = slope * x + intercept
    ss_res = float(np.sum((y - predictions) ** 2))
    ss_tot = float(np.sum((y - y_mean) ** 2))
    if ss_tot < EPSILON:
        # A flat line explains nothing beyond the mean
        r_squared = 0.0
    else:
        r_squared = float(min(1.0, max(0.0, 1.0 - ss_res / ss_tot)))

    if abs(slope) < cfg.slope_epsilon:
        direction = TrendDirection.STABLE
    elif slope > 0:
        direction = TrendDirection.INCREASING
    else:
        direction = TrendDirection.DECREASING

    return TrendFit(slope=slope, intercept=intercept, r_squared=r_squared, direction=direction)


def autocorrelation(values: Sequence[float], lag: int) -> float:
    """Autocorrelation at `lag`, normalized by the full-series variance."""
    arr = np.asarray(values, dtype=float)
    if lag <= 0 or lag >= arr.size:
        return 0.0
    centered = arr - arr.mean()
    denominator = float(np.sum(centered ** 2))
    if denominator < EPSILON:
        return 0.0
    numerator = float(np.sum(centered[:-lag] * centered[lag:]))
    return numerator / denominator


def detect_seasonality(values: Sequence[float], cfg: Optional[TrendConfig] = None) -> Seasonality:
    cfg = cfg or TrendConfig()
    arr = np.asarray(values, dtype=float)
    if arr.size < cfg.min_seasonal_points:
        return Seasonality(detected=False)

    max_lag = min(cfg.max_lag, arr.size // 2)
    best_period = None
    best_corr = 0.0
    for lag in range(cfg.min_lag, max_lag + 1):
        corr = autocorrelation(arr, lag)
        if corr > best_corr:
            best_corr = corr
            best_period = lag

    if best_period is not None and best_corr > cfg.seasonality_threshold:
        return Seasonality(detected=True, period=best_period, strength=best_corr)
    return Seasonality(detected=False)


def detect_change_points(
    series: Sequence[TimeSeriesPoint],
    cfg: Optional[TrendConfig] = None,
) -> List[ChangePoint]:
    cfg = cfg or TrendConfig()
    window = cfg.change_window
    values = values_of(series)
    change_points: List[ChangePoint] = []
    if values.size < 2 * window:
        return change_points

    for i in range(window, values.size - window):
        before = values[i - window:i]
        after = values[i:i + window]
        change = float(after.mean() - before.mean())
        std_before = float(before.std())
        ratio = abs(change) / (std_before if std_before > EPSILON else 1.0)
        if ratio > cfg.change_threshold:
            change_points.append(
                ChangePoint(
                    timestamp=series[i].timestamp,
                    magnitude=abs(change),
                    type=ChangeType.INCREASE if change > 0 else ChangeType.DECREASE,
                )
            )
    return change_points


# =============================================================================
# ANALYZER
# =============================================================================

def analyze_trend(
    series: Sequence[TimeSeriesPoint],
    cfg: Optional[TrendConfig] = None,
) -> TrendAnalysis:
    """Trend direction/strength, seasonality and change points of a series."""
    cfg = cfg or TrendConfig()
    ordered = prepare_series(series)
    values = values_of(ordered)

    fit = fit_trend(values, cfg)
    seasonality = detect_seasonality(values, cfg)
    change_points = detect_change_points(ordered, cfg)

    logger.debug(
        f"Trend over {values.size} points: {fit.direction.value} "
        f"(slope={fit.slope:.4f}, r2={fit.r_squared:.3f}), "
        f"seasonal={seasonality.detected}, change_points={len(change_points)}"
    )

    return TrendAnalysis(
        direction=fit.direction,
        strength=fit.r_squared,
        seasonality=seasonality,
        change_points=tuple(change_points),
        slope=fit.slope,
    )
