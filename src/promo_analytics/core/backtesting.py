"""
Forecast Backtesting

Walk-forward validation of the individual model families.

The backtester:
1. Holds out the last `holdout` points of the history
2. Forecasts them recursively from the remaining points (no lookahead)
3. Compares predictions vs actual outcomes (MAE, MAPE, RMSE, bias)
4. Optionally turns the per-family MAE into inverse-error ensemble weights

Reweighting is an optional refinement; the static equal weights are a valid
default and nothing else depends on backtest output.

Copyright (c) 2024-2025 Tim Kaye / Local Cannabis Co.
All Rights Reserved. Proprietary and Confidential.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .config import MODEL_FAMILIES, EnsembleWeights, ForecastConfig
from .ensemble import EnsembleForecaster, ForecastOptions
from .errors import InsufficientDataError, InvalidInputError
from .signals import EPSILON, TimeSeriesPoint, prepare_series, values_of

logger = logging.getLogger(__name__)


# =============================================================================
# METRICS
# =============================================================================

@dataclass
class ForecastMetrics:
    """Metrics for evaluating forecast accuracy."""

    n_points: int
    mae: float  # Mean Absolute Error
    mape: float  # Mean Absolute Percentage Error, in percent
    rmse: float  # Root Mean Square Error
    bias: float  # Average over/under prediction

    def to_dict(self) -> Dict[str, Any]:
        return {
            "n_points": self.n_points,
            "mae": self.mae,
            "mape": self.mape,
            "rmse": self.rmse,
            "bias": self.bias,
        }


@dataclass
class BacktestResult:
    """Results from a backtest run."""

    holdout: int
    metrics: Dict[str, ForecastMetrics]

    # Raw predictions vs actuals, one column per family
    daily_results: pd.DataFrame

    # Families that fell back to the moving average during the run
    fallbacks: List[str] = field(default_factory=list)

    def best_family(self) -> str:
        return min(self.metrics, key=lambda name: self.metrics[name].mae)


def compute_metrics(actual: Sequence[float], predicted: Sequence[float]) -> ForecastMetrics:
    """Compute accuracy metrics from paired actual/predicted values."""
    actual_arr = np.asarray(actual, dtype=float)
    predicted_arr = np.asarray(predicted, dtype=float)
    if actual_arr.shape != predicted_arr.shape:
        raise InvalidInputError("Actual and predicted series must have the same length")
    if actual_arr.size == 0:
        return ForecastMetrics(n_points=0, mae=0.0, mape=0.0, rmse=0.0, bias=0.0)

    errors = predicted_arr - actual_arr
    # Zero actuals would blow up MAPE; they are measured against EPSILON instead
    denominators = np.where(np.abs(actual_arr) < EPSILON, EPSILON, np.abs(actual_arr))
    pct_errors = np.abs(errors) / denominators * 100

    return ForecastMetrics(
        n_points=int(actual_arr.size),
        mae=float(np.abs(errors).mean()),
        mape=float(pct_errors.mean()),
        rmse=float(np.sqrt((errors ** 2).mean())),
        bias=float(errors.mean()),
    )


# =============================================================================
# BACKTESTER
# =============================================================================

class BacktestRunner:
    """
    Walk-forward backtesting for the forecast families.

    Usage:
        runner = BacktestRunner(holdout=7)
        result = runner.run(series)
        weights = runner.inverse_error_weights(result)
    """

    def __init__(
        self,
        holdout: int = 7,
        families: Sequence[str] = MODEL_FAMILIES,
        config: Optional[ForecastConfig] = None,
    ):
        if holdout < 1:
            raise InvalidInputError(f"Holdout must be at least 1, got {holdout}")
        unknown = [name for name in families if name not in MODEL_FAMILIES]
        if unknown:
            raise InvalidInputError(f"Unknown model families: {', '.join(unknown)}")
        self.holdout = holdout
        self.families = tuple(families)
        self.config = config or ForecastConfig()

    def run(self, series: Sequence[TimeSeriesPoint]) -> BacktestResult:
        ordered = prepare_series(series)
        if len(ordered) <= self.holdout + 1:
            raise InsufficientDataError(
                f"Backtest needs more than {self.holdout + 1} points, got {len(ordered)}",
                details={"holdout": self.holdout, "available": len(ordered)},
            )

        train, test = ordered[:-self.holdout], ordered[-self.holdout:]
        actual = values_of(test)
        forecaster = EnsembleForecaster(config=self.config)

        daily = pd.DataFrame({
            "timestamp": [p.timestamp for p in test],
            "actual": actual,
        })
        metrics: Dict[str, ForecastMetrics] = {}
        fallbacks: List[str] = []
        for name in self.families:
            results = forecaster.forecast(train, self.holdout, ForecastOptions(model=name))
            predicted = [r.predicted_value for r in results]
            daily[name] = predicted
            metrics[name] = compute_metrics(actual, predicted)
            if results[0].fallbacks:
                fallbacks.append(name)
            logger.debug(f"Backtest {name}: MAE={metrics[name].mae:.2f}, MAPE={metrics[name].mape:.1f}%")

        result = BacktestResult(
            holdout=self.holdout,
            metrics=metrics,
            daily_results=daily,
            fallbacks=fallbacks,
        )
        logger.info(f"Backtest over {self.holdout} held-out points, best family: {result.best_family()}")
        return result

    @staticmethod
    def inverse_error_weights(result: BacktestResult) -> EnsembleWeights:
        """Ensemble weights proportional to 1 / MAE.

        A family with zero MAE on the holdout takes the whole weight.
        """
        perfect = [name for name, m in result.metrics.items() if m.mae < EPSILON]
        if perfect:
            scores = {name: 1.0 for name in perfect}
        else:
            scores = {name: 1.0 / m.mae for name, m in result.metrics.items()}
        return EnsembleWeights.normalized(scores)


def backtest_weights(
    series: Sequence[TimeSeriesPoint],
    holdout: int = 7,
    config: Optional[ForecastConfig] = None,
) -> EnsembleWeights:
    """Convenience: run a backtest and return inverse-MAE ensemble weights."""
    runner = BacktestRunner(holdout=holdout, config=config)
    return runner.inverse_error_weights(runner.run(series))
