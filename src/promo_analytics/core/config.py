"""
Promo Analytics configuration.

Plain dataclasses with conservative defaults. Anything an operator is likely
to tune per deployment (compute ceilings, model store location) can be set
through environment variables; everything else is passed explicitly.

Copyright (c) 2024-2025 Tim Kaye / Local Cannabis Co.
All Rights Reserved. Proprietary and Confidential.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Optional

from .errors import ComputeBudgetExceededError, InvalidInputError

MODEL_FAMILIES = ("arima", "seasonal", "gbm", "sequence")

# z multipliers for the normal-approximation confidence band
Z_SCORES: Dict[int, float] = {
    90: 1.645,
    95: 1.96,
    99: 2.576,
}


def z_score_for(confidence_level: float) -> float:
    """z multiplier for a confidence level; unknown levels fall back to 95%."""
    try:
        key = int(round(float(confidence_level)))
    except (TypeError, ValueError):
        return Z_SCORES[95]
    if not math.isclose(float(confidence_level), key):
        return Z_SCORES[95]
    return Z_SCORES.get(key, Z_SCORES[95])


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return int(raw)


# =============================================================================
# COMPUTE LIMITS
# =============================================================================

@dataclass(frozen=True)
class ComputeLimits:
    """Caller-imposed ceilings, checked before any work starts."""

    max_horizon: int = field(default_factory=lambda: _env_int("PROMO_MAX_HORIZON", 365))
    max_iterations: int = field(default_factory=lambda: _env_int("PROMO_MAX_ITERATIONS", 1_000_000))

    def check_horizon(self, horizon: int) -> None:
        if horizon > self.max_horizon:
            raise ComputeBudgetExceededError(
                f"Horizon {horizon} exceeds the ceiling of {self.max_horizon}",
                details={"horizon": horizon, "max_horizon": self.max_horizon},
            )

    def check_iterations(self, iterations: int) -> None:
        if iterations > self.max_iterations:
            raise ComputeBudgetExceededError(
                f"Iteration count {iterations} exceeds the ceiling of {self.max_iterations}",
                details={"iterations": iterations, "max_iterations": self.max_iterations},
            )


# =============================================================================
# ENSEMBLE WEIGHTS
# =============================================================================

@dataclass(frozen=True)
class EnsembleWeights:
    """Blend weights for the four forecast families.

    Weights are non-negative and sum to one. Use `normalized()` to build a
    valid instance from arbitrary non-negative scores.
    """

    arima: float = 0.25
    seasonal: float = 0.25
    gbm: float = 0.25
    sequence: float = 0.25

    def __post_init__(self):
        values = self.as_dict()
        for name, weight in values.items():
            if not math.isfinite(weight) or weight < 0:
                raise InvalidInputError(
                    f"Ensemble weight for {name} must be a non-negative number",
                    details={"model": name, "weight": weight},
                )
        total = sum(values.values())
        if abs(total - 1.0) > 1e-9:
            raise InvalidInputError(
                f"Ensemble weights must sum to 1.0 (got {total:.12f})",
                details={"weights": values},
            )

    @classmethod
    def normalized(cls, scores: Dict[str, float]) -> "EnsembleWeights":
        """Scale non-negative scores so they sum to one.

        All-zero scores collapse to equal weights.
        """
        clean = {name: max(0.0, float(scores.get(name, 0.0))) for name in MODEL_FAMILIES}
        total = sum(clean.values())
        if total <= 0:
            return cls()
        weights = {name: value / total for name, value in clean.items()}
        # Push the rounding residue onto the largest weight so the sum is exact
        residue = 1.0 - sum(weights.values())
        largest = max(weights, key=weights.get)
        weights[largest] += residue
        return cls(**weights)

    def as_dict(self) -> Dict[str, float]:
        return {
            "arima": self.arima,
            "seasonal": self.seasonal,
            "gbm": self.gbm,
            "sequence": self.sequence,
        }

    def to_dict(self) -> Dict[str, Any]:
        return self.as_dict()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnsembleWeights":
        return cls(**{name: float(data[name]) for name in MODEL_FAMILIES})


# =============================================================================
# COMPONENT CONFIGS
# =============================================================================

@dataclass(frozen=True)
class ForecastConfig:
    """Configuration for the forecast ensemble."""

    # Fixed lookback of the sequence model
    sequence_lookback: int = 30

    # Minimum history per family before it falls back to a moving average
    arima_min_history: int = 10
    seasonal_min_history: int = 14
    gbm_min_history: int = 21

    # Moving-average fallback window
    fallback_window: int = 7

    # ARIMA order (p, d, q)
    arima_order: tuple = (2, 1, 2)

    # Lag features for the tree model
    gbm_lags: tuple = (1, 2, 3, 4, 5, 6, 7)
    gbm_estimators: int = 100
    gbm_max_depth: int = 5
    gbm_learning_rate: float = 0.1

    # Sequence model
    sequence_hidden_layers: tuple = (32, 16)
    sequence_max_iter: int = 500

    # Spacing of forecast steps
    frequency: timedelta = timedelta(days=1)

    # Seed shared by the stochastic learners
    random_state: int = 42

    # Insight thresholds
    significant_change_pct: float = 20.0
    strong_trend_r2: float = 0.7


@dataclass(frozen=True)
class TrendConfig:
    """Configuration for trend, seasonality and change-point analysis."""

    slope_epsilon: float = 0.01
    min_lag: int = 7
    max_lag: int = 30
    min_seasonal_points: int = 14
    seasonality_threshold: float = 0.5
    change_window: int = 7
    change_threshold: float = 2.0


@dataclass(frozen=True)
class AnomalyConfig:
    """Business rules and fusion thresholds for the anomaly scorer."""

    max_signal_threshold: float = 0.7
    mean_signal_threshold: float = 0.5
    z_saturation: float = 4.0
    pattern_components: int = 2
    pattern_error_scale: float = 10.0
    expectation_tolerance: float = 0.5
    off_hours_start: int = 22  # activity after this hour is off-hours
    off_hours_end: int = 6  # activity before this hour is off-hours
    business_hours: tuple = (9, 17)

    non_negative_metrics: frozenset = frozenset({"revenue", "units", "transactions", "cost", "waste"})
    integral_metrics: frozenset = frozenset({"units", "transactions"})
    transactional_metrics: frozenset = frozenset({"transactions"})

    impact_multipliers: Dict[str, float] = field(
        default_factory=lambda: {
            "revenue": 1.5,
            "profit": 1.5,
            "units": 1.2,
            "transactions": 1.0,
            "cost": 1.3,
            "waste": 1.4,
        }
    )

    metric_codes: Dict[str, int] = field(
        default_factory=lambda: {
            "revenue": 1,
            "units": 2,
            "transactions": 3,
            "cost": 4,
            "profit": 5,
            "waste": 6,
        }
    )


@dataclass(frozen=True)
class SimulationConfig:
    """Execution settings for the Monte Carlo simulator."""

    default_iterations: int = 10_000
    default_confidence_level: float = 95.0
    histogram_bins: int = 50
    chunk_size: int = 2_500
    workers: int = 1
    seed: Optional[int] = None
