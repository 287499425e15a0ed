"""
Forecast Ensemble

Blends the four model families into one recursive multi-step forecast.

Multi-step forecasting is a fold over an immutable working series:

    (result, state') = step(state)

Each step's blended prediction is appended to the working series before the
next step runs, so error compounds across the horizon. The confidence band is a
normal approximation over the working series' population standard deviation,
which therefore widens as forecast values join the history.

Families that cannot fit (too little history, numerical failure) are replaced by
a moving-average estimate. The replacement is never silent: the family shows up
in `fallbacks`, in `model_id`, and in the insights of every result.

Copyright (c) 2024-2025 Tim Kaye / Local Cannabis Co.
All Rights Reserved. Proprietary and Confidential.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .config import MODEL_FAMILIES, ComputeLimits, EnsembleWeights, ForecastConfig, z_score_for
from .errors import InsufficientDataError, InvalidInputError
from .forecast_models import ForecastModel, MovingAverageModel, WorkingSeries, build_model
from .signals import TimeSeriesPoint, moving_average, population_std, prepare_series, validate_regressors
from .trend import fit_trend

logger = logging.getLogger(__name__)

ENSEMBLE = "ensemble"
MODEL_SELECTORS = (ENSEMBLE,) + MODEL_FAMILIES

# Prior accuracy per model id, used until backtest metrics replace it
ACCURACY_PRIORS: Dict[str, float] = {
    "ensemble": 0.88,
    "arima": 0.80,
    "seasonal": 0.78,
    "gbm": 0.82,
    "sequence": 0.85,
    "moving_average": 0.70,
}


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class ForecastOptions:
    """Per-request forecast options."""
    model: str = ENSEMBLE
    confidence_level: float = 95.0
    regressors: Optional[Mapping[str, Sequence[float]]] = None
    non_negative: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ForecastOptions":
        data = dict(data or {})
        return cls(
            model=str(data.get("model", ENSEMBLE)),
            confidence_level=float(data.get("confidence_level", 95.0)),
            regressors=data.get("regressors"),
            non_negative=bool(data.get("non_negative", True)),
        )


@dataclass(frozen=True)
class ForecastResult:
    timestamp: datetime
    predicted_value: float
    confidence_lower: float
    confidence_upper: float
    model_id: str
    accuracy_estimate: float
    insights: Tuple[str, ...] = field(default_factory=tuple)
    member_predictions: Mapping[str, float] = field(default_factory=dict)
    fallbacks: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def confidence_interval(self) -> Tuple[float, float]:
        return (self.confidence_lower, self.confidence_upper)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "predicted_value": self.predicted_value,
            "confidence_interval": {
                "lower": self.confidence_lower,
                "upper": self.confidence_upper,
            },
            "model_id": self.model_id,
            "accuracy_estimate": self.accuracy_estimate,
            "insights": list(self.insights),
            "member_predictions": dict(self.member_predictions),
            "fallbacks": list(self.fallbacks),
        }


@dataclass(frozen=True)
class ForecastScenario:
    """What-if adjustment applied to history and predictions."""
    name: str
    adjustments: Mapping[str, float] = field(default_factory=dict)
    probability: float = 1.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ForecastScenario":
        if "name" not in data:
            raise InvalidInputError("Scenario is missing 'name'")
        probability = float(data.get("probability", 1.0))
        if not 0.0 <= probability <= 1.0:
            raise InvalidInputError(
                f"Scenario probability must be in [0, 1], got {probability}",
                details={"scenario": data["name"]},
            )
        return cls(
            name=str(data["name"]),
            adjustments={k: float(v) for k, v in dict(data.get("adjustments", {})).items()},
            probability=probability,
        )


@dataclass(frozen=True)
class _FittedFamily:
    name: str
    model: ForecastModel
    fallback_reason: Optional[str] = None


@dataclass(frozen=True)
class _FoldState:
    working: WorkingSeries
    step: int = 0


# =============================================================================
# FORECASTER
# =============================================================================

class EnsembleForecaster:
    """Recursive multi-step forecaster over the four model families.

    Usage:
        forecaster = EnsembleForecaster()
        results = forecaster.forecast(series, horizon=7)
        for r in results:
            print(r.timestamp, r.predicted_value, r.confidence_interval)
    """

    def __init__(
        self,
        weights: Optional[EnsembleWeights] = None,
        config: Optional[ForecastConfig] = None,
        limits: Optional[ComputeLimits] = None,
    ):
        self.weights = weights or EnsembleWeights()
        self.config = config or ForecastConfig()
        self.limits = limits or ComputeLimits()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def forecast(
        self,
        series: Sequence[TimeSeriesPoint],
        horizon: int,
        options: Optional[ForecastOptions] = None,
    ) -> List[ForecastResult]:
        options = options or ForecastOptions()
        self._validate(horizon, options)
        ordered = prepare_series(series)
        regressors = validate_regressors(options.regressors, len(ordered) + horizon)
        working = WorkingSeries.from_points(ordered, self.config.frequency, regressors)
        return self._run(working, horizon, options)

    def forecast_with_scenarios(
        self,
        series: Sequence[TimeSeriesPoint],
        scenarios: Sequence[ForecastScenario],
        horizon: int,
        options: Optional[ForecastOptions] = None,
    ) -> Dict[str, List[ForecastResult]]:
        """One forecast per scenario.

        History is scaled by `1 + adjustments["global"]`; predictions and
        bounds are then weighted by `0.5 + 0.5 * probability`.
        """
        options = options or ForecastOptions()
        self._validate(horizon, options)
        if not scenarios:
            raise InvalidInputError("At least one scenario is required")
        ordered = prepare_series(series)
        regressors = validate_regressors(options.regressors, len(ordered) + horizon)
        base = WorkingSeries.from_points(ordered, self.config.frequency, regressors)

        out: Dict[str, List[ForecastResult]] = {}
        for scenario in scenarios:
            adjustment = float(scenario.adjustments.get("global", 0.0))
            results = self._run(base.scaled(1.0 + adjustment), horizon, options)
            factor = 0.5 + 0.5 * scenario.probability
            out[scenario.name] = [self._apply_scenario(r, scenario, factor) for r in results]
            logger.debug(f"Scenario '{scenario.name}': adjustment={adjustment:+.2%}, weight={factor:.2f}")
        return out

    # -------------------------------------------------------------------------
    # Fold
    # -------------------------------------------------------------------------

    def _run(self, working: WorkingSeries, horizon: int, options: ForecastOptions) -> List[ForecastResult]:
        families = MODEL_FAMILIES if options.model == ENSEMBLE else (options.model,)
        fitted = {name: self._fit_family(name, working) for name in families}

        state = _FoldState(working=working)
        results: List[ForecastResult] = []
        for _ in range(horizon):
            result, state = self._step(state, fitted, options)
            results.append(result)

        logger.info(
            f"Forecast {options.model}: {len(working)} points -> {horizon} steps"
            + (f" (fallbacks: {', '.join(results[0].fallbacks)})" if results[0].fallbacks else "")
        )
        return results

    def _step(
        self,
        state: _FoldState,
        fitted: Mapping[str, _FittedFamily],
        options: ForecastOptions,
    ) -> Tuple[ForecastResult, _FoldState]:
        working = state.working
        timestamp = working.next_timestamp

        members: Dict[str, float] = {}
        fallbacks: List[str] = []
        for name, family in fitted.items():
            value = self._predict_member(family, working)
            if value is None:
                value = moving_average(working.values, self.config.fallback_window)
                fallbacks.append(name)
            elif family.fallback_reason:
                fallbacks.append(name)
            members[name] = value

        if options.model == ENSEMBLE:
            weights = self.weights.as_dict()
            predicted = float(sum(weights[name] * members[name] for name in MODEL_FAMILIES))
        else:
            predicted = members[options.model]

        spread = z_score_for(options.confidence_level) * population_std(working.values)
        lower, upper = predicted - spread, predicted + spread
        predicted, lower, upper = self._clamp(predicted, lower, upper, options.non_negative)

        result = ForecastResult(
            timestamp=timestamp,
            predicted_value=predicted,
            confidence_lower=lower,
            confidence_upper=upper,
            model_id=self._model_id(options.model, fallbacks),
            accuracy_estimate=self._accuracy(options.model, fallbacks),
            insights=tuple(self._insights(working, predicted, fitted, fallbacks)),
            member_predictions=members,
            fallbacks=tuple(fallbacks),
        )
        next_state = _FoldState(working=working.append(timestamp, predicted), step=state.step + 1)
        return result, next_state

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _validate(self, horizon: int, options: ForecastOptions) -> None:
        if isinstance(horizon, bool) or not isinstance(horizon, (int, np.integer)) or horizon < 1:
            raise InvalidInputError(f"Horizon must be a positive integer, got {horizon!r}")
        self.limits.check_horizon(int(horizon))
        if options.model not in MODEL_SELECTORS:
            raise InvalidInputError(
                f"Unknown model selector: {options.model}",
                details={"model": options.model, "allowed": list(MODEL_SELECTORS)},
            )

    def _fit_family(self, name: str, working: WorkingSeries) -> _FittedFamily:
        model = build_model(name, self.config)
        try:
            return _FittedFamily(name=name, model=model.fit(working))
        except InsufficientDataError as e:
            reason = e.message
        except (ValueError, TypeError, ArithmeticError, np.linalg.LinAlgError) as e:
            reason = f"{name} fit failed: {e}"
        logger.warning(f"Falling back to moving average for {name}: {reason}")
        return _FittedFamily(name=name, model=MovingAverageModel(self.config), fallback_reason=reason)

    def _predict_member(self, family: _FittedFamily, working: WorkingSeries) -> Optional[float]:
        """Member prediction, or None when the family produced a non-finite value."""
        try:
            value = float(family.model.predict_next(working))
        except (ValueError, TypeError, ArithmeticError, np.linalg.LinAlgError) as e:
            logger.warning(f"{family.name} prediction failed, using moving average: {e}")
            return None
        if not math.isfinite(value):
            logger.warning(f"{family.name} produced a non-finite prediction, using moving average")
            return None
        return value

    @staticmethod
    def _clamp(predicted: float, lower: float, upper: float, non_negative: bool) -> Tuple[float, float, float]:
        if non_negative:
            predicted = max(0.0, predicted)
            lower = max(0.0, lower)
        lower = min(lower, predicted)
        upper = max(upper, predicted)
        return predicted, lower, upper

    @staticmethod
    def _model_id(selector: str, fallbacks: Sequence[str]) -> str:
        if not fallbacks:
            return selector
        return f"{selector}+fallback({','.join(f'{name}=moving_average' for name in fallbacks)})"

    def _accuracy(self, selector: str, fallbacks: Sequence[str]) -> float:
        fallback_prior = ACCURACY_PRIORS["moving_average"]
        if selector != ENSEMBLE:
            return fallback_prior if fallbacks else ACCURACY_PRIORS[selector]
        if not fallbacks:
            return ACCURACY_PRIORS[ENSEMBLE]
        # Members replaced by the moving average drag the prior down by their weight
        weights = self.weights.as_dict()
        lost = sum(weights[name] for name in fallbacks)
        return ACCURACY_PRIORS[ENSEMBLE] * (1 - lost) + fallback_prior * lost

    def _insights(
        self,
        working: WorkingSeries,
        predicted: float,
        fitted: Mapping[str, _FittedFamily],
        fallbacks: Sequence[str],
    ) -> List[str]:
        insights = []
        recent = moving_average(working.values, self.config.fallback_window)
        if abs(recent) > 0:
            change_pct = (predicted - recent) / abs(recent) * 100
            if abs(change_pct) > self.config.significant_change_pct:
                direction = "increase" if change_pct > 0 else "decrease"
                insights.append(
                    f"Significant {direction} of {abs(change_pct):.1f}% expected versus the recent "
                    f"{self.config.fallback_window}-point average"
                )

        trend = fit_trend(working.values)
        if trend.r_squared > self.config.strong_trend_r2:
            insights.append(
                f"Strong {trend.direction.value} trend detected (R² = {trend.r_squared:.2f})"
            )

        for name in fallbacks:
            reason = fitted[name].fallback_reason or "non-finite prediction"
            insights.append(
                f"{name} replaced by a {self.config.fallback_window}-point moving average ({reason})"
            )
        return insights

    @staticmethod
    def _apply_scenario(result: ForecastResult, scenario: ForecastScenario, factor: float) -> ForecastResult:
        return replace(
            result,
            predicted_value=result.predicted_value * factor,
            confidence_lower=result.confidence_lower * factor,
            confidence_upper=result.confidence_upper * factor,
            insights=tuple(f"[{scenario.name}] {text}" for text in result.insights)
            + (f"[{scenario.name}] weighted by probability {scenario.probability:.0%}",),
        )
