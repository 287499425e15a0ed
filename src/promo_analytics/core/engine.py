"""
Analytics Engine

Single entry point over the engine's components. The engine itself holds only
configuration; all trained state comes in through an EngineSnapshot argument
and train operations hand back a new snapshot instead of mutating anything.

Usage:
    engine = AnalyticsEngine()
    snapshot = engine.train_optimizer(records)
    result = engine.optimize(request, snapshot)

    results = engine.forecast(series, horizon=7)
    verdicts = engine.detect_anomaly(observations, snapshot)

Copyright (c) 2024-2025 Tim Kaye / Local Cannabis Co.
All Rights Reserved. Proprietary and Confidential.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Union

from .anomaly import AnomalyObservation, AnomalyScorer, AnomalyVerdict, train_anomaly_model
from .backtesting import BacktestRunner
from .config import AnomalyConfig, ComputeLimits, ForecastConfig, SimulationConfig, TrendConfig
from .ensemble import EnsembleForecaster, ForecastOptions, ForecastResult, ForecastScenario
from .model_store import EngineSnapshot
from .optimizer import (
    OptimizationRequest,
    OptimizationResult,
    PerformanceForecast,
    PlannedPromotion,
    PromotionAnomaly,
    PromotionRecord,
    SpendOptimizer,
    detect_promotion_anomalies,
    forecast_promotion_performance,
)
from .signals import TimeSeriesPoint
from .simulation import MonteCarloSimulator, SimulationResult, SimulationSpec
from .trend import TrendAnalysis, analyze_trend

logger = logging.getLogger(__name__)


class AnalyticsEngine:
    """Facade over forecasting, trend analysis, anomaly scoring, optimization and simulation."""

    def __init__(
        self,
        forecast_config: Optional[ForecastConfig] = None,
        trend_config: Optional[TrendConfig] = None,
        anomaly_config: Optional[AnomalyConfig] = None,
        simulation_config: Optional[SimulationConfig] = None,
        limits: Optional[ComputeLimits] = None,
    ):
        self.forecast_config = forecast_config or ForecastConfig()
        self.trend_config = trend_config or TrendConfig()
        self.anomaly_config = anomaly_config or AnomalyConfig()
        self.simulation_config = simulation_config or SimulationConfig()
        self.limits = limits or ComputeLimits()

    # -------------------------------------------------------------------------
    # Forecasting & trends
    # -------------------------------------------------------------------------

    def _forecaster(self, snapshot: Optional[EngineSnapshot]) -> EnsembleForecaster:
        snapshot = snapshot or EngineSnapshot()
        return EnsembleForecaster(snapshot.ensemble_weights, self.forecast_config, self.limits)

    def forecast(
        self,
        series: Sequence[TimeSeriesPoint],
        horizon: int,
        options: Optional[ForecastOptions] = None,
        snapshot: Optional[EngineSnapshot] = None,
    ) -> List[ForecastResult]:
        return self._forecaster(snapshot).forecast(series, horizon, options)

    def forecast_with_scenarios(
        self,
        series: Sequence[TimeSeriesPoint],
        scenarios: Sequence[ForecastScenario],
        horizon: int,
        options: Optional[ForecastOptions] = None,
        snapshot: Optional[EngineSnapshot] = None,
    ) -> Dict[str, List[ForecastResult]]:
        return self._forecaster(snapshot).forecast_with_scenarios(series, scenarios, horizon, options)

    def analyze_trend(self, series: Sequence[TimeSeriesPoint]) -> TrendAnalysis:
        return analyze_trend(series, self.trend_config)

    # -------------------------------------------------------------------------
    # Anomalies
    # -------------------------------------------------------------------------

    def _scorer(self, snapshot: Optional[EngineSnapshot]) -> AnomalyScorer:
        snapshot = snapshot or EngineSnapshot()
        if snapshot.anomaly_model is None:
            logger.debug("No anomaly model in snapshot; only contextual rules can fire")
        return AnomalyScorer(snapshot.anomaly_model, self.anomaly_config)

    def detect_anomaly(
        self,
        observations: Union[AnomalyObservation, Sequence[AnomalyObservation]],
        snapshot: Optional[EngineSnapshot] = None,
    ) -> Union[AnomalyVerdict, List[AnomalyVerdict]]:
        return self._scorer(snapshot).detect(observations)

    def detect_anomaly_stream(
        self,
        observations: Iterable[AnomalyObservation],
        snapshot: Optional[EngineSnapshot] = None,
    ) -> Iterator[AnomalyVerdict]:
        return self._scorer(snapshot).detect_stream(observations)

    # -------------------------------------------------------------------------
    # Spend optimization
    # -------------------------------------------------------------------------

    def optimize(self, request: OptimizationRequest, snapshot: Optional[EngineSnapshot] = None) -> OptimizationResult:
        snapshot = snapshot or EngineSnapshot()
        return SpendOptimizer(snapshot.optimizer_model).optimize(request)

    def detect_promotion_anomalies(self, records: Sequence[PromotionRecord]) -> List[PromotionAnomaly]:
        return detect_promotion_anomalies(records)

    def forecast_promotion_performance(
        self,
        history: Sequence[PromotionRecord],
        planned: Sequence[PlannedPromotion],
    ) -> List[PerformanceForecast]:
        return forecast_promotion_performance(history, planned)

    # -------------------------------------------------------------------------
    # Simulation
    # -------------------------------------------------------------------------

    def simulate(self, spec: Union[SimulationSpec, Mapping[str, Any]]) -> SimulationResult:
        return MonteCarloSimulator(self.simulation_config, self.limits).simulate(spec)

    # -------------------------------------------------------------------------
    # Training (each returns a new snapshot)
    # -------------------------------------------------------------------------

    def train_anomaly_model(
        self,
        batch: Sequence[AnomalyObservation],
        snapshot: Optional[EngineSnapshot] = None,
    ) -> EngineSnapshot:
        snapshot = snapshot or EngineSnapshot()
        return snapshot.with_anomaly_model(train_anomaly_model(batch, self.anomaly_config))

    def train_optimizer(
        self,
        records: Sequence[PromotionRecord],
        snapshot: Optional[EngineSnapshot] = None,
        **encodings: Mapping[str, int],
    ) -> EngineSnapshot:
        snapshot = snapshot or EngineSnapshot()
        return snapshot.with_optimizer_model(SpendOptimizer.train(records, **encodings))

    def reweight_ensemble(
        self,
        series: Sequence[TimeSeriesPoint],
        holdout: int = 7,
        snapshot: Optional[EngineSnapshot] = None,
    ) -> EngineSnapshot:
        """Replace the static ensemble weights with inverse-MAE backtest weights."""
        snapshot = snapshot or EngineSnapshot()
        runner = BacktestRunner(holdout=holdout, config=self.forecast_config)
        weights = runner.inverse_error_weights(runner.run(series))
        logger.info(f"Reweighted ensemble from backtest: {weights.as_dict()}")
        return snapshot.with_weights(weights)
