"""
Core analytics modules.

This package contains the engine's components:
- signals: series validation, calendar/lag features
- trend: trend, seasonality and change-point analysis
- forecast_models / ensemble: the four forecast families and their recursive blend
- backtesting: walk-forward metrics and optional ensemble reweighting
- anomaly: multi-signal anomaly scoring
- optimizer: trade spend recommendation and promotion analysis
- simulation: Monte Carlo risk simulation
- model_store: versioned engine snapshots and their persistence
- engine: the AnalyticsEngine facade
"""

from .anomaly import (
    AnomalyModel,
    AnomalyObservation,
    AnomalyScorer,
    AnomalyType,
    AnomalyVerdict,
    Severity,
    train_anomaly_model,
)
from .backtesting import (
    BacktestResult,
    BacktestRunner,
    ForecastMetrics,
    backtest_weights,
    compute_metrics,
)
from .config import (
    AnomalyConfig,
    ComputeLimits,
    EnsembleWeights,
    ForecastConfig,
    SimulationConfig,
    TrendConfig,
)
from .engine import AnalyticsEngine
from .ensemble import (
    EnsembleForecaster,
    ForecastOptions,
    ForecastResult,
    ForecastScenario,
)
from .errors import (
    ComputeBudgetExceededError,
    InsufficientDataError,
    InvalidInputError,
    NotTrainedError,
    NumericDegeneracyError,
    PromoAnalyticsError,
)
from .model_store import EngineSnapshot, ModelStore
from .optimizer import (
    OptimizationRequest,
    OptimizationResult,
    OptimizerModel,
    PerformanceForecast,
    PlannedPromotion,
    PromotionAnomaly,
    PromotionRecord,
    SpendOptimizer,
    detect_promotion_anomalies,
    forecast_promotion_performance,
)
from .signals import (
    TimeSeriesPoint,
    prepare_series,
    series_from_frame,
    series_from_records,
)
from .simulation import (
    Distribution,
    MonteCarloSimulator,
    SimulationResult,
    SimulationSpec,
    SimulationType,
)
from .trend import (
    ChangePoint,
    Seasonality,
    TrendAnalysis,
    TrendDirection,
    analyze_trend,
)

__all__ = [
    # Engine
    "AnalyticsEngine",
    "EngineSnapshot",
    "ModelStore",
    # Config
    "AnomalyConfig",
    "ComputeLimits",
    "EnsembleWeights",
    "ForecastConfig",
    "SimulationConfig",
    "TrendConfig",
    # Errors
    "PromoAnalyticsError",
    "InvalidInputError",
    "InsufficientDataError",
    "NumericDegeneracyError",
    "ComputeBudgetExceededError",
    "NotTrainedError",
    # Signals
    "TimeSeriesPoint",
    "prepare_series",
    "series_from_frame",
    "series_from_records",
    # Forecasting
    "EnsembleForecaster",
    "ForecastOptions",
    "ForecastResult",
    "ForecastScenario",
    "BacktestResult",
    "BacktestRunner",
    "ForecastMetrics",
    "backtest_weights",
    "compute_metrics",
    # Trends
    "ChangePoint",
    "Seasonality",
    "TrendAnalysis",
    "TrendDirection",
    "analyze_trend",
    # Anomalies
    "AnomalyModel",
    "AnomalyObservation",
    "AnomalyScorer",
    "AnomalyType",
    "AnomalyVerdict",
    "Severity",
    "train_anomaly_model",
    # Optimizer
    "OptimizationRequest",
    "OptimizationResult",
    "OptimizerModel",
    "PerformanceForecast",
    "PlannedPromotion",
    "PromotionAnomaly",
    "PromotionRecord",
    "SpendOptimizer",
    "detect_promotion_anomalies",
    "forecast_promotion_performance",
    # Simulation
    "Distribution",
    "MonteCarloSimulator",
    "SimulationResult",
    "SimulationSpec",
    "SimulationType",
]
