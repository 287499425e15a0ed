"""
Promo Analytics - Trade promotion decision support for FMCG distribution.

Forecasts sales and spend series, flags abnormal observations, recommends
promotion spend levels and quantifies outcome risk via Monte Carlo simulation.

Usage:
    # Direct Python imports (for same-process integration)
    from promo_analytics import AnalyticsEngine, TimeSeriesPoint
    engine = AnalyticsEngine()
    results = engine.forecast(series, horizon=7)

    # HTTP client (for cross-process/service integration)
    from promo_analytics import PromoClient, PromoConfig
    client = PromoClient(PromoConfig(base_url="http://localhost:8082"))
    forecast = client.forecast(series, horizon=7)
"""

__version__ = "1.0.0"

from .core import (
    AnalyticsEngine,
    AnomalyObservation,
    ComputeLimits,
    EngineSnapshot,
    EnsembleWeights,
    ForecastOptions,
    ForecastResult,
    InvalidInputError,
    ModelStore,
    NotTrainedError,
    OptimizationRequest,
    PromoAnalyticsError,
    PromotionRecord,
    SimulationSpec,
    SimulationType,
    TimeSeriesPoint,
)

# HTTP client for external consumers
from .client import PromoClient, PromoConfig

__all__ = [
    # Version
    "__version__",
    # Client
    "PromoClient",
    "PromoConfig",
    # Engine
    "AnalyticsEngine",
    "EngineSnapshot",
    "ModelStore",
    "ComputeLimits",
    "EnsembleWeights",
    # Inputs / outputs
    "TimeSeriesPoint",
    "ForecastOptions",
    "ForecastResult",
    "AnomalyObservation",
    "OptimizationRequest",
    "PromotionRecord",
    "SimulationSpec",
    "SimulationType",
    # Errors
    "PromoAnalyticsError",
    "InvalidInputError",
    "NotTrainedError",
]
