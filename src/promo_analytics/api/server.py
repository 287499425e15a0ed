"""
Promo Analytics REST API Server.

This module provides a FastAPI application for serving forecasts, trend
analysis, anomaly scoring, spend optimization and risk simulation to planning
tools and other services.

Trained state is read from the model store's active snapshot on every request.
Train endpoints are serialized per model kind; the new snapshot is committed
under a short store lock so concurrent trainers of different kinds never lose
each other's update.
"""

from __future__ import annotations

import logging
import os
import threading
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .. import __version__
from ..core import (
    AnalyticsEngine,
    AnomalyObservation,
    ComputeBudgetExceededError,
    EngineSnapshot,
    ForecastOptions,
    ForecastScenario,
    InsufficientDataError,
    InvalidInputError,
    ModelStore,
    NotTrainedError,
    NumericDegeneracyError,
    OptimizationRequest,
    PlannedPromotion,
    PromoAnalyticsError,
    PromotionRecord,
    SimulationSpec,
    TimeSeriesPoint,
)

logger = logging.getLogger(__name__)

# Model store path - configurable via environment
MODEL_DB_PATH = os.environ.get("PROMO_MODEL_DB", "promo_models.db")

# One lock per trainable model kind, plus one around snapshot commits
TRAIN_LOCKS = {
    "anomaly": threading.Lock(),
    "optimizer": threading.Lock(),
    "ensemble": threading.Lock(),
}
_COMMIT_LOCK = threading.Lock()

ERROR_STATUS = {
    InvalidInputError: 400,
    NotTrainedError: 409,
    ComputeBudgetExceededError: 413,
    InsufficientDataError: 422,
    NumericDegeneracyError: 422,
}


# =============================================================================
# Pydantic Models for API
# =============================================================================


class SeriesPoint(BaseModel):
    """A single observation of a time series."""

    timestamp: datetime = Field(..., description="Observation time (ISO 8601)")
    value: float = Field(..., description="Observed value")
    category: Optional[str] = Field(None)
    store_id: Optional[str] = Field(None)
    product_id: Optional[str] = Field(None)


class ForecastRequest(BaseModel):
    """Request for a multi-step forecast."""

    series: list[SeriesPoint] = Field(..., description="History, any order")
    horizon: int = Field(7, description="Number of steps to forecast")
    model: str = Field("ensemble", description="arima, seasonal, gbm, sequence or ensemble")
    confidence_level: float = Field(95.0, description="90, 95 or 99")
    regressors: Optional[dict[str, list[float]]] = Field(
        None, description="External regressors covering history + horizon"
    )
    non_negative: bool = Field(True, description="Clamp predictions at zero")


class ScenarioModel(BaseModel):
    name: str
    adjustments: dict[str, float] = Field(default_factory=dict)
    probability: float = Field(1.0, ge=0.0, le=1.0)


class ScenarioForecastRequest(ForecastRequest):
    """Request for one forecast per what-if scenario."""

    scenarios: list[ScenarioModel]


class TrendRequest(BaseModel):
    series: list[SeriesPoint]


class ObservationModel(BaseModel):
    """A metric observation to score."""

    timestamp: datetime
    metric: str = Field(..., description="revenue, units, transactions, cost, profit, waste, ...")
    value: float
    expected_value: Optional[float] = Field(None)
    store_id: Optional[str] = Field(None)
    product_id: Optional[str] = Field(None)


class AnomalyBatchRequest(BaseModel):
    observations: list[ObservationModel]


class PromotionRecordModel(BaseModel):
    """A completed promotion with its outcome."""

    promotion_id: str = Field("", description="Caller's identifier")
    category: str
    store_type: str
    discount_type: str
    discount_value: float
    duration: float
    seasonality: float = Field(0.5)
    planned_spend: float
    actual_spend: float
    revenue: float
    units: float
    roi: float


class OptimizeRequest(BaseModel):
    """Request for a spend recommendation."""

    category: str
    store_type: str
    discount_type: str
    discount_value: float
    duration: float
    seasonality_factor: float = Field(0.5, description="0-1 seasonal demand strength")
    history: list[PromotionRecordModel] = Field(default_factory=list)


class OptimizerTrainRequest(BaseModel):
    records: list[PromotionRecordModel]
    category_codes: Optional[dict[str, int]] = Field(None, description="Extra category encodings")
    store_type_codes: Optional[dict[str, int]] = Field(None)
    discount_type_codes: Optional[dict[str, int]] = Field(None)


class PromotionBatchRequest(BaseModel):
    records: list[PromotionRecordModel]


class PlannedPromotionModel(BaseModel):
    category: str
    store_type: str
    planned_spend: float
    discount_type: str
    discount_value: float
    duration: float


class PerformanceRequest(BaseModel):
    history: list[PromotionRecordModel]
    promotions: list[PlannedPromotionModel]


class VariableModel(BaseModel):
    name: str
    distribution: str = Field("normal", description="normal, uniform, exponential or lognormal")
    params: dict[str, float] = Field(default_factory=dict)
    impact: float = Field(1.0)


class ConstraintModel(BaseModel):
    type: str = Field(..., description="min or max")
    value: float


class SimulationRequest(BaseModel):
    """Monte Carlo simulation spec."""

    type: str = Field(..., description="Simulation type tag")
    base_value: float
    variables: list[VariableModel] = Field(default_factory=list)
    constraints: list[ConstraintModel] = Field(default_factory=list)
    iterations: int = Field(10_000)
    confidence_level: float = Field(95.0)
    seed: Optional[int] = Field(None)
    market_context: dict[str, float] = Field(default_factory=dict)
    history: list[float] = Field(default_factory=list)


class TrainResponse(BaseModel):
    """Response from a train operation."""

    kind: str
    version: int
    computed_at: str
    n_samples: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    model_store_path: str
    active_snapshot_version: Optional[int]


# =============================================================================
# Dependencies
# =============================================================================


def get_store(request: Request) -> ModelStore:
    """Dependency for the model store (created on first use)."""
    state = request.app.state
    if getattr(state, "store", None) is None:
        state.store = ModelStore(state.db_path)
    return state.store


def get_engine(request: Request) -> AnalyticsEngine:
    return request.app.state.engine


def active_snapshot(store: ModelStore) -> EngineSnapshot:
    return store.get_active_snapshot() or EngineSnapshot()


def http_error(error: PromoAnalyticsError) -> HTTPException:
    status = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(error, cls)),
        500,
    )
    return HTTPException(status_code=status, detail=error.to_dict())


def _points(series: list[SeriesPoint]) -> list[TimeSeriesPoint]:
    return [
        TimeSeriesPoint(
            timestamp=p.timestamp,
            value=p.value,
            category=p.category,
            store_id=p.store_id,
            product_id=p.product_id,
        )
        for p in series
    ]


def _observations(items: list[ObservationModel]) -> list[AnomalyObservation]:
    return [AnomalyObservation.from_dict(o.model_dump()) for o in items]


def _records(items: list[PromotionRecordModel]) -> list[PromotionRecord]:
    return [PromotionRecord.from_dict(r.model_dump()) for r in items]


def _options(request: ForecastRequest) -> ForecastOptions:
    return ForecastOptions(
        model=request.model,
        confidence_level=request.confidence_level,
        regressors=request.regressors,
        non_negative=request.non_negative,
    )


def _commit(store: ModelStore, update) -> EngineSnapshot:
    """Apply `update` to the active snapshot and save the result."""
    with _COMMIT_LOCK:
        return store.save_snapshot(update(active_snapshot(store)))


# =============================================================================
# Application Factory
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info(f"Promo Analytics API starting up with model store: {app.state.db_path}")
    app.state.store = ModelStore(app.state.db_path)
    snapshot = app.state.store.get_active_snapshot()
    if snapshot:
        logger.info(f"Active engine snapshot v{snapshot.version}")
    else:
        logger.info("No trained snapshot yet; serving with defaults")

    yield

    # Shutdown
    logger.info("Promo Analytics API shutting down")


def create_app(db_path: Optional[str] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        db_path: Optional model store path override.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Promo Analytics API",
        description="Forecasting, anomaly detection, spend optimization and risk simulation for trade promotions",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.db_path = db_path or MODEL_DB_PATH
    app.state.store = None
    app.state.engine = AnalyticsEngine()

    # CORS for browser-based clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routes
    app.include_router(health_router)
    app.include_router(forecast_router)
    app.include_router(trend_router)
    app.include_router(anomaly_router)
    app.include_router(optimizer_router)
    app.include_router(simulation_router)

    return app


# =============================================================================
# Routers
# =============================================================================

health_router = APIRouter(tags=["health"])
forecast_router = APIRouter(prefix="/api/v1/forecast", tags=["forecast"])
trend_router = APIRouter(prefix="/api/v1/trends", tags=["trends"])
anomaly_router = APIRouter(prefix="/api/v1/anomalies", tags=["anomalies"])
optimizer_router = APIRouter(prefix="/api/v1/optimizer", tags=["optimizer"])
simulation_router = APIRouter(prefix="/api/v1/simulations", tags=["simulations"])


# =============================================================================
# Health Endpoints
# =============================================================================


@health_router.get("/health", response_model=HealthResponse)
def health_check(store: ModelStore = Depends(get_store)):
    """Health check endpoint."""
    try:
        snapshot = store.get_active_snapshot()
    except Exception as e:
        logger.error(f"Model store unavailable: {e}")
        return HealthResponse(
            status="degraded",
            version=__version__,
            model_store_path=store.db_path,
            active_snapshot_version=None,
        )

    return HealthResponse(
        status="healthy",
        version=__version__,
        model_store_path=store.db_path,
        active_snapshot_version=snapshot.version if snapshot else None,
    )


# =============================================================================
# Forecast Endpoints
# =============================================================================


@forecast_router.post("")
def forecast(
    request: ForecastRequest,
    engine: AnalyticsEngine = Depends(get_engine),
    store: ModelStore = Depends(get_store),
):
    """Recursive multi-step forecast from the active ensemble weights."""
    try:
        results = engine.forecast(
            _points(request.series),
            request.horizon,
            _options(request),
            snapshot=active_snapshot(store),
        )
        return {"forecasts": [r.to_dict() for r in results]}
    except PromoAnalyticsError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Forecast error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@forecast_router.post("/scenarios")
def forecast_scenarios(
    request: ScenarioForecastRequest,
    engine: AnalyticsEngine = Depends(get_engine),
    store: ModelStore = Depends(get_store),
):
    """One forecast per what-if scenario."""
    try:
        scenarios = [ForecastScenario.from_dict(s.model_dump()) for s in request.scenarios]
        results = engine.forecast_with_scenarios(
            _points(request.series),
            scenarios,
            request.horizon,
            _options(request),
            snapshot=active_snapshot(store),
        )
        return {"scenarios": {name: [r.to_dict() for r in rs] for name, rs in results.items()}}
    except PromoAnalyticsError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Scenario forecast error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# =============================================================================
# Trend Endpoints
# =============================================================================


@trend_router.post("")
def trends(request: TrendRequest, engine: AnalyticsEngine = Depends(get_engine)):
    """Trend direction/strength, seasonality and change points."""
    try:
        return engine.analyze_trend(_points(request.series)).to_dict()
    except PromoAnalyticsError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Trend analysis error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# =============================================================================
# Anomaly Endpoints
# =============================================================================


@anomaly_router.post("/detect")
def detect_anomalies(
    request: AnomalyBatchRequest,
    engine: AnalyticsEngine = Depends(get_engine),
    store: ModelStore = Depends(get_store),
):
    """Score a batch of observations."""
    try:
        verdicts = engine.detect_anomaly(_observations(request.observations), active_snapshot(store))
        return {
            "verdicts": [v.to_dict() for v in verdicts],
            "anomalies": sum(1 for v in verdicts if v.is_anomaly),
        }
    except PromoAnalyticsError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Anomaly detection error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@anomaly_router.post("/train", response_model=TrainResponse)
def train_anomalies(
    request: AnomalyBatchRequest,
    engine: AnalyticsEngine = Depends(get_engine),
    store: ModelStore = Depends(get_store),
):
    """Fit baselines and the pattern model, then activate a new snapshot."""
    try:
        with TRAIN_LOCKS["anomaly"]:
            observations = _observations(request.observations)
            model = engine.train_anomaly_model(observations).anomaly_model
            stored = _commit(store, lambda s: s.with_anomaly_model(model))
        return TrainResponse(
            kind="anomaly",
            version=stored.version,
            computed_at=stored.computed_at.isoformat(),
            n_samples=model.n_samples,
        )
    except PromoAnalyticsError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Anomaly training error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# =============================================================================
# Optimizer Endpoints
# =============================================================================


@optimizer_router.post("/optimize")
def optimize(
    request: OptimizeRequest,
    engine: AnalyticsEngine = Depends(get_engine),
    store: ModelStore = Depends(get_store),
):
    """Recommend spend, expected ROI and confidence for a promotion."""
    try:
        payload = request.model_dump()
        result = engine.optimize(OptimizationRequest.from_dict(payload), active_snapshot(store))
        return result.to_dict()
    except PromoAnalyticsError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Optimization error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@optimizer_router.post("/train", response_model=TrainResponse)
def train_optimizer(
    request: OptimizerTrainRequest,
    engine: AnalyticsEngine = Depends(get_engine),
    store: ModelStore = Depends(get_store),
):
    """Fit the spend regression, then activate a new snapshot."""
    try:
        with TRAIN_LOCKS["optimizer"]:
            model = engine.train_optimizer(
                _records(request.records),
                category_codes=request.category_codes,
                store_type_codes=request.store_type_codes,
                discount_type_codes=request.discount_type_codes,
            ).optimizer_model
            stored = _commit(store, lambda s: s.with_optimizer_model(model))
        return TrainResponse(
            kind="optimizer",
            version=stored.version,
            computed_at=stored.computed_at.isoformat(),
            n_samples=model.n_samples,
        )
    except PromoAnalyticsError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Optimizer training error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@optimizer_router.post("/anomalies")
def promotion_anomalies(request: PromotionBatchRequest, engine: AnalyticsEngine = Depends(get_engine)):
    """Flag promotions with extreme ROI or spend behaviour."""
    try:
        anomalies = engine.detect_promotion_anomalies(_records(request.records))
        return {"anomalies": [a.to_dict() for a in anomalies]}
    except PromoAnalyticsError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Promotion anomaly error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@optimizer_router.post("/performance")
def promotion_performance(request: PerformanceRequest, engine: AnalyticsEngine = Depends(get_engine)):
    """Expected revenue, units and ROI band for planned promotions."""
    try:
        planned = [PlannedPromotion.from_dict(p.model_dump()) for p in request.promotions]
        forecasts = engine.forecast_promotion_performance(_records(request.history), planned)
        return {"forecasts": [f.to_dict() for f in forecasts]}
    except PromoAnalyticsError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Promotion performance error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# =============================================================================
# Simulation Endpoints
# =============================================================================


@simulation_router.post("")
def simulate(request: SimulationRequest, engine: AnalyticsEngine = Depends(get_engine)):
    """Run a Monte Carlo risk simulation."""
    try:
        spec = SimulationSpec.from_dict(request.model_dump())
        return engine.simulate(spec).to_dict()
    except PromoAnalyticsError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Simulation error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# =============================================================================
# Default Application Instance
# =============================================================================

app = create_app()


# =============================================================================
# CLI Entry Point
# =============================================================================


def main():
    """CLI entry point for promo-server command."""
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="Promo Analytics API Server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8082, help="Port to listen on")
    parser.add_argument("--db", default=None, help="Path to model store file")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.db:
        # The env var reaches reload workers; the state override covers this process
        os.environ["PROMO_MODEL_DB"] = args.db
        app.state.db_path = args.db

    uvicorn.run(
        "promo_analytics.api.server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
