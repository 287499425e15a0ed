"""
Promo Analytics Python Client

Provides a clean interface for consuming the promo analytics service from
other processes (planning tools, ETL jobs, notebooks).

Copyright (c) 2024-2025 Tim Kaye / Local Cannabis Co.
All Rights Reserved. Proprietary and Confidential.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

import httpx

from ..core.anomaly import AnomalyObservation
from ..core.optimizer import PlannedPromotion, PromotionRecord
from ..core.signals import TimeSeriesPoint


@dataclass
class PromoConfig:
    """Configuration for the promo analytics client."""

    base_url: str = field(
        default_factory=lambda: os.getenv("PROMO_API_URL", "http://localhost:8082")
    )
    api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("PROMO_API_KEY")
    )
    timeout: float = 60.0


class PromoClientError(Exception):
    """Base exception for client errors."""

    def __init__(self, message: str, code: str = "UNKNOWN", details: dict | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.status_code = status_code


class PromoConnectionError(PromoClientError):
    """Raised when unable to connect to the service."""
    pass


class PromoInvalidInputError(PromoClientError):
    """Raised when the service rejects a request (HTTP 400 / request validation)."""
    pass


class PromoNotTrainedError(PromoClientError):
    """Raised when a model is used before it was trained (HTTP 409)."""
    pass


class PromoBudgetExceededError(PromoClientError):
    """Raised when horizon or iterations exceed the service ceilings (HTTP 413)."""
    pass


class PromoInsufficientDataError(PromoClientError):
    """Raised when the history is too short for the operation (HTTP 422)."""
    pass


class PromoNumericDegeneracyError(PromoClientError):
    """Raised when a computation produced non-finite values (HTTP 422)."""
    pass


_STATUS_ERRORS = {
    400: PromoInvalidInputError,
    409: PromoNotTrainedError,
    413: PromoBudgetExceededError,
}

# 422 carries several engine error kinds; request validation errors fall through to invalid input
_UNPROCESSABLE_ERRORS = {
    "INSUFFICIENT_DATA": PromoInsufficientDataError,
    "NUMERIC_DEGENERACY": PromoNumericDegeneracyError,
}


def _serialize(item: Any) -> dict:
    """Engine dataclasses and plain mappings both go over the wire as dicts."""
    if isinstance(item, (TimeSeriesPoint, AnomalyObservation, PromotionRecord, PlannedPromotion)):
        return item.to_dict()
    if isinstance(item, Mapping):
        data = dict(item)
        if isinstance(data.get("timestamp"), datetime):
            data["timestamp"] = data["timestamp"].isoformat()
        return data
    raise TypeError(f"Cannot serialize {type(item).__name__}")


class PromoClient:
    """
    Client for the Promo Analytics API.

    Example:
        >>> client = PromoClient()
        >>> forecasts = client.forecast(series, horizon=7)
        >>> for f in forecasts:
        ...     print(f["timestamp"], f["predicted_value"])

        >>> result = client.simulate({
        ...     "type": "PROMOTION_IMPACT",
        ...     "base_value": 1_000_000,
        ...     "variables": [{"name": "uplift", "distribution": "normal",
        ...                    "params": {"mean": 0, "std": 0.1}, "impact": 1.0}],
        ... })
    """

    def __init__(self, config: PromoConfig | None = None, transport: httpx.BaseTransport | None = None):
        """
        Initialize the client.

        Args:
            config: Optional configuration. Uses environment variables if not provided.
            transport: Optional httpx transport (e.g. a MockTransport in tests).
        """
        self.config = config or PromoConfig()
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Lazy-initialize HTTP client."""
        if self._client is None:
            headers = {}
            if self.config.api_key:
                headers["X-API-Key"] = self.config.api_key

            self._client = httpx.Client(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            self._client.close()
            self._client = None

    def __enter__(self) -> "PromoClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _request(self, method: str, path: str, payload: dict | None = None) -> dict:
        try:
            response = self.client.request(method, path, json=payload)
        except httpx.ConnectError as e:
            raise PromoConnectionError(
                f"Unable to connect to promo analytics service at {self.config.base_url}",
                "CONNECTION_ERROR",
            ) from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> dict:
        """Handle API response and raise appropriate errors."""
        try:
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = None

            if isinstance(detail, dict):
                code = detail.get("code", "HTTP_ERROR")
                message = detail.get("message", str(e))
                details = detail.get("details", {})
            elif isinstance(detail, list):
                # Request validation errors from the API layer
                code, message, details = "INVALID_INPUT", "Request validation failed", {"errors": detail}
            else:
                code, message, details = "HTTP_ERROR", str(detail or e), {}

            status = response.status_code
            if status == 422:
                error_cls = _UNPROCESSABLE_ERRORS.get(code, PromoInvalidInputError)
            else:
                error_cls = _STATUS_ERRORS.get(status, PromoClientError)
            raise error_cls(message, code, details, status_code=status) from e

    # =========================================================================
    # Health & Status
    # =========================================================================

    def health(self) -> dict:
        """Check service health and the active snapshot version."""
        return self._request("GET", "/health")

    def is_available(self) -> bool:
        """
        Quick check if the service is available.

        Returns:
            True if service is healthy, False otherwise.
        """
        try:
            return self.health().get("status") == "healthy"
        except PromoClientError:
            return False

    # =========================================================================
    # Forecasting & Trends
    # =========================================================================

    def forecast(
        self,
        series: Iterable[TimeSeriesPoint | Mapping[str, Any]],
        horizon: int = 7,
        model: str = "ensemble",
        confidence_level: float = 95.0,
        regressors: Mapping[str, list[float]] | None = None,
    ) -> list[dict]:
        """
        Recursive multi-step forecast.

        Args:
            series: History as TimeSeriesPoints or {"timestamp", "value"} dicts
            horizon: Number of steps to forecast
            model: arima, seasonal, gbm, sequence or ensemble
            confidence_level: 90, 95 or 99
            regressors: Optional external regressors covering history + horizon

        Returns:
            One dict per step with predicted_value, confidence_interval,
            model_id, member_predictions and fallbacks.
        """
        payload = {
            "series": [_serialize(p) for p in series],
            "horizon": horizon,
            "model": model,
            "confidence_level": confidence_level,
            "regressors": dict(regressors) if regressors else None,
        }
        return self._request("POST", "/api/v1/forecast", payload)["forecasts"]

    def forecast_scenarios(
        self,
        series: Iterable[TimeSeriesPoint | Mapping[str, Any]],
        scenarios: list[Mapping[str, Any]],
        horizon: int = 7,
        model: str = "ensemble",
    ) -> dict[str, list[dict]]:
        payload = {
            "series": [_serialize(p) for p in series],
            "scenarios": [dict(s) for s in scenarios],
            "horizon": horizon,
            "model": model,
        }
        return self._request("POST", "/api/v1/forecast/scenarios", payload)["scenarios"]

    def analyze_trend(self, series: Iterable[TimeSeriesPoint | Mapping[str, Any]]) -> dict:
        payload = {"series": [_serialize(p) for p in series]}
        return self._request("POST", "/api/v1/trends", payload)

    # =========================================================================
    # Anomalies
    # =========================================================================

    def detect_anomalies(self, observations: Iterable[AnomalyObservation | Mapping[str, Any]]) -> list[dict]:
        payload = {"observations": [_serialize(o) for o in observations]}
        return self._request("POST", "/api/v1/anomalies/detect", payload)["verdicts"]

    def train_anomaly_model(self, observations: Iterable[AnomalyObservation | Mapping[str, Any]]) -> dict:
        """Train baselines + pattern model; returns the new snapshot version."""
        payload = {"observations": [_serialize(o) for o in observations]}
        return self._request("POST", "/api/v1/anomalies/train", payload)

    # =========================================================================
    # Spend Optimizer
    # =========================================================================

    def optimize(
        self,
        category: str,
        store_type: str,
        discount_type: str,
        discount_value: float,
        duration: float,
        seasonality_factor: float = 0.5,
        history: Iterable[PromotionRecord | Mapping[str, Any]] = (),
    ) -> dict:
        payload = {
            "category": category,
            "store_type": store_type,
            "discount_type": discount_type,
            "discount_value": discount_value,
            "duration": duration,
            "seasonality_factor": seasonality_factor,
            "history": [_serialize(r) for r in history],
        }
        return self._request("POST", "/api/v1/optimizer/optimize", payload)

    def train_optimizer(self, records: Iterable[PromotionRecord | Mapping[str, Any]]) -> dict:
        payload = {"records": [_serialize(r) for r in records]}
        return self._request("POST", "/api/v1/optimizer/train", payload)

    def promotion_anomalies(self, records: Iterable[PromotionRecord | Mapping[str, Any]]) -> list[dict]:
        payload = {"records": [_serialize(r) for r in records]}
        return self._request("POST", "/api/v1/optimizer/anomalies", payload)["anomalies"]

    def promotion_performance(
        self,
        history: Iterable[PromotionRecord | Mapping[str, Any]],
        promotions: Iterable[PlannedPromotion | Mapping[str, Any]],
    ) -> list[dict]:
        payload = {
            "history": [_serialize(r) for r in history],
            "promotions": [_serialize(p) for p in promotions],
        }
        return self._request("POST", "/api/v1/optimizer/performance", payload)["forecasts"]

    # =========================================================================
    # Simulation
    # =========================================================================

    def simulate(self, spec: Mapping[str, Any]) -> dict:
        """Run a Monte Carlo simulation from a JSON-shaped spec."""
        return self._request("POST", "/api/v1/simulations", dict(spec))


__all__ = [
    "PromoClient",
    "PromoConfig",
    "PromoClientError",
    "PromoConnectionError",
    "PromoInvalidInputError",
    "PromoNotTrainedError",
    "PromoBudgetExceededError",
    "PromoInsufficientDataError",
    "PromoNumericDegeneracyError",
]
