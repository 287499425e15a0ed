"""
Forecast Model Families

Four independent one-step-ahead forecasters behind a single interface:
- arima: ARIMA(p, d, q) via statsmodels, re-filtered on the growing series
- seasonal: additive trend + weekly/yearly Fourier regression (Prophet-style)
- gbm: gradient-boosted trees over lag and calendar features (scikit-learn)
- sequence: fixed-lookback neural regressor over normalized windows

Plus the moving-average estimator every family falls back to when history is
too short or a fit degenerates.

Each model is fitted once on the request's history, then asked for one value
at a time by the ensemble's recursive fold.

Copyright (c) 2024-2025 Tim Kaye / Local Cannabis Co.
All Rights Reserved. Proprietary and Confidential.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Mapping, Optional, Sequence, Tuple, Type

import numpy as np
import pandas as pd
from sklearn.ensemble import GradientBoostingRegressor
from sklearn.neural_network import MLPRegressor
from statsmodels.tsa.arima.model import ARIMA

from .config import ForecastConfig
from .errors import InsufficientDataError, InvalidInputError
from .signals import (
    CALENDAR_MODEL_COLUMNS,
    EPSILON,
    TimeSeriesPoint,
    calendar_features,
    encode_day_of_week,
    encode_day_of_year,
    lag_matrix,
    latest_lags,
    moving_average,
    regressor_matrix,
)

logger = logging.getLogger(__name__)


# =============================================================================
# WORKING SERIES
# =============================================================================

@dataclass(frozen=True)
class WorkingSeries:
    """Immutable series that grows by one point per forecast step.

    `regressors` covers history plus horizon, so the regressor row for the
    next step is always at index len(values).
    """
    timestamps: Tuple[datetime, ...]
    values: Tuple[float, ...]
    frequency: timedelta = timedelta(days=1)
    regressors: Mapping[str, Tuple[float, ...]] = field(default_factory=dict)

    @classmethod
    def from_points(
        cls,
        points: Sequence[TimeSeriesPoint],
        frequency: timedelta = timedelta(days=1),
        regressors: Optional[Mapping[str, Tuple[float, ...]]] = None,
    ) -> "WorkingSeries":
        return cls(
            timestamps=tuple(p.timestamp for p in points),
            values=tuple(float(p.value) for p in points),
            frequency=frequency,
            regressors=dict(regressors or {}),
        )

    def __len__(self) -> int:
        return len(self.values)

    @property
    def array(self) -> np.ndarray:
        return np.asarray(self.values, dtype=float)

    @property
    def next_timestamp(self) -> datetime:
        return self.timestamps[-1] + self.frequency

    def append(self, timestamp: datetime, value: float) -> "WorkingSeries":
        return WorkingSeries(
            timestamps=self.timestamps + (timestamp,),
            values=self.values + (float(value),),
            frequency=self.frequency,
            regressors=self.regressors,
        )

    def scaled(self, factor: float) -> "WorkingSeries":
        return WorkingSeries(
            timestamps=self.timestamps,
            values=tuple(v * factor for v in self.values),
            frequency=self.frequency,
            regressors=self.regressors,
        )


# =============================================================================
# MODEL INTERFACE
# =============================================================================

class ForecastModel:
    """One-step-ahead forecaster.

    Subclasses set `name`, implement `_fit` and `predict_next`, and report
    their minimum history through `min_history`.
    """

    name = "base"

    def __init__(self, config: Optional[ForecastConfig] = None):
        self.config = config or ForecastConfig()
        self._fitted = False

    def min_history(self) -> int:
        return 1

    def fit(self, series: WorkingSeries) -> "ForecastModel":
        needed = self.min_history()
        if len(series) < needed:
            raise InsufficientDataError(
                f"{self.name} needs {needed} points, got {len(series)}",
                details={"model": self.name, "required": needed, "available": len(series)},
            )
        self._fit(series)
        self._fitted = True
        return self

    def _fit(self, series: WorkingSeries) -> None:
        pass

    def predict_next(self, series: WorkingSeries) -> float:
        raise NotImplementedError


class MovingAverageModel(ForecastModel):
    """Mean of the last `fallback_window` values."""

    name = "moving_average"

    def predict_next(self, series: WorkingSeries) -> float:
        return moving_average(series.values, self.config.fallback_window)


class ArimaModel(ForecastModel):
    """ARIMA fitted once, then re-filtered with fixed parameters each step."""

    name = "arima"

    def min_history(self) -> int:
        return self.config.arima_min_history

    def _fit(self, series: WorkingSeries) -> None:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            self._results = ARIMA(series.array, order=tuple(self.config.arima_order)).fit()

    def predict_next(self, series: WorkingSeries) -> float:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            results = self._results.apply(series.array)
            return float(np.asarray(results.forecast(1))[0])


class SeasonalRegressionModel(ForecastModel):
    """Additive decomposition: linear trend + weekly and yearly Fourier terms.

    Refitted on the working series at every step (closed-form least squares).
    Yearly terms only enter once the history spans a full year.
    """

    name = "seasonal"
    weekly_harmonics = 3

    def min_history(self) -> int:
        return self.config.seasonal_min_history

    def _design(self, timestamps: Sequence[datetime], index: np.ndarray, yearly: bool) -> np.ndarray:
        idx = pd.DatetimeIndex(pd.to_datetime(list(timestamps)))
        dow = idx.dayofweek.to_numpy()
        cols = [np.ones(len(index)), index]
        for k in range(1, self.weekly_harmonics + 1):
            s, c = encode_day_of_week(dow * k)
            cols.extend([s, c])
        if yearly:
            s, c = encode_day_of_year(idx.dayofyear.to_numpy())
            cols.extend([s, c])
        return np.column_stack(cols)

    def _spans_year(self, series: WorkingSeries) -> bool:
        return (series.timestamps[-1] - series.timestamps[0]) >= timedelta(days=365)

    def _solve(self, series: WorkingSeries) -> Tuple[np.ndarray, bool]:
        yearly = self._spans_year(series)
        index = np.arange(len(series), dtype=float)
        X = self._design(series.timestamps, index, yearly)
        coef, *_ = np.linalg.lstsq(X, series.array, rcond=None)
        return coef, yearly

    def predict_next(self, series: WorkingSeries) -> float:
        coef, yearly = self._solve(series)
        x = self._design([series.next_timestamp], np.array([float(len(series))]), yearly)
        return float(x[0] @ coef)


class GradientBoostingModel(ForecastModel):
    """Gradient-boosted trees over lags, calendar encodings and regressors."""

    name = "gbm"

    def min_history(self) -> int:
        return max(self.config.gbm_min_history, max(self.config.gbm_lags) + 2)

    def _features(self, series: WorkingSeries, timestamps: Sequence[datetime], start: int, lags: np.ndarray) -> np.ndarray:
        calendar = calendar_features(timestamps)[CALENDAR_MODEL_COLUMNS].to_numpy(dtype=float)
        extra = regressor_matrix(series.regressors, start, start + len(timestamps))
        return np.hstack([lags, calendar, extra])

    def _fit(self, series: WorkingSeries) -> None:
        lags = self.config.gbm_lags
        max_lag = max(lags)
        X_lags = lag_matrix(series.values, lags)
        X = self._features(series, series.timestamps[max_lag:], max_lag, X_lags)
        y = series.array[max_lag:]
        self._model = GradientBoostingRegressor(
            n_estimators=self.config.gbm_estimators,
            max_depth=self.config.gbm_max_depth,
            learning_rate=self.config.gbm_learning_rate,
            random_state=self.config.random_state,
        )
        self._model.fit(X, y)

    def predict_next(self, series: WorkingSeries) -> float:
        lags = latest_lags(series.values, self.config.gbm_lags).reshape(1, -1)
        X = self._features(series, [series.next_timestamp], len(series), lags)
        return float(self._model.predict(X)[0])


class SequenceModel(ForecastModel):
    """Fixed-lookback regressor over z-normalized windows."""

    name = "sequence"

    def min_history(self) -> int:
        return self.config.sequence_lookback + 1

    def _fit(self, series: WorkingSeries) -> None:
        lookback = self.config.sequence_lookback
        values = series.array
        self._mean = float(values.mean())
        std = float(values.std())
        self._std = std if std > EPSILON else 1.0
        normalized = (values - self._mean) / self._std

        windows = np.lib.stride_tricks.sliding_window_view(normalized, lookback + 1)
        X, y = windows[:, :-1], windows[:, -1]
        self._model = MLPRegressor(
            hidden_layer_sizes=tuple(self.config.sequence_hidden_layers),
            max_iter=self.config.sequence_max_iter,
            random_state=self.config.random_state,
        )
        with warnings.catch_warnings():
            # Small windows rarely converge fully; the fit is still usable
            warnings.simplefilter("ignore")
            self._model.fit(X, y)

    def predict_next(self, series: WorkingSeries) -> float:
        lookback = self.config.sequence_lookback
        window = (series.array[-lookback:] - self._mean) / self._std
        value = float(self._model.predict(window.reshape(1, -1))[0])
        return value * self._std + self._mean


MODEL_REGISTRY: Dict[str, Type[ForecastModel]] = {
    ArimaModel.name: ArimaModel,
    SeasonalRegressionModel.name: SeasonalRegressionModel,
    GradientBoostingModel.name: GradientBoostingModel,
    SequenceModel.name: SequenceModel,
}


def build_model(name: str, config: Optional[ForecastConfig] = None) -> ForecastModel:
    try:
        model_cls = MODEL_REGISTRY[name]
    except KeyError:
        raise InvalidInputError(
            f"Unknown model family: {name}",
            details={"model": name, "allowed": sorted(MODEL_REGISTRY)},
        ) from None
    return model_cls(config)
