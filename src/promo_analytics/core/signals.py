"""
Signal Preparation

Turns raw timestamped records into model-ready inputs:
- Validated, chronologically sorted TimeSeriesPoint tuples
- Calendar and cyclical encodings (day of week, month, day of year)
- Lag matrices for the tree model
- Sign-preserving log transforms

Everything here is pure: inputs are never mutated, outputs are new objects.

Copyright (c) 2024-2025 Tim Kaye / Local Cannabis Co.
All Rights Reserved. Proprietary and Confidential.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import InvalidInputError

# Substituted for zero denominators
EPSILON = 1e-9


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class TimeSeriesPoint:
    """A single observation supplied by the caller."""
    timestamp: datetime
    value: float
    category: Optional[str] = None
    store_id: Optional[str] = None
    product_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "value": self.value,
            "category": self.category,
            "store_id": self.store_id,
            "product_id": self.product_id,
        }


# =============================================================================
# SERIES CONSTRUCTION
# =============================================================================

def coerce_timestamp(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        return raw
    try:
        return pd.Timestamp(raw).to_pydatetime()
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"Unparseable timestamp: {raw!r}") from e


def prepare_series(points: Iterable[TimeSeriesPoint]) -> Tuple[TimeSeriesPoint, ...]:
    """Validate a series and return it sorted by timestamp.

    Raises InvalidInputError for an empty series or non-finite values.
    """
    series = tuple(points)
    if not series:
        raise InvalidInputError("Series must contain at least one point")
    for point in series:
        if not isinstance(point, TimeSeriesPoint):
            raise InvalidInputError(f"Expected TimeSeriesPoint, got {type(point).__name__}")
        if point.value is None or not math.isfinite(float(point.value)):
            raise InvalidInputError(
                f"Non-finite value at {point.timestamp}",
                details={"timestamp": str(point.timestamp)},
            )
    return tuple(sorted(series, key=lambda p: p.timestamp))


def series_from_records(
    records: Iterable[Mapping[str, Any]],
    timestamp_key: str = "timestamp",
    value_key: str = "value",
) -> Tuple[TimeSeriesPoint, ...]:
    """Build a sorted series from dict-like records (JSON rows, CSV rows)."""
    points = []
    for row in records:
        if timestamp_key not in row or value_key not in row:
            raise InvalidInputError(
                f"Record is missing '{timestamp_key}' or '{value_key}'",
                details={"record": dict(row)},
            )
        try:
            value = float(row[value_key])
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Non-numeric value: {row[value_key]!r}") from e
        points.append(
            TimeSeriesPoint(
                timestamp=coerce_timestamp(row[timestamp_key]),
                value=value,
                category=row.get("category"),
                store_id=row.get("store_id"),
                product_id=row.get("product_id"),
            )
        )
    return prepare_series(points)


def series_from_frame(
    df: pd.DataFrame,
    timestamp_col: str = "timestamp",
    value_col: str = "value",
) -> Tuple[TimeSeriesPoint, ...]:
    """Build a sorted series from a DataFrame."""
    missing = [c for c in (timestamp_col, value_col) if c not in df.columns]
    if missing:
        raise InvalidInputError(f"Missing columns: {', '.join(missing)}")
    return series_from_records(
        df.to_dict("records"), timestamp_key=timestamp_col, value_key=value_col
    )


def values_of(series: Sequence[TimeSeriesPoint]) -> np.ndarray:
    return np.asarray([float(p.value) for p in series], dtype=float)


# =============================================================================
# ENCODINGS
# =============================================================================

def encode_day_of_week(dow: Any) -> Tuple[Any, Any]:
    """Cyclical weekday encoding so Sunday sits next to Monday."""
    rad = 2 * np.pi * (np.asarray(dow) % 7) / 7.0
    return np.sin(rad), np.cos(rad)


def encode_month(month: Any) -> Tuple[Any, Any]:
    """Cyclical month encoding so December sits next to January."""
    rad = 2 * np.pi * (np.asarray(month) - 1) / 12.0
    return np.sin(rad), np.cos(rad)


def encode_day_of_year(day_of_year: Any) -> Tuple[Any, Any]:
    rad = 2 * np.pi * np.asarray(day_of_year) / 365.25
    return np.sin(rad), np.cos(rad)


def signed_log1p(values: Any) -> Any:
    """log1p that keeps the sign and accepts negatives."""
    arr = np.asarray(values, dtype=float)
    return np.sign(arr) * np.log1p(np.abs(arr))


def calendar_features(timestamps: Any) -> pd.DataFrame:
    """Calendar and cyclical columns for a sequence of timestamps.

    Columns: dow, day_of_month, month, day_of_year, hour,
    dow_sin, dow_cos, month_sin, month_cos, doy_sin, doy_cos
    """
    idx = pd.DatetimeIndex(pd.to_datetime(list(timestamps)))
    dow = idx.dayofweek.to_numpy()
    month = idx.month.to_numpy()
    doy = idx.dayofyear.to_numpy()
    dow_sin, dow_cos = encode_day_of_week(dow)
    month_sin, month_cos = encode_month(month)
    doy_sin, doy_cos = encode_day_of_year(doy)
    return pd.DataFrame(
        {
            "dow": dow,
            "day_of_month": idx.day.to_numpy(),
            "month": month,
            "day_of_year": doy,
            "hour": idx.hour.to_numpy(),
            "dow_sin": dow_sin,
            "dow_cos": dow_cos,
            "month_sin": month_sin,
            "month_cos": month_cos,
            "doy_sin": doy_sin,
            "doy_cos": doy_cos,
        }
    )


CALENDAR_MODEL_COLUMNS = [
    "dow",
    "day_of_month",
    "month",
    "dow_sin",
    "dow_cos",
    "month_sin",
    "month_cos",
]


def lag_matrix(values: Sequence[float], lags: Sequence[int]) -> np.ndarray:
    """Matrix of lagged values, one row per position from max(lags) onwards.

    Row i holds values[i + max_lag - lag] for each lag, i.e. the lags of
    position i + max_lag.
    """
    arr = np.asarray(values, dtype=float)
    max_lag = max(lags)
    if len(arr) <= max_lag:
        return np.empty((0, len(lags)))
    rows = [arr[max_lag - lag: len(arr) - lag] for lag in lags]
    return np.column_stack(rows)


def latest_lags(values: Sequence[float], lags: Sequence[int]) -> np.ndarray:
    """Lag vector for the position right after the end of `values`."""
    arr = np.asarray(values, dtype=float)
    return np.array([arr[-lag] for lag in lags], dtype=float)


def moving_average(values: Sequence[float], window: int) -> float:
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return 0.0
    return float(np.mean(arr[-window:]))


def population_std(values: Sequence[float]) -> float:
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return 0.0
    return float(np.std(arr))


def safe_denominator(value: float) -> float:
    """Substitute EPSILON for a zero denominator, keeping the sign otherwise."""
    if abs(value) < EPSILON:
        return EPSILON
    return value


def regressor_matrix(
    regressors: Optional[Mapping[str, Sequence[float]]],
    start: int,
    stop: int,
) -> np.ndarray:
    """Columns of external regressors for positions [start, stop)."""
    if not regressors:
        return np.empty((stop - start, 0))
    cols = [np.asarray(regressors[name], dtype=float)[start:stop] for name in sorted(regressors)]
    return np.column_stack(cols)


def validate_regressors(
    regressors: Optional[Mapping[str, Sequence[float]]],
    required_length: int,
) -> Dict[str, Tuple[float, ...]]:
    """Regressors must cover history plus horizon with finite numbers."""
    if not regressors:
        return {}
    clean: Dict[str, Tuple[float, ...]] = {}
    for name, raw in regressors.items():
        values = tuple(float(v) for v in raw)
        if len(values) < required_length:
            raise InvalidInputError(
                f"Regressor '{name}' has {len(values)} values, needs {required_length}",
                details={"regressor": name, "required": required_length},
            )
        if not all(math.isfinite(v) for v in values):
            raise InvalidInputError(f"Regressor '{name}' contains non-finite values")
        clean[name] = values
    return clean


def split_by_dimension(
    series: Sequence[TimeSeriesPoint],
    key: str = "category",
) -> Dict[Optional[str], List[TimeSeriesPoint]]:
    """Group points by a dimension key (category / store_id / product_id)."""
    if key not in ("category", "store_id", "product_id"):
        raise InvalidInputError(f"Unknown dimension key: {key}")
    groups: Dict[Optional[str], List[TimeSeriesPoint]] = {}
    for point in series:
        groups.setdefault(getattr(point, key), []).append(point)
    return groups
