"""
Shared fixtures for the promo analytics test suite.
"""
from datetime import datetime, timedelta

import numpy as np
import pytest

from promo_analytics.core import AnomalyObservation, ModelStore, PromotionRecord, TimeSeriesPoint

START = datetime(2024, 1, 1)


def build_series(values, start=START, step=timedelta(days=1)):
    return [TimeSeriesPoint(timestamp=start + i * step, value=float(v)) for i, v in enumerate(values)]


@pytest.fixture
def make_series():
    """Factory: list of values -> daily TimeSeriesPoints starting 2024-01-01."""
    return build_series


@pytest.fixture(scope="module")
def trending_series():
    """90 days of upward-trending sales with a weekly cycle and mild noise."""
    rng = np.random.default_rng(42)
    i = np.arange(90)
    values = 1000 + 5 * i + 50 * np.sin(2 * np.pi * i / 7) + rng.normal(0, 10, 90)
    return build_series(values)


@pytest.fixture
def training_observations():
    """A month of daily noon revenue and unit counts."""
    rng = np.random.default_rng(7)
    observations = []
    for day in range(1, 31):
        ts = datetime(2024, 6, day, 12, 0)
        observations.append(
            AnomalyObservation(timestamp=ts, metric="revenue", value=float(1000 + rng.normal(0, 50)))
        )
        observations.append(
            AnomalyObservation(timestamp=ts, metric="units", value=float(rng.integers(90, 111)))
        )
    return observations


@pytest.fixture
def promotion_records():
    """40 completed promotions: spend around 100k, ROI around 1.5."""
    rng = np.random.default_rng(11)
    categories = ["Beverages", "Snacks"]
    store_types = ["Supermarket", "Hypermarket"]
    discount_types = ["PERCENTAGE", "BOGO"]
    records = []
    for i in range(40):
        planned = float(rng.normal(100_000, 10_000))
        actual = planned * float(rng.uniform(0.9, 1.1))
        revenue = actual * float(rng.uniform(2.2, 2.8))
        records.append(
            PromotionRecord(
                promotion_id=f"P{i:03d}",
                category=categories[i % 2],
                store_type=store_types[(i // 2) % 2],
                discount_type=discount_types[(i // 4) % 2],
                discount_value=float(rng.uniform(10, 25)),
                duration=float(rng.integers(7, 22)),
                seasonality=float(rng.uniform(0.3, 0.8)),
                planned_spend=planned,
                actual_spend=actual,
                revenue=revenue,
                units=revenue / 50,
                roi=float(rng.uniform(1.3, 1.7)),
            )
        )
    return records


@pytest.fixture
def store(tmp_path):
    return ModelStore(str(tmp_path / "models.db"))
