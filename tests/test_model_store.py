from concurrent.futures import ThreadPoolExecutor

import pytest

from promo_analytics.core.anomaly import train_anomaly_model
from promo_analytics.core.config import EnsembleWeights
from promo_analytics.core.errors import InvalidInputError
from promo_analytics.core.model_store import EngineSnapshot, ModelStore
from promo_analytics.core.optimizer import SpendOptimizer


def test_with_methods_bump_version_and_leave_original_untouched():
    base = EngineSnapshot()
    weights = EnsembleWeights.normalized({"arima": 1.0, "gbm": 1.0})
    updated = base.with_weights(weights)
    assert updated.version == base.version + 1
    assert updated.ensemble_weights == weights
    assert base.ensemble_weights == EnsembleWeights()


def test_snapshot_json_round_trip(training_observations, promotion_records):
    snapshot = (
        EngineSnapshot()
        .with_weights(EnsembleWeights.normalized({"arima": 2.0, "seasonal": 1.0, "gbm": 1.0}))
        .with_anomaly_model(train_anomaly_model(training_observations))
        .with_optimizer_model(SpendOptimizer.train(promotion_records))
    )
    restored = EngineSnapshot.from_json(snapshot.to_json())
    assert restored.to_dict() == snapshot.to_dict()
    assert restored.version == 3


def test_unknown_snapshot_format_rejected():
    data = EngineSnapshot().to_dict()
    data["format"] = 99
    with pytest.raises(InvalidInputError):
        EngineSnapshot.from_dict(data)


def test_empty_store_has_no_active_snapshot(store):
    assert store.get_active_snapshot() is None
    assert store.list_versions() == []


def test_save_and_activate(store):
    first = store.save_snapshot(EngineSnapshot())
    second = store.save_snapshot(first.with_weights(EnsembleWeights.normalized({"gbm": 1.0})))
    assert (first.version, second.version) == (1, 2)
    assert store.get_active_snapshot().version == 2

    store.activate(1)
    active = store.get_active_snapshot()
    assert active.version == 1
    assert active.ensemble_weights == EnsembleWeights()

    versions = store.list_versions()
    assert [v["version"] for v in versions] == [2, 1]
    assert [v["is_active"] for v in versions] == [False, True]


def test_inactive_save(store):
    store.save_snapshot(EngineSnapshot())
    store.save_snapshot(EngineSnapshot(), activate=False)
    assert store.get_active_snapshot().version == 1
    assert store.get_snapshot_by_version(2) is not None
    assert store.get_snapshot_by_version(3) is None


def test_kinds_are_independent(store):
    store.save_snapshot(EngineSnapshot(), kind="engine")
    store.save_snapshot(EngineSnapshot(), kind="staging")
    assert store.get_active_snapshot("engine").version == 1
    assert store.get_active_snapshot("staging").version == 2
    assert [v["version"] for v in store.list_versions(kind="staging")] == [2]


def test_activate_unknown_version(store):
    with pytest.raises(InvalidInputError):
        store.activate(42)


def test_store_path_from_environment(tmp_path, monkeypatch):
    path = str(tmp_path / "env.db")
    monkeypatch.setenv("PROMO_MODEL_DB", path)
    assert ModelStore().db_path == path


def test_concurrent_saves_get_distinct_versions(tmp_path):
    path = str(tmp_path / "shared.db")
    stores = [ModelStore(path) for _ in range(8)]

    def save(i):
        return stores[i % len(stores)].save_snapshot(EngineSnapshot()).version

    with ThreadPoolExecutor(max_workers=8) as pool:
        versions = list(pool.map(save, range(24)))

    assert sorted(versions) == list(range(1, 25))
    store = ModelStore(path)
    assert len(store.list_versions(limit=100)) == 24
    assert sum(v["is_active"] for v in store.list_versions(limit=100)) == 1
