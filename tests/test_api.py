"""
REST API tests against a fresh model store per test.
"""
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from promo_analytics.api.server import create_app


@pytest.fixture
def client(tmp_path):
    return TestClient(create_app(str(tmp_path / "api_models.db")))


def _series(n, start=datetime(2024, 1, 1)):
    return [
        {"timestamp": (start + timedelta(days=i)).isoformat(), "value": 100.0 + 2 * i + (i % 7)}
        for i in range(n)
    ]


def _observations():
    rows = []
    for day in range(1, 29):
        ts = datetime(2024, 6, day, 12).isoformat()
        rows.append({"timestamp": ts, "metric": "revenue", "value": 1000.0 + (day % 5) * 10})
        rows.append({"timestamp": ts, "metric": "units", "value": float(95 + day % 10)})
    return rows


def _records(promotion_records):
    return [r.to_dict() for r in promotion_records]


def test_health(client, tmp_path):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["active_snapshot_version"] is None
    assert data["model_store_path"].endswith("api_models.db")


def test_forecast(client):
    response = client.post("/api/v1/forecast", json={"series": _series(40), "horizon": 3, "model": "seasonal"})
    assert response.status_code == 200
    forecasts = response.json()["forecasts"]
    assert len(forecasts) == 3
    first = forecasts[0]
    assert first["confidence_interval"]["lower"] <= first["predicted_value"] <= first["confidence_interval"]["upper"]
    assert first["timestamp"] == "2024-02-10T00:00:00"


def test_forecast_rejects_bad_horizon(client):
    response = client.post("/api/v1/forecast", json={"series": _series(40), "horizon": 0})
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_INPUT"


def test_forecast_rejects_unknown_model(client):
    response = client.post("/api/v1/forecast", json={"series": _series(40), "model": "prophet"})
    assert response.status_code == 400
    assert response.json()["detail"]["details"]["model"] == "prophet"


def test_forecast_horizon_ceiling(client):
    response = client.post("/api/v1/forecast", json={"series": _series(40), "horizon": 10_000})
    assert response.status_code == 413
    assert response.json()["detail"]["code"] == "COMPUTE_BUDGET_EXCEEDED"


def test_scenario_forecast(client):
    response = client.post(
        "/api/v1/forecast/scenarios",
        json={
            "series": _series(40),
            "horizon": 2,
            "model": "seasonal",
            "scenarios": [
                {"name": "base"},
                {"name": "boost", "adjustments": {"global": 0.2}},
                {"name": "unlikely", "probability": 0.5},
            ],
        },
    )
    assert response.status_code == 200
    scenarios = response.json()["scenarios"]
    assert set(scenarios) == {"base", "boost", "unlikely"}
    base = scenarios["base"][0]["predicted_value"]
    assert scenarios["boost"][0]["predicted_value"] == pytest.approx(base * 1.2, rel=1e-6)
    assert scenarios["unlikely"][0]["predicted_value"] == pytest.approx(base * 0.75)


def test_trends(client):
    response = client.post("/api/v1/trends", json={"series": _series(30)})
    assert response.status_code == 200
    data = response.json()
    assert data["direction"] == "increasing"
    assert set(data["seasonality"]) == {"detected", "period", "strength"}


def test_optimizer_lifecycle(client, promotion_records):
    request = {
        "category": "Beverages",
        "store_type": "Supermarket",
        "discount_type": "PERCENTAGE",
        "discount_value": 15,
        "duration": 14,
    }
    untrained = client.post("/api/v1/optimizer/optimize", json=request)
    assert untrained.status_code == 409
    assert untrained.json()["detail"]["code"] == "NOT_TRAINED"

    trained = client.post("/api/v1/optimizer/train", json={"records": _records(promotion_records)})
    assert trained.status_code == 200
    assert trained.json()["kind"] == "optimizer"
    assert trained.json()["version"] == 1
    assert trained.json()["n_samples"] == len(promotion_records)

    result = client.post("/api/v1/optimizer/optimize", json=request)
    assert result.status_code == 200
    assert 0 <= result.json()["confidence_score"] <= 1

    # Training another model kind keeps the optimizer in the active snapshot
    anomaly = client.post("/api/v1/anomalies/train", json={"observations": _observations()})
    assert anomaly.status_code == 200
    assert anomaly.json()["version"] == 2
    assert client.post("/api/v1/optimizer/optimize", json=request).status_code == 200
    assert client.get("/health").json()["active_snapshot_version"] == 2


def test_optimizer_train_needs_records(client):
    response = client.post("/api/v1/optimizer/train", json={"records": []})
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "INSUFFICIENT_DATA"


def test_detect_anomalies(client):
    response = client.post(
        "/api/v1/anomalies/detect",
        json={
            "observations": [
                {"timestamp": "2024-06-15T12:00:00", "metric": "revenue", "value": -100},
                {"timestamp": "2024-06-15T12:00:00", "metric": "profit", "value": 10},
            ]
        },
    )
    assert response.status_code == 200
    data = response.json()
    assert data["anomalies"] == 1
    assert data["verdicts"][0]["anomaly_type"] == "business_rule_violation"
    assert not data["verdicts"][1]["is_anomaly"]


def test_promotion_anomalies_and_performance(client, promotion_records):
    anomalies = client.post("/api/v1/optimizer/anomalies", json={"records": _records(promotion_records)})
    assert anomalies.status_code == 200
    assert anomalies.json()["anomalies"] == []

    performance = client.post(
        "/api/v1/optimizer/performance",
        json={
            "history": [],
            "promotions": [{
                "category": "Dairy",
                "store_type": "Convenience",
                "planned_spend": 40_000,
                "discount_type": "BOGO",
                "discount_value": 20,
                "duration": 7,
            }],
        },
    )
    assert performance.status_code == 200
    [forecast] = performance.json()["forecasts"]
    assert forecast["expected_revenue"] == pytest.approx(100_000)
    assert forecast["similar_promotions"] == 0


def test_simulation(client):
    response = client.post(
        "/api/v1/simulations",
        json={
            "type": "MARKET_SCENARIO",
            "base_value": 1000,
            "iterations": 1000,
            "seed": 3,
            "market_context": {"seasonality": 1.0, "trend": 0.0},
        },
    )
    assert response.status_code == 200
    data = response.json()
    assert data["type"] == "MARKET_SCENARIO"
    assert data["iterations"] == 1000


@pytest.mark.parametrize("overrides", [{"type": "WEATHER_IMPACT"}, {"iterations": 0}])
def test_simulation_rejects_bad_spec(client, overrides):
    spec = {"type": "MARKET_SCENARIO", "base_value": 1000, "iterations": 100}
    spec.update(overrides)
    response = client.post("/api/v1/simulations", json=spec)
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_INPUT"


def test_request_validation_error(client):
    response = client.post("/api/v1/forecast", json={"horizon": 3})
    assert response.status_code == 422
    assert isinstance(response.json()["detail"], list)


def test_simulation_overflow_is_unprocessable(client):
    spec = {
        "type": "PROMOTION_IMPACT",
        "base_value": 1000,
        "iterations": 500,
        "seed": 4,
        "variables": [{"name": "blowup", "distribution": "lognormal", "params": {"mean": 0, "std": 1000}}],
    }
    response = client.post("/api/v1/simulations", json=spec)
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "NUMERIC_DEGENERACY"
