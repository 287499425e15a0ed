import json
from datetime import datetime

import httpx
import pytest

from promo_analytics.client import (
    PromoBudgetExceededError,
    PromoClient,
    PromoClientError,
    PromoConfig,
    PromoConnectionError,
    PromoInsufficientDataError,
    PromoInvalidInputError,
    PromoNotTrainedError,
    PromoNumericDegeneracyError,
)
from promo_analytics.core import TimeSeriesPoint


def make_client(handler, api_key="secret"):
    config = PromoConfig(base_url="http://promo.test", api_key=api_key, timeout=5.0)
    return PromoClient(config, transport=httpx.MockTransport(handler))


def error_handler(status, detail):
    def handler(request):
        return httpx.Response(status, json={"detail": detail})
    return handler


def test_forecast_payload_and_headers():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["key"] = request.headers.get("X-API-Key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"forecasts": [{"predicted_value": 1.0}]})

    series = [
        TimeSeriesPoint(timestamp=datetime(2024, 1, 1), value=10.0),
        {"timestamp": datetime(2024, 1, 2), "value": 12.0},
    ]
    with make_client(handler) as client:
        forecasts = client.forecast(series, horizon=3, model="arima")

    assert forecasts == [{"predicted_value": 1.0}]
    assert seen["path"] == "/api/v1/forecast"
    assert seen["key"] == "secret"
    assert seen["body"]["horizon"] == 3
    assert seen["body"]["model"] == "arima"
    assert [p["timestamp"] for p in seen["body"]["series"]] == ["2024-01-01T00:00:00", "2024-01-02T00:00:00"]


def test_no_api_key_header_without_key():
    def handler(request):
        assert "X-API-Key" not in request.headers
        return httpx.Response(200, json={"status": "healthy"})

    assert make_client(handler, api_key=None).is_available()


@pytest.mark.parametrize(
    "status, detail, error_cls",
    [
        (400, {"code": "INVALID_INPUT", "message": "bad horizon", "details": {}}, PromoInvalidInputError),
        (409, {"code": "NOT_TRAINED", "message": "train first", "details": {}}, PromoNotTrainedError),
        (413, {"code": "COMPUTE_BUDGET_EXCEEDED", "message": "too many", "details": {}}, PromoBudgetExceededError),
        (422, {"code": "INSUFFICIENT_DATA", "message": "too short", "details": {}}, PromoInsufficientDataError),
        (422, {"code": "NUMERIC_DEGENERACY", "message": "overflow", "details": {}}, PromoNumericDegeneracyError),
        (422, [{"loc": ["body", "series"], "msg": "Field required"}], PromoInvalidInputError),
    ],
)
def test_error_mapping(status, detail, error_cls):
    client = make_client(error_handler(status, detail))
    with pytest.raises(error_cls) as exc:
        client.simulate({"type": "MARKET_SCENARIO", "base_value": 1})
    assert exc.value.status_code == status


def test_error_fields_from_detail():
    detail = {"code": "NOT_TRAINED", "message": "Optimizer has not been trained", "details": {"kind": "optimizer"}}
    client = make_client(error_handler(409, detail))
    with pytest.raises(PromoNotTrainedError) as exc:
        client.optimize("Beverages", "Supermarket", "PERCENTAGE", 15, 14)
    assert exc.value.code == "NOT_TRAINED"
    assert exc.value.message == "Optimizer has not been trained"
    assert exc.value.details == {"kind": "optimizer"}


def test_unmapped_status_is_base_error():
    client = make_client(error_handler(500, "boom"))
    with pytest.raises(PromoClientError) as exc:
        client.health()
    assert type(exc.value) is PromoClientError
    assert exc.value.code == "HTTP_ERROR"


def test_connection_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = make_client(handler)
    with pytest.raises(PromoConnectionError) as exc:
        client.health()
    assert exc.value.code == "CONNECTION_ERROR"
    assert not client.is_available()


def test_response_unwrapping():
    def handler(request):
        bodies = {
            "/api/v1/anomalies/detect": {"verdicts": [{"is_anomaly": True}], "anomalies": 1},
            "/api/v1/optimizer/anomalies": {"anomalies": []},
            "/api/v1/optimizer/performance": {"forecasts": [{"expected_roi": 1.5}]},
        }
        return httpx.Response(200, json=bodies[request.url.path])

    client = make_client(handler)
    assert client.detect_anomalies([{"timestamp": "2024-06-01T12:00:00", "metric": "revenue", "value": -1}]) == [
        {"is_anomaly": True}
    ]
    assert client.promotion_anomalies([]) == []
    assert client.promotion_performance([], []) == [{"expected_roi": 1.5}]


def test_config_from_environment(monkeypatch):
    monkeypatch.setenv("PROMO_API_URL", "http://analytics:9000")
    monkeypatch.setenv("PROMO_API_KEY", "env-key")
    config = PromoConfig()
    assert config.base_url == "http://analytics:9000"
    assert config.api_key == "env-key"


def test_serialize_rejects_unknown_types():
    client = make_client(lambda request: httpx.Response(200, json={}))
    with pytest.raises(TypeError):
        client.analyze_trend([42])


def test_degenerate_simulation_keeps_its_error_kind():
    detail = {"code": "NUMERIC_DEGENERACY", "message": "Simulation produced 3 non-finite outcomes", "details": {"non_finite": 3}}
    client = make_client(error_handler(422, detail))
    with pytest.raises(PromoNumericDegeneracyError) as exc:
        client.simulate({"type": "PROMOTION_IMPACT", "base_value": 1})
    assert not isinstance(exc.value, PromoInvalidInputError)
    assert exc.value.details == {"non_finite": 3}
