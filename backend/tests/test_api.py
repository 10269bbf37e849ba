"""
HTTP API Tests — health, analysis and the model feedback endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import rising_candles


@pytest.fixture
def client(settings):
    from aitrader.engines.analysis_engine import SignalEngine
    from aitrader.main import create_app
    from aitrader.store import ModelStore
    app = create_app(SignalEngine(ModelStore(settings=settings)))
    return TestClient(app)


def _raw(n):
    return [[c.timestamp, c.open, c.high, c.low, c.close, c.volume] for c in rising_candles(n)]


# ════════════════════════════════════════════════
#  HEALTH & MIDDLEWARE
# ════════════════════════════════════════════════


class TestHealth:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["persistent"] is False
        assert data["trained_samples"] == 0

    def test_request_id_header(self, client):
        resp = client.get("/v1/model", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"
        assert client.get("/v1/model").headers.get("X-Request-ID")

    def test_unknown_route(self, client):
        resp = client.get("/v1/nope")
        assert resp.status_code == 404
        assert resp.json()["error"] is True


# ════════════════════════════════════════════════
#  ANALYSIS
# ════════════════════════════════════════════════


class TestAnalyzeEndpoint:

    def test_analyze_uptrend(self, client):
        resp = client.post("/v1/analyze", json={"candles": _raw(40), "symbol": "BTCUSDT"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["ok"] is True
        assert data["direction"] == "Bullish"
        assert data["symbol"] == "BTCUSDT"
        assert data["chosen_target"] > data["price"] > data["chosen_stop"]

    def test_analyze_object_candles(self, client):
        candles = [
            {"time": c[0], "o": c[1], "h": c[2], "l": c[3], "c": c[4], "v": c[5]} for c in _raw(40)
        ]
        resp = client.post("/v1/analyze", json={"candles": candles, "mode": "aggressive"})
        assert resp.status_code == 200
        assert resp.json()["ok"] is True

    def test_analyze_scalar_news(self, client):
        resp = client.post("/v1/analyze", json={"candles": _raw(40), "news": 0.25})
        assert resp.status_code == 200
        data = resp.json()
        assert data["ok"] is True
        assert data["layers"]["news"] == pytest.approx(0.25)

    def test_analyze_short_series(self, client):
        resp = client.post("/v1/analyze", json={"candles": _raw(5)})
        assert resp.status_code == 200
        data = resp.json()
        assert data["reason"] == "insufficient_data"
        assert data["direction"] == "Neutral"

    def test_bad_mode_is_422(self, client):
        resp = client.post("/v1/analyze", json={"candles": [], "mode": "reckless"})
        assert resp.status_code == 422
        body = resp.json()
        assert body["detail"] == "Invalid trade mode"
        mode_errors = [e for e in body["errors"] if e["field"].endswith("mode")]
        assert mode_errors and "conservative" in mode_errors[0]["hint"]


# ════════════════════════════════════════════════
#  MODEL & FUSION
# ════════════════════════════════════════════════


class TestModelEndpoints:

    def test_train(self, client):
        resp = client.post("/v1/model/train", json={"samples": [
            {"features": [1.0, 0.5], "label": "bullish"},
            {"features": [0.0, 0.5], "label": 0},
        ]})
        assert resp.status_code == 200
        assert resp.json() == {"trained": 2, "trained_samples": 2}

    def test_train_requires_samples(self, client):
        resp = client.post("/v1/model/train", json={"samples": []})
        assert resp.status_code == 422
        assert resp.json()["detail"] == "Invalid training batch"

    def test_tune(self, client):
        resp = client.post("/v1/fusion/tune", json={"samples": [
            {"label": 1, "predicted": 0.4, "layers": {"indicator": 0.9}},
        ]})
        assert resp.status_code == 200
        assert sum(resp.json().values()) == pytest.approx(1.0)

    def test_outcome_round_trip(self, client):
        analysis = client.post("/v1/analyze", json={"candles": _raw(40)}).json()
        resp = client.post("/v1/outcome", json={"analysis": analysis, "label": "bullish"})
        assert resp.status_code == 200
        assert resp.json()["trained"] == 1
        stats = client.get("/v1/model").json()
        assert stats["trained_samples"] == 1
        assert stats["analyses"] == 1

    def test_outcome_bad_label_is_422(self, client):
        analysis = client.post("/v1/analyze", json={"candles": _raw(40)}).json()
        resp = client.post("/v1/outcome", json={"analysis": analysis, "label": "sideways-ish"})
        assert resp.status_code == 422
        body = resp.json()
        assert body["detail"] == "Invalid outcome label"
        assert body["errors"][0]["field"] == "body.label"
        assert "bullish" in body["errors"][0]["hint"]

    def test_reset(self, client):
        client.post("/v1/model/train", json={"samples": [{"features": [1.0], "label": 1}]})
        resp = client.delete("/v1/model")
        assert resp.status_code == 200
        assert resp.json()["trained_samples"] == 0
        assert resp.json()["model_dimension"] is None


# ════════════════════════════════════════════════
#  ERROR RESPONSES
# ════════════════════════════════════════════════


class TestErrorResponses:

    def test_nested_training_label(self, client):
        resp = client.post("/v1/model/train", json={"samples": [
            {"features": [1.0], "label": 1},
            {"features": [0.0], "label": "maybe"},
        ]})
        assert resp.status_code == 422
        body = resp.json()
        assert body["detail"] == "Invalid outcome label"
        assert body["errors"][0]["field"] == "body.samples.1.label"
        assert body["request_id"]

    def test_bad_news_context(self, client):
        resp = client.post("/v1/analyze", json={"candles": _raw(40), "news": {"impact": "extreme"}})
        assert resp.status_code == 422
        assert resp.json()["detail"] == "Invalid news context"

    def test_unhandled_error_is_500(self, settings):
        from aitrader.engines.analysis_engine import SignalEngine
        from aitrader.main import create_app
        from aitrader.store import ModelStore

        engine = SignalEngine(ModelStore(settings=settings))

        def boom(*args, **kwargs):
            raise RuntimeError("store offline")

        engine.reset = boom
        client = TestClient(create_app(engine), raise_server_exceptions=False)
        resp = client.delete("/v1/model", headers={"X-Request-ID": "req-500"})
        assert resp.status_code == 500
        body = resp.json()
        assert body["error"] is True
        assert body["detail"] == "Internal server error"
        assert "store offline" not in resp.text
