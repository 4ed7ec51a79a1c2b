"""Tests for the REST API."""

from unittest.mock import AsyncMock, patch

import numpy as np
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api import router
from app.config import Settings
from app.main import app as main_app
from app.services.engine_service import EngineService
from app.storage import signal_cache
from core.models.tick import Tick

INSTRUMENT = "frxEURUSD"
T0 = 1704067200.0


def make_service() -> EngineService:
    settings = Settings(instruments=[INSTRUMENT], redis_enabled=False, max_feed_lag=None)
    return EngineService(settings)


def make_client(service: EngineService | None) -> TestClient:
    app = FastAPI()
    app.include_router(router, prefix="/api")
    app.state.engine = service
    return TestClient(app)


@pytest.fixture
def service():
    service = make_service()
    worker = service.worker(INSTRUMENT)
    for i, price in enumerate(1.1 + np.arange(300) * 0.0001):
        worker.process(Tick(INSTRUMENT, float(price), T0 + i))
    return service


class TestStatusRoutes:
    def test_system_status(self, service):
        response = make_client(service).get("/api/status")
        assert response.status_code == 200
        data = response.json()
        assert data["instruments"] == [INSTRUMENT]
        assert data["warmup_ticks"] == 201
        assert data["min_confidence"] == 0.75
        assert data["pending_signals"] == 2

    def test_instrument_status(self, service):
        response = make_client(service).get(f"/api/status/{INSTRUMENT}")
        assert response.status_code == 200
        data = response.json()
        assert data["tick_count"] == 300
        assert data["signals_emitted"] == 2

    def test_unknown_instrument(self, service):
        assert make_client(service).get("/api/status/frxXAUUSD").status_code == 404

    def test_all_instruments(self, service):
        data = make_client(service).get("/api/status/instruments").json()
        assert [s["instrument"] for s in data] == [INSTRUMENT]

    def test_engine_not_running(self):
        assert make_client(None).get("/api/status").status_code == 503


class TestSignalRoutes:
    def test_recent_signals(self, service):
        data = make_client(service).get("/api/signals").json()
        assert len(data) == 2
        assert all(s["direction"] == "up" for s in data)
        assert data[0]["created_at"] > data[1]["created_at"]

    def test_limit_and_filter(self, service):
        client = make_client(service)
        assert len(client.get("/api/signals", params={"limit": 1}).json()) == 1
        assert client.get("/api/signals", params={"instrument": "frxGBPUSD"}).json() == []

    def test_signal_by_id(self, service):
        signal = service.recent_signals()[0]
        response = make_client(service).get(f"/api/signals/{signal.id}")
        assert response.status_code == 200
        assert response.json()["id"] == signal.id
        assert response.json()["strength"] == signal.strength_label

    def test_signal_not_found(self, service):
        assert make_client(service).get("/api/signals/missing").status_code == 404


class TestTickRoutes:
    def test_post_ticks(self):
        service = make_service()
        payload = [
            {"instrument": INSTRUMENT, "price": 1.1, "timestamp": T0},
            {"instrument": INSTRUMENT, "price": 1.1001, "timestamp": T0 + 1, "bid": 1.1, "ask": 1.1002},
            {"instrument": "frxXAUUSD", "price": 2000.0, "timestamp": T0},
        ]
        response = make_client(service).post("/api/ticks", json=payload)

        assert response.status_code == 200
        assert response.json() == {"queued": 2, "ignored": 1}
        assert service.worker(INSTRUMENT).queue_depth == 2
        assert service.unknown_ticks == 1

    def test_invalid_payload(self):
        response = make_client(make_service()).post("/api/ticks", json=[{"instrument": INSTRUMENT}])
        assert response.status_code == 422


class TestOutcomeRoutes:
    def test_outcome_recorded(self):
        settings = Settings(instruments=[INSTRUMENT], redis_enabled=False, max_feed_lag=None, account_balance=1000)
        service = EngineService(settings)
        client = make_client(service)

        response = client.post("/api/outcomes", json={"signal_id": "abc", "profit": -25.0})

        assert response.status_code == 200
        assert response.json() == {"recorded": True}
        assert service.engine.sizer.balance == 975.0
        assert service.engine.sizer.consecutive_losses == 1

    def test_outcome_without_sizer(self):
        response = make_client(make_service()).post("/api/outcomes", json={"profit": 5.0})
        assert response.json() == {"recorded": False}

    def test_outcome_requires_profit(self):
        assert make_client(make_service()).post("/api/outcomes", json={}).status_code == 422


class TestHistoryRoutes:
    def test_history_without_redis(self, service):
        response = make_client(service).get(f"/api/instruments/{INSTRUMENT}/signals")
        assert response.status_code == 200
        assert response.json() == []

    def test_history_from_store(self, service):
        stored = service.recent_signals()
        with patch.object(signal_cache, "get_instrument_signals", new_callable=AsyncMock, return_value=stored) as mock_get:
            data = make_client(service).get(
                f"/api/instruments/{INSTRUMENT}/signals", params={"limit": 5}
            ).json()

        assert [s["id"] for s in data] == [s.id for s in stored]
        mock_get.assert_awaited_once_with(INSTRUMENT, limit=5)

    def test_history_unknown_instrument(self, service):
        assert make_client(service).get("/api/instruments/frxXAUUSD/signals").status_code == 404


class TestHealth:
    def test_health_before_startup(self):
        # Lifespan is not entered outside a `with` block, so no engine is attached
        data = TestClient(main_app).get("/health").json()
        assert data == {"status": "starting", "cache": False}

    def test_root(self):
        assert TestClient(main_app).get("/").json()["docs"] == "/docs"
