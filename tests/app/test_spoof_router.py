"""Unit tests for the spoof router — /api/spoof/*.

The router reads the controller from ``app.state``; tests hang a real
SpoofController over mocked sinks there.
"""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import ValidationError

from app.routers.spoof import PositionRequest, StartRequest, router
from relocate.comms import MemoryBroadcaster
from relocate.controller import SpoofController
from relocate.errors import SinkError
from relocate.sinks import InjectionSink, SpoofMode


def _sink(available=True):
    sink = MagicMock(spec=InjectionSink)
    sink.is_available.return_value = available
    return sink


def _make_app(controller=None, published=None):
    app = FastAPI()
    app.include_router(router)
    if controller is not None:
        app.state.controller = controller
    if published is not None:
        app.state.published = published
    return app


@pytest.fixture
def sinks():
    return {SpoofMode.DETECTABLE: _sink(), SpoofMode.UNDETECTABLE: _sink(available=False)}


@pytest.fixture
def published():
    return MemoryBroadcaster()


@pytest.fixture
def controller(sinks, published):
    c = SpoofController(sinks, broadcaster=published, reassert_interval=3600)
    yield c
    c.stop()


@pytest.fixture
def client(controller, published):
    return TestClient(_make_app(controller, published))


@pytest.mark.unit
class TestSpoofModels:

    def test_position_request(self):
        r = PositionRequest(lat=48.8566, lng=2.3522)
        assert r.accuracy is None
        assert r.coordinate().accuracy == 10.0

    def test_accuracy_must_be_positive(self):
        with pytest.raises(ValidationError):
            PositionRequest(lat=1.0, lng=1.0, accuracy=0)

    def test_start_request_mode(self):
        assert StartRequest(lat=1, lng=2, mode="undetectable").mode is SpoofMode.UNDETECTABLE

    def test_start_request_bad_mode(self):
        with pytest.raises(ValidationError):
            StartRequest(lat=1, lng=2, mode="stealth")


@pytest.mark.unit
class TestSpoofEndpoints:

    def test_no_controller(self):
        resp = TestClient(_make_app()).get("/api/spoof/status")
        assert resp.status_code == 503

    def test_status_inactive(self, client):
        data = client.get("/api/spoof/status").json()
        assert data["state"] == "inactive"
        assert data["published"]["is_active"] is False

    def test_start(self, client, controller):
        resp = client.post("/api/spoof/start", json={"lat": 48.8566, "lng": 2.3522})
        assert resp.status_code == 200
        assert resp.json()["state"] == "active"
        assert resp.json()["mode"] == "detectable"
        assert controller.is_active

    def test_start_published(self, client):
        client.post("/api/spoof/start", json={"lat": 48.8566, "lng": 2.3522})
        assert client.get("/api/spoof/status").json()["published"]["is_active"] is True

    def test_start_out_of_range(self, client, controller):
        resp = client.post("/api/spoof/start", json={"lat": 91.0, "lng": 0.0})
        assert resp.status_code == 422
        assert not controller.is_active

    def test_start_unavailable_mode(self, client, controller):
        resp = client.post("/api/spoof/start",
                           json={"lat": 48.8566, "lng": 2.3522, "mode": "undetectable"})
        assert resp.status_code == 503
        assert not controller.is_active

    def test_start_sink_failure(self, client, sinks):
        sinks[SpoofMode.DETECTABLE].start.side_effect = SinkError("gps provider refused")
        resp = client.post("/api/spoof/start", json={"lat": 48.8566, "lng": 2.3522})
        assert resp.status_code == 502
        assert "gps provider refused" in resp.json()["detail"]

    def test_update_inactive(self, client):
        resp = client.post("/api/spoof/update", json={"lat": 1.0, "lng": 1.0})
        assert resp.status_code == 409

    def test_update(self, client, controller):
        client.post("/api/spoof/start", json={"lat": 48.8566, "lng": 2.3522})
        resp = client.post("/api/spoof/update", json={"lat": 52.52, "lng": 13.405, "accuracy": 5})
        assert resp.status_code == 200
        assert resp.json()["target"] == {"lat": 52.52, "lng": 13.405, "accuracy": 5.0}

    def test_stop(self, client, controller):
        client.post("/api/spoof/start", json={"lat": 48.8566, "lng": 2.3522})
        resp = client.post("/api/spoof/stop")
        assert resp.json() == {"state": "inactive"}
        assert not controller.is_active

    def test_stop_when_inactive(self, client):
        assert client.post("/api/spoof/stop").status_code == 200

    def test_modes(self, client):
        assert client.get("/api/spoof/modes").json() == {
            "detectable": True, "undetectable": False}
