"""Unit tests for the route router — /api/route/*.

The simulator's tick interval is an hour so no tick fires during a test.
"""
from __future__ import annotations

import math
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.routers.route import SpeedFields, router
from relocate.controller import SpoofController
from relocate.errors import RouteUnavailable
from relocate.geo import EARTH_RADIUS_M
from relocate.routing import TravelMode
from relocate.simulation import RouteSimulator
from relocate.sinks import InjectionSink, SpoofMode

ORIGIN = (48.8566, 2.3522)


def north(point, meters):
    return (point[0] + math.degrees(meters / EARTH_RADIUS_M), point[1])


def _make_app(simulator=None):
    app = FastAPI()
    app.include_router(router)
    if simulator is not None:
        app.state.simulator = simulator
    return app


@pytest.fixture
def controller():
    sink = MagicMock(spec=InjectionSink)
    sink.is_available.return_value = True
    c = SpoofController({SpoofMode.DETECTABLE: sink}, reassert_interval=3600)
    yield c
    c.stop()


@pytest.fixture
def source():
    src = MagicMock()
    src.fetch_path.return_value = [ORIGIN, north(ORIGIN, 500.0), north(ORIGIN, 1000.0)]
    return src


@pytest.fixture
def simulator(controller, source):
    sim = RouteSimulator(controller, route_source=source, tick_interval=3600)
    yield sim
    sim.stop()


@pytest.fixture
def client(simulator):
    return TestClient(_make_app(simulator))


PATH = [list(ORIGIN), list(north(ORIGIN, 200.0))]


@pytest.mark.unit
class TestSpeedFields:

    def test_mps_wins(self):
        assert SpeedFields(speed_mps=3.0, speed_kmh=100.0).resolve_speed() == 3.0

    def test_kmh(self):
        assert SpeedFields(speed_kmh=36.0).resolve_speed() == pytest.approx(10.0)

    def test_defaults_per_travel_mode(self):
        assert SpeedFields().resolve_speed(TravelMode.DRIVING) == pytest.approx(50 / 3.6)
        assert SpeedFields().resolve_speed(TravelMode.WALKING) == pytest.approx(5 / 3.6)


@pytest.mark.unit
class TestRouteEndpoints:

    def test_no_simulator(self):
        assert TestClient(_make_app()).get("/api/route/status").status_code == 503

    def test_status_idle(self, client):
        assert client.get("/api/route/status").json() == {
            "status": "idle", "run": None, "last_error": ""}

    def test_start(self, client, controller):
        resp = client.post("/api/route/start", json={"path": PATH, "speed_kmh": 36})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "running"
        assert data["speed_mps"] == pytest.approx(10.0)
        assert controller.is_active

    def test_start_short_path(self, client):
        resp = client.post("/api/route/start", json={"path": [list(ORIGIN)]})
        assert resp.status_code == 422

    def test_start_bad_speed(self, client):
        resp = client.post("/api/route/start", json={"path": PATH, "speed_mps": -1})
        assert resp.status_code == 422

    def test_start_bad_direction(self, client):
        resp = client.post("/api/route/start", json={"path": PATH, "direction": "sideways"})
        assert resp.status_code == 422

    def test_simulate(self, client, source):
        resp = client.post("/api/route/simulate", json={
            "waypoints": [list(ORIGIN), list(north(ORIGIN, 1000.0))],
            "travel_mode": "walking",
            "direction": "loop",
        })
        assert resp.status_code == 200
        assert resp.json()["direction"] == "loop"
        assert resp.json()["last_index"] == 2
        assert source.fetch_path.call_args[0][1] is TravelMode.WALKING

    def test_simulate_route_unavailable(self, client, source):
        source.fetch_path.side_effect = RouteUnavailable("OSRM down")
        resp = client.post("/api/route/simulate", json={
            "waypoints": [list(ORIGIN), list(north(ORIGIN, 1000.0))]})
        assert resp.status_code == 502
        assert client.get("/api/route/status").json()["status"] == "failed"

    def test_pause_resume(self, client):
        client.post("/api/route/start", json={"path": PATH})
        assert client.post("/api/route/pause").json()["status"] == "paused"
        assert client.post("/api/route/resume").json()["status"] == "running"

    def test_pause_without_run(self, client):
        assert client.post("/api/route/pause").status_code == 409

    def test_speed(self, client):
        client.post("/api/route/start", json={"path": PATH})
        resp = client.post("/api/route/speed", json={"speed_mps": 4.0})
        assert resp.json()["speed_mps"] == 4.0

    def test_speed_requires_value(self, client):
        client.post("/api/route/start", json={"path": PATH})
        assert client.post("/api/route/speed", json={}).status_code == 422

    def test_stop_keeps_session(self, client, controller):
        client.post("/api/route/start", json={"path": PATH})
        assert client.post("/api/route/stop").json()["status"] == "idle"
        assert controller.is_active

    def test_drive_back_inactive(self, client):
        resp = client.post("/api/route/drive-back", json={"lat": ORIGIN[0], "lng": ORIGIN[1]})
        assert resp.status_code == 409

    def test_drive_back_already_home(self, client, controller, source):
        controller.start(ORIGIN)
        near = north(ORIGIN, 10.0)
        resp = client.post("/api/route/drive-back", json={"lat": near[0], "lng": near[1]})
        assert resp.json() == {"status": "arrived", "run": None}
        source.fetch_path.assert_not_called()
        assert not controller.is_active

    def test_drive_back_starts_run(self, client, controller):
        controller.start(ORIGIN)
        home = north(ORIGIN, 1000.0)
        resp = client.post("/api/route/drive-back", json={"lat": home[0], "lng": home[1]})
        data = resp.json()
        assert data["status"] == "running"
        assert data["run"]["drive_back"] is True
