"""Unit tests for the events router — /api/events polling over a real bus."""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.routers.events import router
from relocate.comms import EventBus, EventLog, MemoryBroadcaster
from relocate.controller import SpoofController
from relocate.geo import Coordinate
from relocate.sinks import InjectionSink, SpoofMode


def _make_app(event_log=None):
    app = FastAPI()
    app.include_router(router)
    if event_log is not None:
        app.state.event_log = event_log
    return app


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def client(bus):
    return TestClient(_make_app(EventLog(bus)))


@pytest.mark.unit
class TestEventsEndpoint:

    def test_empty(self, client):
        resp = client.get("/api/events")
        assert resp.status_code == 200
        assert resp.json() == {"events": [], "last_seq": 0}

    def test_controller_lifecycle_is_visible(self, bus, client):
        sink = MagicMock(spec=InjectionSink)
        sink.is_available.return_value = True
        controller = SpoofController({SpoofMode.DETECTABLE: sink},
                                     broadcaster=MemoryBroadcaster(),
                                     event_bus=bus, reassert_interval=3600)
        controller.start(Coordinate(48.8566, 2.3522))
        controller.stop()

        body = client.get("/api/events").json()
        assert [e["type"] for e in body["events"]] == ["spoof_started", "spoof_stopped"]
        assert body["last_seq"] == body["events"][-1]["seq"]

    def test_since_and_type_filter(self, bus, client):
        bus.publish("spoof_started")
        bus.publish("route_started")
        bus.publish("route_progress")
        body = client.get("/api/events", params={"since": 2, "type": "route_"}).json()
        assert [e["type"] for e in body["events"]] == ["route_progress"]
        assert body["last_seq"] == 3

    def test_since_without_news_echoes_cursor(self, bus, client):
        bus.publish("spoof_started")
        assert client.get("/api/events", params={"since": 1}).json()["last_seq"] == 1

    def test_negative_since_rejected(self, client):
        assert client.get("/api/events", params={"since": -1}).status_code == 422

    def test_latest(self, bus, client):
        assert client.get("/api/events/latest").json() is None
        bus.publish("route_completed", {"cursor_index": 4})
        latest = client.get("/api/events/latest", params={"type": "route_"}).json()
        assert latest["type"] == "route_completed"
        assert latest["data"] == {"cursor_index": 4}

    def test_missing_log(self):
        resp = TestClient(_make_app()).get("/api/events")
        assert resp.status_code == 503
