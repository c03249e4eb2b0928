"""Unit tests for SpoofController — session lifecycle and re-assertion.

Sinks are in-memory fakes.  The re-assertion timer is set to an hour so
it never fires on its own; tests drive ``_reassert_tick`` directly and use
``wait_idle`` to let the sink worker drain.
"""
from __future__ import annotations

import time
from unittest.mock import MagicMock

import pytest

from relocate.comms import EventBus, MemoryBroadcaster
from relocate.controller import SpoofController, SpoofState
from relocate.errors import InvalidCoordinate, NotActive, SinkError, SinkUnavailable
from relocate.geo import Coordinate
from relocate.sinks.base import InjectionSink, SpoofMode

PARIS = Coordinate(48.8566, 2.3522)
BERLIN = Coordinate(52.52, 13.405)


class FakeSink(InjectionSink):
    def __init__(self, mode=SpoofMode.DETECTABLE, available=True):
        self.mode = mode
        self.detectable = mode is SpoofMode.DETECTABLE
        self.available = available
        self.calls: list[tuple] = []
        self.fail_start = False
        self.fail_update = False
        self._running = False

    def is_available(self) -> bool:
        return self.available

    def start(self, coordinate):
        self.calls.append(("start", coordinate))
        if self.fail_start:
            raise SinkError("start failed")
        self._running = True

    def update(self, coordinate):
        self.calls.append(("update", coordinate))
        if self.fail_update:
            raise SinkError("update failed")

    def stop(self):
        self.calls.append(("stop",))
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def count(self, name):
        return sum(1 for c in self.calls if c[0] == name)


@pytest.fixture
def sinks():
    return {
        SpoofMode.DETECTABLE: FakeSink(SpoofMode.DETECTABLE),
        SpoofMode.UNDETECTABLE: FakeSink(SpoofMode.UNDETECTABLE),
    }


@pytest.fixture
def controller(sinks):
    c = SpoofController(sinks, broadcaster=MemoryBroadcaster(), reassert_interval=3600)
    yield c
    c.stop()


@pytest.mark.unit
class TestLifecycle:

    def test_starts_inactive(self, controller):
        assert controller.state is SpoofState.INACTIVE
        assert controller.target is None

    def test_start_activates(self, controller, sinks):
        session = controller.start(PARIS)
        assert controller.is_active
        assert controller.target == PARIS
        assert session.mode is SpoofMode.DETECTABLE
        assert sinks[SpoofMode.DETECTABLE].calls == [("start", PARIS)]

    def test_start_accepts_tuple(self, controller):
        controller.start((48.8566, 2.3522))
        assert controller.target == PARIS

    def test_invalid_coordinate_rejected_before_sink(self, controller, sinks):
        with pytest.raises(InvalidCoordinate):
            controller.start((95.0, 0.0))
        assert sinks[SpoofMode.DETECTABLE].calls == []
        assert not controller.is_active

    def test_stop_deactivates(self, controller, sinks):
        controller.start(PARIS)
        controller.stop()
        assert controller.state is SpoofState.INACTIVE
        assert sinks[SpoofMode.DETECTABLE].count("stop") == 1

    def test_stop_when_inactive_is_noop(self, controller, sinks):
        controller.stop()
        controller.stop()
        assert sinks[SpoofMode.DETECTABLE].calls == []

    def test_update_after_stop_raises_not_active(self, controller):
        controller.start(PARIS)
        controller.stop()
        with pytest.raises(NotActive):
            controller.update(BERLIN)

    def test_update_moves_target(self, controller, sinks):
        controller.start(PARIS)
        controller.update(BERLIN)
        assert controller.target == BERLIN
        assert ("update", BERLIN) in sinks[SpoofMode.DETECTABLE].calls

    def test_update_sink_error_propagates(self, controller, sinks):
        controller.start(PARIS)
        sinks[SpoofMode.DETECTABLE].fail_update = True
        with pytest.raises(SinkError):
            controller.update(BERLIN)
        assert controller.is_active

    def test_restart_replaces_session(self, controller, sinks):
        controller.start(PARIS)
        controller.start(BERLIN, SpoofMode.UNDETECTABLE)
        assert controller.mode is SpoofMode.UNDETECTABLE
        assert sinks[SpoofMode.DETECTABLE].count("stop") == 1
        assert sinks[SpoofMode.UNDETECTABLE].calls == [("start", BERLIN)]

    def test_mode_accepts_string(self, controller):
        controller.start(PARIS, "undetectable")
        assert controller.mode is SpoofMode.UNDETECTABLE


@pytest.mark.unit
class TestUnavailableSink:

    def test_unavailable_never_activates(self, controller, sinks):
        sinks[SpoofMode.UNDETECTABLE].available = False
        with pytest.raises(SinkUnavailable):
            controller.start(PARIS, SpoofMode.UNDETECTABLE)
        assert controller.state is SpoofState.INACTIVE
        assert sinks[SpoofMode.UNDETECTABLE].calls == []

    def test_fallback_to_detectable_succeeds(self, controller, sinks):
        sinks[SpoofMode.UNDETECTABLE].available = False
        with pytest.raises(SinkUnavailable):
            controller.start((48.8566, 2.3522), SpoofMode.UNDETECTABLE)
        controller.start((48.8566, 2.3522), SpoofMode.DETECTABLE)
        assert controller.is_active
        assert controller.mode is SpoofMode.DETECTABLE

    def test_failed_start_leaves_previous_session_stopped(self, controller, sinks):
        controller.start(PARIS)
        sinks[SpoofMode.UNDETECTABLE].available = False
        with pytest.raises(SinkUnavailable):
            controller.start(BERLIN, SpoofMode.UNDETECTABLE)
        assert not controller.is_active
        assert sinks[SpoofMode.DETECTABLE].count("stop") == 1

    def test_unknown_mode_leaves_session_untouched(self, controller, sinks):
        controller.start(PARIS)
        with pytest.raises(SinkUnavailable):
            controller.start(BERLIN, "teleport")
        assert controller.is_active
        assert controller.target == PARIS
        assert sinks[SpoofMode.DETECTABLE].count("stop") == 0

    def test_unconfigured_mode_leaves_session_untouched(self, sinks):
        c = SpoofController({SpoofMode.DETECTABLE: sinks[SpoofMode.DETECTABLE]},
                            reassert_interval=3600)
        c.start(PARIS)
        with pytest.raises(SinkUnavailable):
            c.start(BERLIN, SpoofMode.UNDETECTABLE)
        assert c.is_active
        assert c.target == PARIS
        c.stop()

    def test_invalid_coordinate_leaves_session_untouched(self, controller):
        controller.start(PARIS)
        with pytest.raises(InvalidCoordinate):
            controller.start((0.0, 200.0))
        assert controller.target == PARIS

    def test_sink_start_error(self, controller, sinks):
        sinks[SpoofMode.DETECTABLE].fail_start = True
        with pytest.raises(SinkError):
            controller.start(PARIS)
        assert not controller.is_active
        assert controller.status()["last_error"] == "start failed"

    def test_unexpected_sink_exception_wrapped(self, controller, sinks):
        sinks[SpoofMode.DETECTABLE].start = MagicMock(side_effect=OSError("adb died"))
        with pytest.raises(SinkError) as exc:
            controller.start(PARIS)
        assert isinstance(exc.value.__cause__, OSError)

    def test_unconfigured_mode(self):
        c = SpoofController({SpoofMode.DETECTABLE: FakeSink()}, reassert_interval=3600)
        with pytest.raises(SinkUnavailable):
            c.start(PARIS, SpoofMode.UNDETECTABLE)

    def test_available_modes(self, controller, sinks):
        sinks[SpoofMode.UNDETECTABLE].available = False
        assert controller.available_modes() == {"detectable": True, "undetectable": False}


@pytest.mark.unit
class TestReassertion:

    def test_tick_reasserts_current_target(self, controller, sinks):
        controller.start(PARIS)
        controller._reassert_tick()
        assert controller.wait_idle(2.0)
        assert sinks[SpoofMode.DETECTABLE].calls[-1] == ("update", PARIS)
        assert controller.status()["reassert_ok"] == 1

    def test_nonblocking_update_applied_by_worker(self, controller, sinks):
        controller.start(PARIS)
        controller.update(BERLIN, wait=False)
        assert controller.target == BERLIN
        assert controller.wait_idle(2.0)
        assert sinks[SpoofMode.DETECTABLE].calls[-1] == ("update", BERLIN)

    def test_reassert_failure_is_transient(self, controller, sinks):
        controller.start(PARIS)
        sinks[SpoofMode.DETECTABLE].fail_update = True
        controller._reassert_tick()
        assert controller.wait_idle(2.0)
        assert controller.is_active
        assert controller.status()["reassert_failures"] == 1

        sinks[SpoofMode.DETECTABLE].fail_update = False
        controller._reassert_tick()
        assert controller.wait_idle(2.0)
        assert controller.status()["reassert_ok"] == 1

    def test_no_sink_update_after_stop(self, controller, sinks):
        controller.start(PARIS)
        controller.stop()
        before = len(sinks[SpoofMode.DETECTABLE].calls)
        controller._reassert_tick()
        controller._apply_current()
        assert len(sinks[SpoofMode.DETECTABLE].calls) == before

    def test_late_request_from_replaced_session_dropped(self, controller, sinks):
        controller.start(PARIS)
        controller.start(BERLIN)
        stale = controller._generation - 1
        before = sinks[SpoofMode.DETECTABLE].count("update")
        controller._apply_current(stale)
        assert sinks[SpoofMode.DETECTABLE].count("update") == before
        controller._apply_current(controller._generation)
        assert sinks[SpoofMode.DETECTABLE].calls[-1] == ("update", BERLIN)

    def test_rejects_bad_interval(self, sinks):
        with pytest.raises(ValueError):
            SpoofController(sinks, reassert_interval=0)


@pytest.mark.unit
class TestPublication:

    def test_start_and_stop_publish(self, controller):
        published = controller.broadcaster
        controller.start(PARIS)
        assert published.current.active
        assert published.current.latitude == PARIS.latitude
        controller.stop()
        assert not published.current.active

    def test_update_publishes_new_target(self, controller):
        controller.start(PARIS)
        controller.update(BERLIN)
        assert controller.broadcaster.current.longitude == BERLIN.longitude

    def test_events(self, sinks):
        bus = EventBus()
        q = bus.subscribe()
        c = SpoofController(sinks, event_bus=bus, reassert_interval=3600)
        c.start(PARIS)
        c.update(BERLIN)
        c.stop()
        types = [q.get_nowait()["type"] for _ in range(q.qsize())]
        assert types == ["spoof_started", "spoof_updated", "spoof_stopped"]

    def test_status(self, controller):
        controller.start(PARIS)
        status = controller.status()
        assert status["state"] == "active"
        assert status["mode"] == "detectable"
        assert status["target"] == PARIS.to_dict()


@pytest.mark.integration
class TestRealTimers:

    def test_reassert_fires_on_its_own(self, sinks):
        c = SpoofController(sinks, reassert_interval=0.05)
        c.start(PARIS)
        deadline = time.monotonic() + 2.0
        while c.status()["reassert_ok"] < 3 and time.monotonic() < deadline:
            time.sleep(0.02)
        c.stop()
        assert c.status()["reassert_ok"] >= 3
        updates = sinks[SpoofMode.DETECTABLE].count("update")
        time.sleep(0.2)
        assert sinks[SpoofMode.DETECTABLE].count("update") == updates
