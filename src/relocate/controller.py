"""SpoofController — owns the spoof session and keeps it asserted.

Architecture
------------
One controller owns at most one SpoofSession.  ``start`` engages the sink
for the requested SpoofMode, publishes the position and arms two threads:

  1. spoof-reassert (PeriodicTask, default every 2 s) — requests a refresh.
     The consumer side's position cache goes stale or is invalidated by the
     platform, so the target is re-asserted even when it has not changed.

  2. spoof-sink (CoalescingWorker) — performs the actual ``sink.update``.
     Sink calls can block on a shell round trip; keeping them off the timer
     thread keeps the cadence steady, and coalescing means a slow call never
     queues up stale work.  The worker reads the target when it runs, so the
     sink only ever moves forward in time.

Locking:
    _state_lock  lifecycle transitions and target replacement
    _sink_lock   every call into the sink

Lock order is always state -> sink.  The worker only takes _sink_lock, and
checks the session generation under it, so once ``stop()`` holds _sink_lock
no stale update can reach the sink afterwards.

The RouteSimulator riding on the session registers itself via
``attach_simulator``; stopping the session stops the run.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Mapping

from loguru import logger

from .comms.broadcaster import MemoryBroadcaster, PositionBroadcaster
from .errors import NotActive, SinkError, SinkUnavailable
from .geo import Coordinate, CoordinateLike, as_coordinate
from .scheduler import CoalescingWorker, PeriodicTask
from .sinks.base import InjectionSink, SpoofMode

if TYPE_CHECKING:
    from .comms.event_bus import EventBus
    from .simulation.route import RouteSimulator

DEFAULT_REASSERT_INTERVAL = 2.0  # seconds


class SpoofState(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"


@dataclass
class SpoofSession:
    """The live injection.  Mutated in place by ``update``."""
    target: Coordinate
    mode: SpoofMode
    sink: InjectionSink
    generation: int
    state: SpoofState = SpoofState.ACTIVE
    started_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "mode": self.mode.value,
            "target": self.target.to_dict(),
            "started_at": self.started_at,
            "updated_at": self.updated_at,
        }


class SpoofController:
    """Active/inactive state machine over a set of injection sinks."""

    def __init__(
        self,
        sinks: Mapping[SpoofMode, InjectionSink],
        broadcaster: PositionBroadcaster | None = None,
        event_bus: EventBus | None = None,
        reassert_interval: float = DEFAULT_REASSERT_INTERVAL,
    ) -> None:
        if reassert_interval <= 0:
            raise ValueError(f"reassert_interval must be > 0, got {reassert_interval}")
        self._sinks = dict(sinks)
        self._broadcaster = broadcaster if broadcaster is not None else MemoryBroadcaster()
        self._event_bus = event_bus
        self._reassert_interval = reassert_interval

        self._state_lock = threading.RLock()
        self._sink_lock = threading.Lock()
        self._session: SpoofSession | None = None
        self._generation = 0
        self._reassert: PeriodicTask | None = None
        self._worker: CoalescingWorker | None = None
        self._simulator: RouteSimulator | None = None

        # Stats
        self._reassert_ok = 0
        self._reassert_failures = 0
        self._last_error = ""

    # -- Read access ---------------------------------------------------------

    @property
    def state(self) -> SpoofState:
        s = self._session
        return s.state if s is not None else SpoofState.INACTIVE

    @property
    def is_active(self) -> bool:
        return self.state is SpoofState.ACTIVE

    @property
    def session(self) -> SpoofSession | None:
        return self._session

    @property
    def target(self) -> Coordinate | None:
        s = self._session
        return s.target if s is not None else None

    @property
    def mode(self) -> SpoofMode | None:
        s = self._session
        return s.mode if s is not None else None

    @property
    def broadcaster(self) -> PositionBroadcaster:
        return self._broadcaster

    @property
    def reassert_interval(self) -> float:
        return self._reassert_interval

    def sink_for(self, mode: SpoofMode) -> InjectionSink:
        try:
            return self._sinks[SpoofMode(mode)]
        except (KeyError, ValueError):
            raise SinkUnavailable(f"No sink configured for mode {mode!r}") from None

    def available_modes(self) -> dict[str, bool]:
        """Mode -> is_available() for every configured sink."""
        out = {}
        for mode, sink in self._sinks.items():
            try:
                out[mode.value] = bool(sink.is_available())
            except Exception as e:
                logger.warning(f"Availability check for {mode.value} failed: {e}")
                out[mode.value] = False
        return out

    def status(self) -> dict:
        s = self._session
        return {
            "state": self.state.value,
            "mode": s.mode.value if s else None,
            "target": s.target.to_dict() if s else None,
            "started_at": s.started_at if s else None,
            "reassert_interval": self._reassert_interval,
            "reassert_ok": self._reassert_ok,
            "reassert_failures": self._reassert_failures,
            "last_error": self._last_error,
        }

    # -- Simulator wiring ----------------------------------------------------

    def attach_simulator(self, simulator: RouteSimulator) -> None:
        self._simulator = simulator

    # -- Lifecycle -----------------------------------------------------------

    def start(self, coordinate: CoordinateLike, mode: SpoofMode | str = SpoofMode.DETECTABLE) -> SpoofSession:
        """Begin asserting ``coordinate`` through the sink for ``mode``.

        An unknown or unconfigured ``mode`` and an invalid ``coordinate`` are
        rejected before anything changes, leaving an existing session
        untouched.  Past that point the existing session is torn down first,
        even when the new one then fails: on return the controller is Active,
        on SinkUnavailable from an unavailable sink or on SinkError it is
        Inactive.
        """
        coord = as_coordinate(coordinate)
        try:
            mode = SpoofMode(mode)
        except ValueError:
            raise SinkUnavailable(f"Unknown spoof mode {mode!r}") from None
        sink = self.sink_for(mode)

        with self._state_lock:
            if self._session is not None:
                logger.info(f"Replacing {self._session.mode.value} session with {mode.value}")
                self._teardown(reason="replaced")

            if not sink.is_available():
                self._last_error = f"{mode.value} sink unavailable"
                logger.warning(f"Spoof start refused: {mode.value} sink unavailable")
                raise SinkUnavailable(f"{mode.value} injection is not available on this device")

            with self._sink_lock:
                try:
                    sink.start(coord)
                except SinkError as e:
                    self._last_error = str(e)
                    logger.error(f"Spoof start failed: {e}")
                    raise
                except Exception as e:
                    self._last_error = str(e)
                    logger.exception("Spoof start failed")
                    raise SinkError(f"{mode.value} sink failed to start: {e}") from e

            self._generation += 1
            session = SpoofSession(target=coord, mode=mode, sink=sink, generation=self._generation)
            self._session = session
            self._last_error = ""
            self._broadcaster.publish(True, coord)

            self._worker = CoalescingWorker(partial(self._apply_current, self._generation),
                                            name="spoof-sink")
            self._worker.start()
            self._reassert = PeriodicTask(self._reassert_interval, self._reassert_tick,
                                          name="spoof-reassert")
            self._reassert.start()

        logger.info(f"Spoofing started ({mode.value}) at "
                    f"{coord.latitude:.6f}, {coord.longitude:.6f}")
        self._publish_event("spoof_started", session.to_dict())
        return session

    def update(self, coordinate: CoordinateLike, wait: bool = True) -> None:
        """Move the asserted target.

        ``wait=True`` calls the sink on the caller's thread and raises its
        SinkError.  ``wait=False`` replaces the target and hands the sink call
        to the worker; used by tick loops that must not block.
        """
        coord = as_coordinate(coordinate)
        with self._state_lock:
            session = self._session
            if session is None:
                raise NotActive("No active spoof session")
            session.target = coord
            session.updated_at = time.time()
            if not wait:
                if self._worker is not None:
                    self._worker.request()
                return
            with self._sink_lock:
                try:
                    session.sink.update(coord)
                except SinkError as e:
                    self._last_error = str(e)
                    raise
                self._broadcaster.publish(True, coord)
        self._publish_event("spoof_updated", {"target": coord.to_dict()})

    def stop(self) -> None:
        """End the session.  No-op when already inactive."""
        with self._state_lock:
            if self._session is None:
                self._stop_simulator()
                return
            self._teardown(reason="stopped")
        self._publish_event("spoof_stopped", {})

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait for queued sink work to drain.  True if idle (or inactive)."""
        worker = self._worker
        if worker is None:
            return True
        return worker.wait_idle(timeout)

    # -- Internals -----------------------------------------------------------

    def _teardown(self, reason: str) -> None:
        """Tear down the live session.  Caller holds _state_lock."""
        session = self._session
        if self._reassert is not None:
            self._reassert.cancel()
            self._reassert = None
        if self._worker is not None:
            self._worker.close()
            self._worker = None
        self._session = None
        self._stop_simulator()
        if session is None:
            return
        session.state = SpoofState.INACTIVE
        with self._sink_lock:
            try:
                session.sink.stop()
            except Exception as e:
                # Best effort: the session is over either way
                self._last_error = str(e)
                logger.warning(f"Sink stop failed ({session.mode.value}): {e}")
            self._broadcaster.publish(False, None)
        logger.info(f"Spoofing {reason} ({session.mode.value})")

    def _stop_simulator(self) -> None:
        sim = self._simulator
        if sim is not None:
            sim.on_session_stopped()

    def _reassert_tick(self) -> None:
        worker = self._worker
        if worker is not None:
            worker.request()

    def _apply_current(self, generation: int | None = None) -> None:
        """Worker body: push the session's current target into the sink.

        A worker belongs to one session generation; once that session is
        stopped or replaced its late requests are dropped.
        """
        with self._sink_lock:
            session = self._session
            if session is None or session.state is not SpoofState.ACTIVE:
                return
            if generation is not None and session.generation != generation:
                return
            target = session.target
            try:
                session.sink.update(target)
            except SinkError as e:
                # Transient; the next tick retries
                self._reassert_failures += 1
                self._last_error = str(e)
                logger.warning(f"Re-assertion failed, will retry: {e}")
                self._publish_event("spoof_reassert_failed", {"error": str(e)})
                return
            self._reassert_ok += 1
            self._broadcaster.publish(True, target)

    def _publish_event(self, event_type: str, data: dict) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event_type, data)
