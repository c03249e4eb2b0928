"""RouteSimulator — walks the spoofed position along a route path.

Each tick (default 1 s) the run gets a distance budget of
``residual + speed * dt`` and spends it hopping from vertex to vertex:

    while budget > 0:
        next = cursor + step
        off the end?  Loop flips direction; Forward/Backward complete
        segment <= budget?  consume it and advance
        otherwise keep the budget as the residual for the next tick

The cursor only ever rests on path vertices.  Carrying the residual over
means a segment longer than one tick's travel is still crossed after the
right number of ticks (100 m at 22.2 m/s: the fifth tick).  With
``interpolate=True`` the asserted position additionally slides along the
pending segment by ``residual / segment``; cursor accounting is the same.

After advancing, the position is handed to ``SpoofController.update`` with
``wait=False`` so a slow sink never stalls the tick thread.

Drive back: a run with an arrival anchor ends the whole spoof session once
the position comes within the arrival threshold (default 50 m) of the
anchor, or when it reaches the end of its path.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Sequence

from loguru import logger

from relocate.errors import InvalidSpeed, NotActive, PathTooShort, RouteUnavailable
from relocate.geo import (
    Coordinate,
    CoordinateLike,
    as_coordinate,
    distance_meters,
    interpolate,
    path_length_meters,
)
from relocate.routing.base import RouteSource, TravelMode
from relocate.scheduler import PeriodicTask
from relocate.sinks.base import SpoofMode

if TYPE_CHECKING:
    from relocate.comms.event_bus import EventBus
    from relocate.controller import SpoofController

DEFAULT_TICK_INTERVAL = 1.0          # seconds
DEFAULT_ARRIVAL_THRESHOLD_M = 50.0

RoutePath = tuple  # tuple[Coordinate, ...], length >= 2


class Direction(str, Enum):
    FORWARD = "forward"
    BACKWARD = "backward"
    LOOP = "loop"


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


def kmh_to_mps(kmh: float) -> float:
    return kmh * 1000.0 / 3600.0


def validate_path(path: Iterable[CoordinateLike]) -> RoutePath:
    points = tuple(as_coordinate(p) for p in path)
    if len(points) < 2:
        raise PathTooShort(f"Route path needs at least 2 points, got {len(points)}")
    return points


def validate_speed(speed_mps: float) -> float:
    try:
        speed = float(speed_mps)
    except (TypeError, ValueError):
        raise InvalidSpeed(f"Speed must be a number, got {speed_mps!r}") from None
    if not math.isfinite(speed) or speed <= 0:
        raise InvalidSpeed(f"Speed must be > 0 m/s, got {speed_mps!r}")
    return speed


@dataclass
class SimulationRun:
    """Cursor state of one traversal.  ``advance`` is the per-tick step."""

    path: RoutePath
    speed_mps: float
    direction: Direction = Direction.FORWARD
    arrival_anchor: Coordinate | None = None
    arrival_threshold: float = DEFAULT_ARRIVAL_THRESHOLD_M
    run_id: int = 0
    cursor_index: int = 0
    residual_distance: float = 0.0
    status: RunStatus = RunStatus.IDLE
    forward: bool = True
    ticks: int = 0
    distance_travelled: float = 0.0
    total_distance: float = field(default=0.0)

    def __post_init__(self) -> None:
        if self.direction is Direction.BACKWARD:
            self.forward = False
            self.cursor_index = len(self.path) - 1
        self.total_distance = path_length_meters(self.path)

    @property
    def last_index(self) -> int:
        return len(self.path) - 1

    @property
    def drive_back(self) -> bool:
        return self.arrival_anchor is not None

    @property
    def vertex(self) -> Coordinate:
        return self.path[self.cursor_index]

    @property
    def progress(self) -> float:
        return self.cursor_index / self.last_index

    def _at_terminal(self) -> bool:
        if self.direction is Direction.LOOP:
            return False
        return self.cursor_index == (self.last_index if self.forward else 0)

    def advance(self, dt: float) -> None:
        """Spend ``speed * dt`` (plus the residual) walking the path."""
        budget = self.residual_distance + self.speed_mps * dt
        moved_since_flip = True
        while budget > 0:
            step = 1 if self.forward else -1
            nxt = self.cursor_index + step
            if nxt < 0 or nxt > self.last_index:
                if self.direction is Direction.LOOP:
                    if not moved_since_flip:
                        # Zero-length path: nowhere to go in either direction
                        budget = 0.0
                        break
                    self.forward = not self.forward
                    moved_since_flip = False
                    continue
                self.status = RunStatus.COMPLETED
                budget = 0.0
                break
            segment = distance_meters(self.path[self.cursor_index], self.path[nxt])
            if segment > budget:
                break
            budget -= segment
            self.distance_travelled += segment
            self.cursor_index = nxt
            if segment > 0:
                moved_since_flip = True
        if self._at_terminal():
            self.status = RunStatus.COMPLETED
            budget = 0.0
        self.residual_distance = budget

    def position(self, interpolated: bool = False) -> Coordinate:
        here = self.vertex
        if not interpolated or self.residual_distance <= 0:
            return here
        nxt = self.cursor_index + (1 if self.forward else -1)
        if nxt < 0 or nxt > self.last_index:
            return here
        segment = distance_meters(here, self.path[nxt])
        if segment <= 0:
            return here
        return interpolate(here, self.path[nxt], self.residual_distance / segment)

    def arrived(self, position: Coordinate) -> bool:
        if self.arrival_anchor is None:
            return False
        return distance_meters(position, self.arrival_anchor) < self.arrival_threshold

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "direction": self.direction.value,
            "speed_mps": self.speed_mps,
            "cursor_index": self.cursor_index,
            "last_index": self.last_index,
            "progress": self.progress,
            "residual_distance": self.residual_distance,
            "distance_travelled": self.distance_travelled,
            "total_distance": self.total_distance,
            "ticks": self.ticks,
            "drive_back": self.drive_back,
            "position": self.vertex.to_dict(),
        }


class RouteSimulator:
    """Drives a SpoofController along a path, one tick at a time."""

    def __init__(
        self,
        controller: SpoofController,
        route_source: RouteSource | None = None,
        event_bus: EventBus | None = None,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        arrival_threshold: float = DEFAULT_ARRIVAL_THRESHOLD_M,
        interpolate: bool = False,
        default_mode: SpoofMode = SpoofMode.DETECTABLE,
    ) -> None:
        if tick_interval <= 0:
            raise ValueError(f"tick_interval must be > 0, got {tick_interval}")
        if arrival_threshold < 0:
            raise ValueError(f"arrival_threshold must be >= 0, got {arrival_threshold}")
        self._controller = controller
        self._route_source = route_source
        self._event_bus = event_bus
        self._tick_interval = tick_interval
        self._arrival_threshold = arrival_threshold
        self._interpolate = interpolate
        self._default_mode = SpoofMode(default_mode)

        self._lock = threading.RLock()
        self._run: SimulationRun | None = None
        self._task: PeriodicTask | None = None
        self._run_seq = 0
        self._last_outcome = RunStatus.IDLE
        self._last_run: SimulationRun | None = None
        self._last_error = ""

        controller.attach_simulator(self)

    # -- Read access ---------------------------------------------------------

    @property
    def run(self) -> SimulationRun | None:
        return self._run

    @property
    def last_run(self) -> SimulationRun | None:
        """The most recent run that completed."""
        return self._last_run

    @property
    def status(self) -> RunStatus:
        run = self._run
        return run.status if run is not None else self._last_outcome

    @property
    def tick_interval(self) -> float:
        return self._tick_interval

    @property
    def arrival_threshold(self) -> float:
        return self._arrival_threshold

    def snapshot(self) -> dict:
        run = self._run
        return {
            "status": self.status.value,
            "run": run.to_dict() if run is not None else None,
            "last_error": self._last_error,
        }

    # -- Starting runs -------------------------------------------------------

    def start(
        self,
        path: Sequence[CoordinateLike],
        speed_mps: float,
        direction: Direction | str = Direction.FORWARD,
        mode: SpoofMode | str | None = None,
        arrival_anchor: CoordinateLike | None = None,
    ) -> SimulationRun:
        """Begin a run over ``path``, replacing any current run.

        Starts a spoof session at the run's first position when none is
        active; otherwise moves the existing session there.  A ``mode``
        different from the active session's restarts the session in that
        mode; ``None`` keeps whatever is active.
        """
        points = validate_path(path)
        speed = validate_speed(speed_mps)
        direction = Direction(direction)
        anchor = as_coordinate(arrival_anchor) if arrival_anchor is not None else None

        self.stop()
        with self._lock:
            self._run_seq += 1
            run = SimulationRun(
                path=points,
                speed_mps=speed,
                direction=direction,
                arrival_anchor=anchor,
                arrival_threshold=self._arrival_threshold,
                run_id=self._run_seq,
            )

        first = run.vertex
        switch_mode = mode is not None and mode != self._controller.mode
        if self._controller.is_active and not switch_mode:
            self._controller.update(first)
        else:
            self._controller.start(first, mode or self._default_mode)

        with self._lock:
            run.status = RunStatus.RUNNING
            self._run = run
            self._last_error = ""
            self._arm()
        logger.info(
            f"Route run {run.run_id} started: {len(points)} points, "
            f"{run.total_distance:.0f} m, {speed:.1f} m/s, {direction.value}"
            + (" (drive back)" if anchor is not None else "")
        )
        self._publish_event("route_started", run.to_dict())
        return run

    def simulate(
        self,
        waypoints: Sequence[CoordinateLike],
        speed_mps: float,
        direction: Direction | str = Direction.FORWARD,
        travel_mode: TravelMode | str = TravelMode.DRIVING,
        mode: SpoofMode | str | None = None,
    ) -> SimulationRun:
        """Fetch a path through ``waypoints`` and start a run over it."""
        points = validate_path(waypoints)
        speed = validate_speed(speed_mps)
        path = self._fetch(points, TravelMode(travel_mode))
        return self.start(path, speed, direction, mode=mode)

    def drive_back(
        self,
        real_position: CoordinateLike,
        speed_mps: float,
        travel_mode: TravelMode | str = TravelMode.DRIVING,
    ) -> SimulationRun | None:
        """Drive from the spoofed position back to ``real_position``.

        When already within the arrival threshold there is nothing to drive:
        the session is stopped directly and None is returned.
        """
        anchor = as_coordinate(real_position)
        speed = validate_speed(speed_mps)
        current = self._controller.target
        if current is None:
            raise NotActive("Drive back needs an active spoof session")

        gap = distance_meters(current, anchor)
        if gap < self._arrival_threshold:
            logger.info(f"Drive back: already {gap:.0f} m from real position, stopping")
            self.stop()
            self._controller.stop()
            return None

        path = self._fetch((current, anchor), TravelMode(travel_mode))
        return self.start(path, speed, Direction.FORWARD, arrival_anchor=anchor)

    # -- Run control ---------------------------------------------------------

    def pause(self) -> SimulationRun:
        with self._lock:
            run = self._run
            if run is None or run.status is not RunStatus.RUNNING:
                raise NotActive("No running route to pause")
            self._disarm()
            run.status = RunStatus.PAUSED
        logger.info(f"Route run {run.run_id} paused at {run.cursor_index}/{run.last_index}")
        self._publish_event("route_paused", run.to_dict())
        return run

    def resume(self) -> SimulationRun:
        with self._lock:
            run = self._run
            if run is None or run.status is not RunStatus.PAUSED:
                raise NotActive("No paused route to resume")
            if not self._controller.is_active:
                raise NotActive("Spoof session ended; route cannot resume")
            run.status = RunStatus.RUNNING
            self._arm()
        logger.info(f"Route run {run.run_id} resumed at {run.cursor_index}/{run.last_index}")
        self._publish_event("route_resumed", run.to_dict())
        return run

    def stop(self) -> None:
        """Cancel and discard the current run.  The spoof session stays up."""
        with self._lock:
            run = self._run
            self._disarm()
            self._run = None
            self._last_outcome = RunStatus.IDLE
            if run is None:
                return
            run.status = RunStatus.IDLE
        logger.info(f"Route run {run.run_id} stopped")
        self._publish_event("route_stopped", run.to_dict())

    def set_speed(self, speed_mps: float) -> SimulationRun:
        """Change speed mid-run; the residual distance carries over."""
        speed = validate_speed(speed_mps)
        with self._lock:
            run = self._run
            if run is None:
                raise NotActive("No route run to change speed on")
            run.speed_mps = speed
        return run

    def on_session_stopped(self) -> None:
        """Called by the controller when its session ends."""
        with self._lock:
            run = self._run
            if run is None:
                return
            self._disarm()
            self._run = None
            self._last_outcome = RunStatus.IDLE
            run.status = RunStatus.IDLE
        logger.info(f"Route run {run.run_id} cancelled: spoof session ended")
        self._publish_event("route_stopped", run.to_dict())

    # -- Tick ----------------------------------------------------------------

    def _do_tick(self, dt: float | None = None) -> None:
        """Advance the current run one tick.  Called from the tick thread, or
        directly in tests to exercise the simulator without threads."""
        with self._lock:
            run = self._run
            if run is None or run.status is not RunStatus.RUNNING:
                return
            run.advance(self._tick_interval if dt is None else dt)
            run.ticks += 1
            position = run.position(self._interpolate)
            if run.arrived(position):
                run.status = RunStatus.COMPLETED
            snapshot = run.to_dict()

        try:
            self._controller.update(position, wait=False)
        except NotActive:
            # Session ended between our read and the update
            self.on_session_stopped()
            return

        self._publish_event("route_progress", snapshot)
        if run.status is RunStatus.COMPLETED:
            self._complete(run)

    def _complete(self, run: SimulationRun) -> None:
        with self._lock:
            if self._run is not run:
                return
            self._disarm()
            self._run = None
            self._last_run = run
            self._last_outcome = RunStatus.COMPLETED
        logger.info(f"Route run {run.run_id} complete after {run.ticks} ticks, "
                    f"{run.distance_travelled:.0f} m")
        self._publish_event("route_completed", run.to_dict())
        if run.drive_back:
            logger.info("Drive back arrived at real position, ending spoof session")
            self._controller.stop()

    # -- Internals -----------------------------------------------------------

    def _fetch(self, waypoints: Sequence[Coordinate], travel_mode: TravelMode) -> RoutePath:
        if self._route_source is None:
            raise self._route_failed("No route source configured")
        try:
            path = self._route_source.fetch_path(list(waypoints), travel_mode)
        except RouteUnavailable as e:
            raise self._route_failed(str(e)) from e
        except Exception as e:
            logger.exception("Route source failed")
            raise self._route_failed(f"Route source error: {e}") from e
        try:
            return validate_path(path or ())
        except ValueError as e:
            raise self._route_failed(f"Route source returned an unusable path: {e}") from e

    def _route_failed(self, message: str) -> RouteUnavailable:
        with self._lock:
            self._last_error = message
            if self._run is None:
                self._last_outcome = RunStatus.FAILED
        logger.warning(f"Route unavailable: {message}")
        self._publish_event("route_failed", {"error": message})
        return RouteUnavailable(message)

    def _arm(self) -> None:
        self._disarm()
        self._task = PeriodicTask(self._tick_interval, self._do_tick, name="route-tick")
        self._task.start()

    def _disarm(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def _publish_event(self, event_type: str, data: dict) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event_type, data)
