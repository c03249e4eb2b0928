"""Relocate — position injection lifecycle and route-following simulator.

Public entry points:

    SpoofController   start / update / stop a spoofed position
    RouteSimulator    animate that position along a path, drive back home
    MockLocationSink  Detectable injection (platform mock location)
    RootSpoofSink     Undetectable injection (privileged)
"""

from .controller import DEFAULT_REASSERT_INTERVAL, SpoofController, SpoofSession, SpoofState
from .errors import (
    InvalidCoordinate,
    InvalidSpeed,
    NotActive,
    PathTooShort,
    RouteUnavailable,
    SinkError,
    SinkUnavailable,
    SpoofError,
)
from .geo import Coordinate, bearing_degrees, distance_meters
from .simulation import Direction, RouteSimulator, RunStatus, SimulationRun
from .sinks import InjectionSink, MockLocationSink, RootSpoofSink, SpoofMode

__version__ = "0.1.0"

__all__ = [
    "Coordinate",
    "DEFAULT_REASSERT_INTERVAL",
    "Direction",
    "InjectionSink",
    "InvalidCoordinate",
    "InvalidSpeed",
    "MockLocationSink",
    "NotActive",
    "PathTooShort",
    "RootSpoofSink",
    "RouteSimulator",
    "RouteUnavailable",
    "RunStatus",
    "SimulationRun",
    "SinkError",
    "SinkUnavailable",
    "SpoofController",
    "SpoofError",
    "SpoofMode",
    "SpoofSession",
    "SpoofState",
    "bearing_degrees",
    "distance_meters",
]
