"""RouteSource interface — turns waypoints into a drivable polyline."""

from __future__ import annotations

from enum import Enum
from typing import Protocol, Sequence

from relocate.geo import Coordinate


class TravelMode(str, Enum):
    DRIVING = "driving"
    WALKING = "walking"


class RouteSource(Protocol):
    def fetch_path(
        self, waypoints: Sequence[Coordinate], travel_mode: TravelMode = TravelMode.DRIVING,
    ) -> tuple[Coordinate, ...]:
        """Ordered path through ``waypoints`` (>= 2 points).

        Raises RouteUnavailable when no route can be produced.
        """
        ...


class StaticRouteSource:
    """Returns the waypoints themselves as the path (straight segments).

    Useful offline and for drones/pedestrians crossing open ground.
    """

    def fetch_path(
        self, waypoints: Sequence[Coordinate], travel_mode: TravelMode = TravelMode.DRIVING,
    ) -> tuple[Coordinate, ...]:
        return tuple(waypoints)
