"""Great-circle geometry on a spherical Earth.

Convention:
    - Coordinates are WGS84 degrees, latitude first
    - Distances are meters, haversine on a 6,371 km sphere
    - Bearing 0 = North, clockwise in degrees

Coordinate is the value type shared by every other module; it validates its
ranges on construction so an out-of-range point never enters the core.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence, Union

from .errors import InvalidCoordinate

EARTH_RADIUS_M = 6_371_000.0
DEFAULT_ACCURACY_M = 10.0


@dataclass(frozen=True)
class Coordinate:
    """An immutable lat/lng fix with a horizontal accuracy radius."""

    latitude: float
    longitude: float
    accuracy: float = DEFAULT_ACCURACY_M  # meters

    def __post_init__(self) -> None:
        for name in ("latitude", "longitude", "accuracy"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidCoordinate(f"{name} must be a number, got {value!r}")
            if not math.isfinite(value):
                raise InvalidCoordinate(f"{name} must be finite, got {value!r}")
        if not -90.0 <= self.latitude <= 90.0:
            raise InvalidCoordinate(f"Latitude {self.latitude} outside [-90, 90]")
        if not -180.0 <= self.longitude <= 180.0:
            raise InvalidCoordinate(f"Longitude {self.longitude} outside [-180, 180]")
        if self.accuracy <= 0:
            raise InvalidCoordinate(f"Accuracy {self.accuracy} must be > 0")

    def with_accuracy(self, accuracy: float) -> Coordinate:
        return Coordinate(self.latitude, self.longitude, accuracy)

    def to_dict(self) -> dict:
        return {
            "lat": self.latitude,
            "lng": self.longitude,
            "accuracy": self.accuracy,
        }


CoordinateLike = Union[Coordinate, Sequence[float]]


def as_coordinate(value: CoordinateLike, accuracy: float | None = None) -> Coordinate:
    """Coerce a Coordinate or a ``(lat, lng[, accuracy])`` sequence.

    Raises InvalidCoordinate for anything else.
    """
    if isinstance(value, Coordinate):
        if accuracy is not None and accuracy != value.accuracy:
            return value.with_accuracy(accuracy)
        return value
    try:
        parts = list(value)
    except TypeError:
        raise InvalidCoordinate(f"Cannot build a coordinate from {value!r}") from None
    if len(parts) not in (2, 3):
        raise InvalidCoordinate(f"Expected (lat, lng) or (lat, lng, accuracy), got {value!r}")
    if accuracy is None:
        accuracy = parts[2] if len(parts) == 3 else DEFAULT_ACCURACY_M
    return Coordinate(parts[0], parts[1], accuracy)


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance between two coordinates, in meters."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = lat2 - lat1
    dlng = math.radians(b.longitude - a.longitude)
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    )
    # Clamp: rounding can push h a hair outside [0, 1] for antipodal points
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(h))


def bearing_degrees(a: Coordinate, b: Coordinate) -> float:
    """Initial great-circle bearing from a to b, in [0, 360)."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlng = math.radians(b.longitude - a.longitude)
    x = math.sin(dlng) * math.cos(lat2)
    y = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlng)
    return (math.degrees(math.atan2(x, y)) + 360.0) % 360.0


def interpolate(a: Coordinate, b: Coordinate, fraction: float) -> Coordinate:
    """Point ``fraction`` of the way from a to b.

    Linear in degrees, which is indistinguishable from the great circle at
    route-segment scale.  Accuracy is taken from ``a``.
    """
    f = min(1.0, max(0.0, fraction))
    dlng = b.longitude - a.longitude
    # Take the short way across the antimeridian
    if dlng > 180.0:
        dlng -= 360.0
    elif dlng < -180.0:
        dlng += 360.0
    lng = a.longitude + dlng * f
    if lng > 180.0:
        lng -= 360.0
    elif lng < -180.0:
        lng += 360.0
    lat = a.latitude + (b.latitude - a.latitude) * f
    return Coordinate(lat, lng, a.accuracy)


def path_length_meters(path: Sequence[Coordinate]) -> float:
    """Sum of segment lengths along ``path``."""
    return sum(distance_meters(path[i], path[i + 1]) for i in range(len(path) - 1))
