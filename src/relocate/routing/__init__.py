"""Route sources: where RouteSimulator gets its paths."""

from .base import RouteSource, StaticRouteSource, TravelMode
from .osrm import OsrmRouteSource

__all__ = ["OsrmRouteSource", "RouteSource", "StaticRouteSource", "TravelMode"]
