"""OSRM route source — multi-waypoint routes from an OSRM HTTP server.

Defaults to the public demo server, which needs no API key but is rate
limited; point ``base_url`` at a self-hosted instance for heavy use.
"""

from __future__ import annotations

from typing import Sequence

import httpx
from loguru import logger

from relocate.errors import RouteUnavailable
from relocate.geo import Coordinate

from .base import TravelMode

DEFAULT_OSRM_URL = "https://router.project-osrm.org"
DEFAULT_USER_AGENT = "Relocate/1.0"

# OSRM profile names
_PROFILES = {
    TravelMode.DRIVING: "driving",
    TravelMode.WALKING: "foot",
}


class OsrmRouteSource:
    """RouteSource backed by ``/route/v1/{profile}/{coords}``."""

    def __init__(
        self,
        base_url: str = DEFAULT_OSRM_URL,
        timeout: float = 15.0,
        user_agent: str = DEFAULT_USER_AGENT,
        client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._user_agent = user_agent
        self._client = client

    def route_url(self, waypoints: Sequence[Coordinate], travel_mode: TravelMode) -> str:
        profile = _PROFILES[TravelMode(travel_mode)]
        coords = ";".join(f"{w.longitude},{w.latitude}" for w in waypoints)
        return f"{self._base_url}/route/v1/{profile}/{coords}"

    def fetch_path(
        self, waypoints: Sequence[Coordinate], travel_mode: TravelMode = TravelMode.DRIVING,
    ) -> tuple[Coordinate, ...]:
        if len(waypoints) < 2:
            raise RouteUnavailable("A route needs at least 2 waypoints")
        url = self.route_url(waypoints, travel_mode)
        params = {"overview": "full", "geometries": "geojson"}
        headers = {"User-Agent": self._user_agent}
        try:
            if self._client is not None:
                resp = self._client.get(url, params=params, headers=headers, timeout=self._timeout)
            else:
                with httpx.Client() as client:
                    resp = client.get(url, params=params, headers=headers, timeout=self._timeout)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            logger.warning(f"OSRM request failed: {e}")
            raise RouteUnavailable(f"Routing service unavailable: {e}") from e
        except ValueError as e:
            raise RouteUnavailable(f"Routing service returned invalid JSON: {e}") from e
        return self._parse(data)

    @staticmethod
    def _parse(data: dict) -> tuple[Coordinate, ...]:
        if data.get("code", "Ok") != "Ok":
            raise RouteUnavailable(f"OSRM: {data.get('message') or data.get('code')}")
        routes = data.get("routes") or []
        if not routes:
            raise RouteUnavailable("OSRM returned no routes")
        coords = (routes[0].get("geometry") or {}).get("coordinates") or []
        points = []
        for pair in coords:
            # GeoJSON order is [lng, lat]
            try:
                points.append(Coordinate(float(pair[1]), float(pair[0])))
            except (TypeError, ValueError, IndexError):
                continue
        if len(points) < 2:
            raise RouteUnavailable(f"OSRM route has {len(points)} usable points")
        return tuple(points)
