"""Route simulation API — walk the spoofed position along a path.

Speeds are accepted in km/h (``speed_kmh``) or m/s (``speed_mps``); when
neither is given the travel mode's default is used (50 km/h driving,
5 km/h walking).
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from app.routers import http_error
from relocate.errors import SpoofError
from relocate.routing import TravelMode
from relocate.simulation import Direction, RouteSimulator, kmh_to_mps
from relocate.sinks import SpoofMode

router = APIRouter(prefix="/api/route", tags=["route"])

DEFAULT_SPEED_KMH = {
    TravelMode.DRIVING: 50.0,
    TravelMode.WALKING: 5.0,
}


class SpeedFields(BaseModel):
    speed_kmh: Optional[float] = None
    speed_mps: Optional[float] = None

    def resolve_speed(self, travel_mode: TravelMode = TravelMode.DRIVING) -> float:
        if self.speed_mps is not None:
            return self.speed_mps
        if self.speed_kmh is not None:
            return kmh_to_mps(self.speed_kmh)
        return kmh_to_mps(DEFAULT_SPEED_KMH[travel_mode])


class StartRouteRequest(SpeedFields):
    """Run over an explicit path; no routing service involved."""
    path: list[list[float]] = Field(min_length=1)   # [[lat, lng], ...]
    direction: Direction = Direction.FORWARD
    mode: Optional[SpoofMode] = None


class SimulateRequest(SpeedFields):
    """Route through waypoints via the routing service, then run it."""
    waypoints: list[list[float]] = Field(min_length=1)
    direction: Direction = Direction.FORWARD
    travel_mode: TravelMode = TravelMode.DRIVING
    mode: Optional[SpoofMode] = None


class DriveBackRequest(SpeedFields):
    lat: float
    lng: float
    travel_mode: TravelMode = TravelMode.DRIVING


class SpeedRequest(SpeedFields):
    pass


def get_simulator(request: Request) -> RouteSimulator:
    simulator = getattr(request.app.state, "simulator", None)
    if simulator is None:
        raise HTTPException(503, "Route simulator not available")
    return simulator


@router.get("/status")
def route_status(request: Request):
    return get_simulator(request).snapshot()


@router.post("/start")
def route_start(body: StartRouteRequest, request: Request):
    sim = get_simulator(request)
    try:
        run = sim.start(body.path, body.resolve_speed(), body.direction, mode=body.mode)
    except SpoofError as e:
        raise http_error(e) from e
    return run.to_dict()


@router.post("/simulate")
def route_simulate(body: SimulateRequest, request: Request):
    sim = get_simulator(request)
    try:
        run = sim.simulate(
            body.waypoints,
            body.resolve_speed(body.travel_mode),
            body.direction,
            travel_mode=body.travel_mode,
            mode=body.mode,
        )
    except SpoofError as e:
        raise http_error(e) from e
    return run.to_dict()


@router.post("/drive-back")
def route_drive_back(body: DriveBackRequest, request: Request):
    """Drive from the spoofed position back to the real one, then stop."""
    sim = get_simulator(request)
    try:
        run = sim.drive_back(
            (body.lat, body.lng),
            body.resolve_speed(body.travel_mode),
            travel_mode=body.travel_mode,
        )
    except SpoofError as e:
        raise http_error(e) from e
    if run is None:
        return {"status": "arrived", "run": None}
    return {"status": run.status.value, "run": run.to_dict()}


@router.post("/pause")
def route_pause(request: Request):
    try:
        return get_simulator(request).pause().to_dict()
    except SpoofError as e:
        raise http_error(e) from e


@router.post("/resume")
def route_resume(request: Request):
    try:
        return get_simulator(request).resume().to_dict()
    except SpoofError as e:
        raise http_error(e) from e


@router.post("/speed")
def route_speed(body: SpeedRequest, request: Request):
    if body.speed_mps is None and body.speed_kmh is None:
        raise HTTPException(422, "speed_kmh or speed_mps is required")
    try:
        return get_simulator(request).set_speed(body.resolve_speed()).to_dict()
    except SpoofError as e:
        raise http_error(e) from e


@router.post("/stop")
def route_stop(request: Request):
    """Stop the run.  The spoof session stays at its current position."""
    sim = get_simulator(request)
    sim.stop()
    return sim.snapshot()
