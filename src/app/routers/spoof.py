"""Spoof control API — start, move and stop the spoofed position.

Handlers are plain ``def``: sink calls shell out to the device and block,
so FastAPI runs them on its thread pool.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from loguru import logger
from pydantic import BaseModel, Field

from app.config import settings
from app.routers import http_error
from relocate.controller import SpoofController
from relocate.errors import SpoofError
from relocate.geo import Coordinate
from relocate.sinks import SpoofMode

router = APIRouter(prefix="/api/spoof", tags=["spoof"])


class PositionRequest(BaseModel):
    lat: float
    lng: float
    accuracy: Optional[float] = Field(default=None, gt=0)

    def coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.lng, self.accuracy or settings.default_accuracy)


class StartRequest(PositionRequest):
    mode: Optional[SpoofMode] = None  # None = settings.default_mode


def get_controller(request: Request) -> SpoofController:
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(503, "Spoof controller not available")
    return controller


@router.get("/status")
def spoof_status(request: Request):
    """Session state, target, re-assertion stats and the published record."""
    controller = get_controller(request)
    status = controller.status()
    published = getattr(request.app.state, "published", None)
    if published is not None:
        status["published"] = published.current.to_record()
    return status


@router.get("/modes")
def spoof_modes(request: Request):
    """Which spoof modes can start on the attached device right now."""
    return get_controller(request).available_modes()


@router.post("/start")
def spoof_start(body: StartRequest, request: Request):
    controller = get_controller(request)
    mode = body.mode or SpoofMode(settings.default_mode)
    try:
        session = controller.start(body.coordinate(), mode)
    except SpoofError as e:
        logger.warning(f"Spoof start rejected: {e}")
        raise http_error(e) from e
    return session.to_dict()


@router.post("/update")
def spoof_update(body: PositionRequest, request: Request):
    controller = get_controller(request)
    try:
        controller.update(body.coordinate())
    except SpoofError as e:
        raise http_error(e) from e
    return controller.status()


@router.post("/stop")
def spoof_stop(request: Request):
    """End the session.  Always succeeds, even when nothing is active."""
    controller = get_controller(request)
    controller.stop()
    return {"state": controller.state.value}
