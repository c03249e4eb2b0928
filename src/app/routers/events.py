"""Event feed — recent spoof and route lifecycle events for polling clients."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request

from relocate.comms import EventLog

router = APIRouter(prefix="/api/events", tags=["events"])


def get_event_log(request: Request) -> EventLog:
    log = getattr(request.app.state, "event_log", None)
    if log is None:
        raise HTTPException(503, "Event log not available")
    return log


@router.get("")
def list_events(
    request: Request,
    since: int = Query(0, ge=0),
    type_: str = Query("", alias="type", description="Event type prefix, e.g. route_"),
):
    """Events newer than ``since``.  Pass the returned ``last_seq`` next time."""
    events = get_event_log(request).since(since, type_)
    last_seq = events[-1]["seq"] if events else since
    return {"events": events, "last_seq": last_seq}


@router.get("/latest")
def latest_event(request: Request, type_: str = Query("", alias="type")):
    return get_event_log(request).latest(type_)
