"""HTTP routers.

Core errors map onto status codes in one place so every router reports
the same failure the same way.
"""

from fastapi import HTTPException

from relocate.errors import NotActive, RouteUnavailable, SinkError, SinkUnavailable, SpoofError

_STATUS = (
    (ValueError, 422),
    (NotActive, 409),
    (SinkUnavailable, 503),
    (SinkError, 502),
    (RouteUnavailable, 502),
)


def http_error(exc: SpoofError) -> HTTPException:
    for kind, status in _STATUS:
        if isinstance(exc, kind):
            return HTTPException(status_code=status, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
