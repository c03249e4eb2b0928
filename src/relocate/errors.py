"""Error taxonomy for the spoofing core.

Validation errors (InvalidCoordinate, InvalidSpeed, PathTooShort) also
subclass ValueError so generic callers can treat them as bad input.
"""

from __future__ import annotations


class SpoofError(Exception):
    """Base class for every error raised by the spoofing core."""


class InvalidCoordinate(SpoofError, ValueError):
    """Latitude, longitude or accuracy outside the accepted range."""


class InvalidSpeed(SpoofError, ValueError):
    """Simulation speed is not a positive finite number."""


class PathTooShort(SpoofError, ValueError):
    """A route path needs at least two points."""


class NotActive(SpoofError):
    """Operation requires an active spoof session."""


class SinkUnavailable(SpoofError):
    """The requested injection mechanism cannot be engaged on this device."""


class SinkError(SpoofError):
    """An injection mechanism failed.  The underlying failure is ``__cause__``."""


class RouteUnavailable(SpoofError):
    """The route source returned no usable path."""
