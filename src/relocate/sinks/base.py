"""Base classes for injection sinks and the channels they fan out to.

SpoofMode         -- which sink variant a session uses
Fix               -- one assertion as handed to a channel
InjectionChannel  -- one concrete injection path (engage / push / release)
InjectionSink     -- the contract SpoofController drives
ChannelSink       -- InjectionSink that fans every call out to its channels

A sink never exposes how many channels it drives.  A channel marked
``required`` must engage and accept every push or the sink call fails with
SinkError; optional channels degrade with a warning.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Sequence

from loguru import logger

from relocate.errors import SinkError
from relocate.geo import Coordinate, bearing_degrees, distance_meters


class SpoofMode(str, Enum):
    """Detectable = platform mock location; Undetectable = privileged, unmarked."""
    DETECTABLE = "detectable"
    UNDETECTABLE = "undetectable"


class ChannelError(Exception):
    """A channel could not engage, push, or release."""


@dataclass(frozen=True)
class Fix:
    """A position assertion with the ancillary fields consumers expect."""
    coordinate: Coordinate
    accuracy: float
    altitude: float = 0.0
    bearing: float = 0.0
    speed: float = 0.0
    synthetic: bool = True  # False when the sink strips the mock marker
    time_ms: int = field(default_factory=lambda: int(time.time() * 1000))


class InjectionChannel(ABC):
    """One path by which a fix becomes visible to position consumers."""

    name: str = "channel"
    required: bool = True
    accuracy_scale: float = 1.0

    @abstractmethod
    def engage(self) -> None:
        """Install the channel.  Raise ChannelError on failure."""

    @abstractmethod
    def push(self, fix: Fix) -> None:
        """Assert ``fix``.  Raise ChannelError on failure."""

    @abstractmethod
    def release(self) -> None:
        """Uninstall the channel.  Must tolerate never having engaged."""


class InjectionSink(ABC):
    """Contract for "assert a position now"."""

    mode: ClassVar[SpoofMode]
    detectable: ClassVar[bool]

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the mechanism can be engaged here.  No side effects."""

    @abstractmethod
    def start(self, coordinate: Coordinate) -> None:
        """Engage and assert the first fix.  Re-engages if already started."""

    @abstractmethod
    def update(self, coordinate: Coordinate) -> None:
        """Re-assert without disengaging.  No-op before start()."""

    @abstractmethod
    def stop(self) -> None:
        """Disengage.  Safe to call repeatedly and before start()."""

    @property
    @abstractmethod
    def running(self) -> bool: ...


class ChannelSink(InjectionSink):
    """Fans start/update/stop out over a fixed list of channels."""

    # Moves shorter than this keep the previous bearing (GPS jitter)
    _BEARING_MIN_MOVE_M = 0.5

    def __init__(self, channels: Sequence[InjectionChannel]) -> None:
        if not channels:
            raise ValueError("A sink needs at least one channel")
        self._channels = list(channels)
        self._engaged: list[InjectionChannel] = []
        self._lock = threading.RLock()
        self._running = False
        self._last: Coordinate | None = None
        self._last_at: float = 0.0
        self._bearing: float = 0.0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def channel_names(self) -> list[str]:
        return [c.name for c in self._channels]

    # -- hooks ---------------------------------------------------------------

    def _before_engage(self) -> None:
        """Runs before any channel engages.  Raise ChannelError to abort."""

    def _after_engage(self) -> None:
        """Runs after the channels engaged, before the first push."""

    def _after_release(self) -> None:
        """Runs after every channel was released."""

    def _build_fix(self, coordinate: Coordinate, bearing: float, speed: float) -> Fix:
        return Fix(coordinate=coordinate, accuracy=coordinate.accuracy,
                   bearing=bearing, speed=speed)

    # -- contract ------------------------------------------------------------

    def start(self, coordinate: Coordinate) -> None:
        with self._lock:
            if self._running or self._engaged:
                self._release_all()
            self._last = None
            try:
                self._before_engage()
                for channel in self._channels:
                    try:
                        channel.engage()
                    except ChannelError as e:
                        if channel.required:
                            raise
                        logger.warning(f"{type(self).__name__}: {channel.name} channel "
                                       f"unavailable (non-critical): {e}")
                        continue
                    self._engaged.append(channel)
                self._after_engage()
                self._running = True
                self._push(coordinate)
            except ChannelError as e:
                self._release_all()
                raise SinkError(f"{self.mode.value} sink failed to start: {e}") from e
            logger.info(f"{type(self).__name__} started "
                        f"({', '.join(c.name for c in self._engaged)})")

    def update(self, coordinate: Coordinate) -> None:
        with self._lock:
            if not self._running:
                return
            try:
                self._push(coordinate)
            except ChannelError as e:
                raise SinkError(f"{self.mode.value} sink update failed: {e}") from e

    def stop(self) -> None:
        with self._lock:
            was_running = self._running
            self._release_all()
            if was_running:
                logger.info(f"{type(self).__name__} stopped")

    # -- internals -----------------------------------------------------------

    def _push(self, coordinate: Coordinate) -> None:
        now = time.monotonic()
        speed = 0.0
        if self._last is not None:
            moved = distance_meters(self._last, coordinate)
            if moved >= self._BEARING_MIN_MOVE_M:
                self._bearing = bearing_degrees(self._last, coordinate)
                elapsed = now - self._last_at
                if elapsed > 0:
                    speed = moved / elapsed
        fix = self._build_fix(coordinate, self._bearing, speed)
        for channel in self._engaged:
            scaled = fix
            if channel.accuracy_scale != 1.0:
                scaled = Fix(
                    coordinate=fix.coordinate,
                    accuracy=fix.accuracy * channel.accuracy_scale,
                    altitude=fix.altitude,
                    bearing=fix.bearing,
                    speed=fix.speed,
                    synthetic=fix.synthetic,
                    time_ms=fix.time_ms,
                )
            try:
                channel.push(scaled)
            except ChannelError as e:
                if channel.required:
                    raise
                logger.warning(f"{type(self).__name__}: {channel.name} push failed: {e}")
        self._last = coordinate
        self._last_at = now

    def _release_all(self) -> None:
        for channel in reversed(self._engaged):
            try:
                channel.release()
            except ChannelError as e:
                logger.warning(f"{type(self).__name__}: {channel.name} release failed: {e}")
        had_engaged = bool(self._engaged)
        self._engaged = []
        self._running = False
        if had_engaged:
            self._after_release()
