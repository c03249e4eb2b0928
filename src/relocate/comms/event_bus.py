"""EventBus and EventLog — lifecycle and progress events for spoof and route.

SpoofController publishes spoof_started / spoof_updated / spoof_stopped /
spoof_reassert_failed; RouteSimulator publishes route_started /
route_progress / route_paused / route_resumed / route_completed /
route_stopped / route_failed.

Every message is ``{"type", "seq", "ts"}`` plus ``"data"`` when the
publisher attached any.  ``seq`` grows by one per publish across the whole
bus, so a reader polling with ``since=<last seq>`` can tell what it missed.

EventLog is the HTTP layer's subscriber: it keeps the most recent events
so ``GET /api/events`` can answer without holding a connection open.
"""

from __future__ import annotations

import queue
import threading
import time
from collections import deque


def _offer(q: queue.Queue, msg: dict) -> None:
    for _ in range(2):
        try:
            q.put_nowait(msg)
            return
        except queue.Full:
            # Drop oldest so a slow reader still sees the newest state
            try:
                q.get_nowait()
            except queue.Empty:
                pass


class EventBus:
    """Thread-safe pub/sub; subscribers pick events by type prefix."""

    QUEUE_SIZE = 1000

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[tuple[queue.Queue, str]] = []
        self._seq = 0

    @property
    def last_seq(self) -> int:
        return self._seq

    def subscribe(self, prefix: str = "") -> queue.Queue:
        """Queue receiving every event whose type starts with ``prefix``."""
        q: queue.Queue = queue.Queue(maxsize=self.QUEUE_SIZE)
        with self._lock:
            self._subscribers.append((q, prefix))
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            self._subscribers = [(s, p) for s, p in self._subscribers if s is not q]

    def publish(self, event_type: str, data: dict | None = None) -> None:
        with self._lock:
            self._seq += 1
            msg = {"type": event_type, "seq": self._seq, "ts": time.time()}
            if data is not None:
                msg["data"] = data
            for q, prefix in self._subscribers:
                if event_type.startswith(prefix):
                    _offer(q, msg)


class EventLog:
    """Ring of the last ``size`` events on ``bus``, read by polling."""

    def __init__(self, bus: EventBus, size: int = 200) -> None:
        if size <= 0:
            raise ValueError(f"size must be positive, got {size}")
        self._bus = bus
        self._queue = bus.subscribe()
        self._events: deque[dict] = deque(maxlen=size)
        self._lock = threading.Lock()

    def _drain(self) -> None:
        while True:
            try:
                self._events.append(self._queue.get_nowait())
            except queue.Empty:
                return

    def since(self, seq: int = 0, prefix: str = "") -> list[dict]:
        """Retained events newer than ``seq``, oldest first."""
        with self._lock:
            self._drain()
            return [e for e in self._events
                    if e["seq"] > seq and e["type"].startswith(prefix)]

    def latest(self, prefix: str = "") -> dict | None:
        with self._lock:
            self._drain()
            for event in reversed(self._events):
                if event["type"].startswith(prefix):
                    return event
        return None

    def close(self) -> None:
        self._bus.unsubscribe(self._queue)
