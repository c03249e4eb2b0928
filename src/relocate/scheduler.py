"""Timer and worker primitives for the re-assertion and route tick loops.

PeriodicTask      -- daemon thread calling fn() every ``interval`` seconds
CoalescingWorker  -- daemon thread that runs fn() once per burst of requests

Cancellation contract: once ``PeriodicTask.cancel()`` returns, no new tick
begins.  A tick already running keeps going to completion; cancel() does
not wait for it, so a tick may itself call cancel() (or anything that does)
without deadlocking.

CoalescingWorker keeps at most one call in flight and at most one pending.
Requests arriving while a call runs collapse into that single pending
request, so a slow sink never builds a backlog and never sees two
concurrent calls.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from loguru import logger


class PeriodicTask:
    """Fixed-interval ticker on a daemon thread.

    The interval is measured start-to-start so a slow tick does not drift
    the cadence; if a tick overruns one or more intervals the missed ticks
    are skipped rather than fired back to back.
    """

    def __init__(self, interval: float, fn: Callable[[], None], name: str = "periodic") -> None:
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        self._interval = interval
        self._fn = fn
        self._name = name
        self._gate = threading.Lock()
        self._cancelled = threading.Event()
        self._thread: threading.Thread | None = None
        self.ticks = 0
        self.failures = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._cancelled.is_set()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        with self._gate:
            self._cancelled.set()

    def join(self, timeout: float | None = None) -> None:
        t = self._thread
        if t is not None and t is not threading.current_thread():
            t.join(timeout)

    def _loop(self) -> None:
        next_at = time.monotonic() + self._interval
        while True:
            delay = max(0.0, next_at - time.monotonic())
            if self._cancelled.wait(delay):
                return
            with self._gate:
                if self._cancelled.is_set():
                    return
                self.ticks += 1
            try:
                self._fn()
            except Exception:
                self.failures += 1
                logger.exception(f"{self._name}: tick failed")
            now = time.monotonic()
            next_at += self._interval
            if next_at <= now:
                skipped = int((now - next_at) // self._interval) + 1
                next_at += skipped * self._interval


class CoalescingWorker:
    """Runs ``fn`` on a worker thread, collapsing overlapping requests."""

    def __init__(self, fn: Callable[[], None], name: str = "worker") -> None:
        self._fn = fn
        self._name = name
        self._cond = threading.Condition()
        self._pending = False
        self._busy = False
        self._closed = False
        self._thread = threading.Thread(target=self._loop, name=name, daemon=True)
        self._started = False
        self.runs = 0
        self.coalesced = 0

    def start(self) -> None:
        if not self._started:
            self._started = True
            self._thread.start()

    def request(self) -> bool:
        """Ask for one more run.  False if the worker is closed."""
        with self._cond:
            if self._closed:
                return False
            if self._pending:
                self.coalesced += 1
            self._pending = True
            self._cond.notify_all()
            return True

    def close(self) -> None:
        """Drop any pending request and let the thread exit.

        Does not wait for an in-flight call; callers that must not overlap
        with it serialize on their own lock.
        """
        with self._cond:
            self._closed = True
            self._pending = False
            self._cond.notify_all()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing is pending or running.  True if idle."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._pending and not self._busy, timeout)

    def _loop(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._pending or self._closed)
                if self._closed:
                    self._cond.notify_all()
                    return
                self._pending = False
                self._busy = True
            try:
                self._fn()
            except Exception:
                logger.exception(f"{self._name}: run failed")
            finally:
                with self._cond:
                    self._busy = False
                    self.runs += 1
                    self._cond.notify_all()
