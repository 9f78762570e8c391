"""Cancellable periodic tasks scoped to a session or a service lifetime."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)


class PeriodicTask:
    """Run ``fn`` every ``interval`` seconds on a daemon thread until stopped.

    A tick that raises is logged and the loop keeps going. ``stop()`` wakes the
    thread immediately and joins it, so no timer outlives its owner.
    """

    def __init__(self, interval: float, fn: Callable[[], object], name: str = "periodic-task",
                 run_immediately: bool = False):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.fn = fn
        self.name = name
        self.run_immediately = run_immediately
        self.ticks = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "PeriodicTask":
        with self._lock:
            if self.running:
                return self
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        LOGGER.debug("Started periodic task %s (every %ss)", self.name, self.interval)
        return self

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            LOGGER.debug("Stopped periodic task %s after %d ticks", self.name, self.ticks)

    def run_once(self) -> None:
        """Run one tick synchronously (used by tests and on-demand checks)."""
        self._tick()

    def _tick(self) -> None:
        try:
            self.fn()
        except Exception:
            LOGGER.exception("Periodic task %s failed", self.name)
        finally:
            self.ticks += 1

    def _run(self) -> None:
        if self.run_immediately:
            self._tick()
        while not self._stop.wait(self.interval):
            self._tick()

    def __enter__(self) -> "PeriodicTask":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.stop()
