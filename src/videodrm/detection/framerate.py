from __future__ import annotations

import threading
from typing import Optional


class FrameRateMonitor:
    """Tracks per-second frame rates and flags a sustained collapse.

    A single low window never triggers. ``required_windows`` consecutive
    windows below ``threshold`` raise exactly one flag for the streak; a normal
    window resets the streak.
    """

    def __init__(self, threshold: float = 10.0, required_windows: int = 3, window_seconds: float = 1.0):
        if required_windows < 1:
            raise ValueError("required_windows must be at least 1")
        self.threshold = threshold
        self.required_windows = required_windows
        self.window_seconds = window_seconds
        self.low_streak = 0
        self.flags_raised = 0
        self._pending = 0
        self._frames = 0
        self._window_start: Optional[float] = None
        self._lock = threading.Lock()

    def record_window(self, fps: float) -> bool:
        """Feed one closed window. Returns True when this window completes a streak."""
        with self._lock:
            if fps < self.threshold:
                self.low_streak += 1
                if self.low_streak == self.required_windows:
                    self.flags_raised += 1
                    self._pending += 1
                    return True
            else:
                self.low_streak = 0
            return False

    def frame(self, now: float) -> Optional[float]:
        """Count a rendered frame at ``now`` (seconds). Returns the fps of a window it closed."""
        if self._window_start is None:
            self._window_start = now
        self._frames += 1
        elapsed = now - self._window_start
        if elapsed < self.window_seconds:
            return None
        fps = self._frames / elapsed * self.window_seconds
        self._frames = 0
        self._window_start = now
        self.record_window(fps)
        return fps

    def consume(self) -> bool:
        """Pop one pending flag, if any."""
        with self._lock:
            if self._pending:
                self._pending -= 1
                return True
            return False

    def reset(self) -> None:
        with self._lock:
            self.low_streak = 0
            self._pending = 0
            self._frames = 0
            self._window_start = None
