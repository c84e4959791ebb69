"""
Timing helpers for sync runs and webhook processing.
"""
import time
from typing import Optional


class Timer:
    """Monotonic stopwatch. Also answers deadline questions for time-boxed runs."""

    def __init__(self):
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def start(self, at: Optional[float] = None) -> "Timer":
        """Start now, or at an earlier time.monotonic() reading."""
        self._start = time.monotonic() if at is None else at
        self._end = None
        return self

    def stop(self) -> int:
        """Stop timer and return elapsed milliseconds."""
        self._end = time.monotonic()
        return self.elapsed_ms

    @property
    def started_at(self) -> Optional[float]:
        return self._start

    @property
    def elapsed_ms(self) -> int:
        if self._start is None:
            return 0
        end = self._end or time.monotonic()
        return int((end - self._start) * 1000)

    def remaining_ms(self, deadline_ms: int) -> int:
        return max(0, deadline_ms - self.elapsed_ms)

    def expired(self, deadline_ms: int) -> bool:
        return self.elapsed_ms >= deadline_ms
