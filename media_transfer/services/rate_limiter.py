"""
Pacing for batch calls against the destination.
"""

from __future__ import annotations

import threading
import time
from typing import Callable


class PacingLimiter:
    """
    Enforces a minimum interval between calls, scaled by a caller-supplied factor.

    ``factor`` multiplies ``base_interval_seconds``; 1.0 keeps the default pacing,
    larger values slow the importer down, smaller values speed it up.
    """

    def __init__(
        self,
        *,
        base_interval_seconds: float,
        factor: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if factor <= 0:
            raise ValueError("rate limit factor must be positive")
        self._min_interval = max(0.0, base_interval_seconds) * factor
        self._sleep = sleep
        self._clock = clock
        self._last_call: float | None = None
        self._lock = threading.Lock()

    @property
    def min_interval(self) -> float:
        return self._min_interval

    def wait(self) -> float:
        """
        Sleep as needed before the next call. Returns the seconds slept.
        """

        with self._lock:
            waited = 0.0
            if self._last_call is not None and self._min_interval > 0:
                elapsed = self._clock() - self._last_call
                remaining = self._min_interval - elapsed
                if remaining > 0:
                    self._sleep(remaining)
                    waited = remaining
            self._last_call = self._clock()
            return waited
