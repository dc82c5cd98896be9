# src/ndc_qty/resilience/rate_limiter.py
from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    retry_after_ms: int = 0


class SlidingWindowRateLimiter:
    """
    Allows at most `max_requests` calls within any `window_seconds` window.

    A refused call reports how long until the oldest recorded call leaves
    the window, suitable for a Retry-After hint.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._timestamps: Deque[float] = deque()
        self._lock = threading.Lock()

    def allow(self) -> RateDecision:
        with self._lock:
            now = self._clock()
            while self._timestamps and now - self._timestamps[0] >= self._window:
                self._timestamps.popleft()

            if len(self._timestamps) >= self._max_requests:
                wait = self._window - (now - self._timestamps[0])
                return RateDecision(allowed=False, retry_after_ms=max(0, math.ceil(wait * 1000)))

            self._timestamps.append(now)
            return RateDecision(allowed=True)
