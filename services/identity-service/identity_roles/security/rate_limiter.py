"""In-memory fixed window rate limiter implementation."""

from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable


@dataclass(slots=True)
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """Thread-safe fixed window limiter keyed by caller origin.

    A window opens on the first accepted call for a key and lasts ``window_seconds``.
    Denied calls leave the window untouched. Counts are process-local.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialise limiter parameters and per-key storage."""
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = Lock()

    def allow(self, key: str) -> bool:
        """Return ``True`` and count the call when ``key`` is within its window budget."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + self._window)
                self._evict_expired(now)
                return True
            if window.count >= self._max_requests:
                return False
            window.count += 1
            return True

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if now >= window.reset_at]
        for key in expired:
            del self._windows[key]
