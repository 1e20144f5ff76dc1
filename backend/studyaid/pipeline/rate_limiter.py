"""
StudyAid Backend — Per-Provider Rate Limiter
==============================================

What:  Fixed-window request counter keyed by provider.
Why:   Free-tier providers enforce per-minute quotas. Counting locally lets the
       orchestrator stop before burning a request that would come back 429.
How:   One RateWindow per provider key. A window whose age is >= the window
       length is reset (count=0, start=now) before the check.
Who:   Consulted by the FallbackOrchestrator before each provider attempt.

Algorithm: Fixed Window Counter
    1. Look up (or create) the provider's window
    2. If now - window_started_at >= window: reset it
    3. If request_count >= limit: reject (return False)
    4. Otherwise increment and allow

    Fixed windows can admit up to 2× the limit across a boundary; that is
    acceptable here because the upstream quotas are themselves fixed-window.

Thread Safety:
    Every read-modify-write of a window happens under one threading.Lock, so
    concurrent requests on the same provider can never push request_count
    past the limit.

Production Upgrade Path:
    State is per process. Multi-worker deployments would move the counters to
    Redis (INCR with EXPIRE) to share one budget across workers.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

logger = logging.getLogger(__name__)


@dataclass
class RateWindow:
    request_count: int
    window_started_at: float


class ProviderRateLimiter:
    """
    In-memory fixed-window limiter.

    Configuration:
        max_requests: Requests allowed per window (default: 60)
        window_seconds: Window length in seconds (default: 60)
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, RateWindow] = {}
        self._lock = threading.Lock()

    def _current_window(self, provider_key: str, now: float) -> RateWindow:
        """Caller must hold the lock."""
        window = self._windows.get(provider_key)
        if window is None or now - window.window_started_at >= self.window_seconds:
            window = RateWindow(request_count=0, window_started_at=now)
            self._windows[provider_key] = window
        return window

    def try_consume(self, provider_key: str) -> bool:
        """Consume one request from the provider's budget; False when exhausted."""
        with self._lock:
            now = self._clock()
            window = self._current_window(provider_key, now)
            if window.request_count >= self.max_requests:
                logger.warning(
                    "Rate limit reached for provider %s: %d requests in %ss window",
                    provider_key,
                    window.request_count,
                    self.window_seconds,
                )
                return False
            window.request_count += 1
            return True

    def retry_after(self, provider_key: str) -> int:
        """Whole seconds until the provider's current window resets (min 1)."""
        with self._lock:
            window = self._windows.get(provider_key)
            if window is None:
                return 1
            remaining = window.window_started_at + self.window_seconds - self._clock()
            return max(1, math.ceil(remaining))

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        """Copy of current counters for the health endpoint."""
        with self._lock:
            now = self._clock()
            return {
                key: {
                    "request_count": window.request_count,
                    "limit": self.max_requests,
                    "window_age_seconds": round(now - window.window_started_at, 1),
                }
                for key, window in self._windows.items()
            }
