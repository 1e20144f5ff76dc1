"""
StudyAid Backend — Circuit Breaker
====================================

What:  Per-provider circuit breaker shared by every remote provider adapter.
Why:   When a provider is down, each request would otherwise spend its whole
       timeout (and retries) on it before the cascade moves on. An open
       circuit fails that provider instantly so the next one answers sooner.
How:   Classic CLOSED → OPEN → HALF_OPEN state machine with a failure
       threshold and a recovery timeout, using an injectable clock.
"""

import logging
import threading
import time
from typing import Callable, Optional

from studyaid.exceptions import CircuitBreakerOpenError

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """
    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all requests)
            → All calls raise CircuitBreakerOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → Allow ONE request through
            → On success: transition to CLOSED (reset failure_count)
            → On failure: transition back to OPEN (reset timer)

    Inside the fallback cascade CircuitBreakerOpenError is a ProviderError,
    so an open circuit is simply one more soft failure.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        name: str = "",
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None
        self._clock = clock
        self._lock = threading.Lock()

    def can_execute(self) -> bool:
        """
        Returns True when a call may proceed.

        Raises:
            CircuitBreakerOpenError if the circuit is OPEN and the recovery
            timeout hasn't elapsed.
        """
        with self._lock:
            if self.state != self.OPEN:
                return True

            elapsed = self._clock() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info(
                    "Circuit breaker for %s transitioning to HALF_OPEN after %.1fs",
                    self.name,
                    elapsed,
                )
                self.state = self.HALF_OPEN
                return True

            remaining = max(1, int(self.recovery_timeout - elapsed))
            raise CircuitBreakerOpenError(recovery_time=remaining, method=self.name)

    def record_success(self) -> None:
        with self._lock:
            if self.state == self.HALF_OPEN:
                logger.info("Circuit breaker for %s transitioning to CLOSED (service recovered)", self.name)
            self.failure_count = 0
            self.state = self.CLOSED
            self.last_failure_time = None

    def record_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()

            if self.state == self.HALF_OPEN:
                logger.warning("Circuit breaker for %s returning to OPEN (test request failed)", self.name)
                self.state = self.OPEN
            elif self.failure_count >= self.failure_threshold and self.state != self.OPEN:
                logger.warning(
                    "Circuit breaker for %s OPENING after %d consecutive failures",
                    self.name,
                    self.failure_count,
                )
                self.state = self.OPEN
