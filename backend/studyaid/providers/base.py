"""
StudyAid Backend — Generation Provider Interface
==================================================

What:  Abstract base class for every remote AI provider in the fallback cascade.
Why:   The orchestrator iterates one ordered list of strategies and calls the
       same `attempt(job)` on each; prompt building and parsing live outside
       the providers, so adding a provider means writing one adapter.
How:   Concrete providers implement `_generate(job, call_id)`. The base class
       wraps it with the circuit breaker and tenacity retries and translates
       every failure into ProviderError.

Error Handling Chain:
    API call fails → tenacity retries (with exponential backoff + jitter)
    → All retries fail → record circuit breaker failure → ProviderError
    → Circuit breaker threshold reached → future attempts rejected instantly
    → Orchestrator logs the method tag and moves to the next provider
"""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from studyaid.exceptions import CircuitBreakerOpenError, ProviderError
from studyaid.pipeline.types import OperationKind, ProviderJob, ProviderResult
from studyaid.providers.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)


class NonRetryableError(Exception):
    """Raised inside `_generate` for failures a retry cannot fix (e.g. HTTP 401)."""


def _is_retryable(exc: BaseException) -> bool:
    # Cancellation (provider timeout) must propagate, never be retried
    return not isinstance(exc, (NonRetryableError, asyncio.CancelledError))


class GenerationProvider(ABC):
    """
    Contract:
        - `name` is the method tag stamped on results ("gemini", "openrouter", ...)
        - `provider_key` identifies the rate-limit budget
        - `attempt()` returns a ProviderResult or raises ProviderError; nothing else
    """

    name: str = "provider"
    vision_capable: bool = False

    def __init__(
        self,
        api_key: str = "",
        circuit_breaker: Optional[CircuitBreaker] = None,
        retry_attempts: int = 2,
        retry_min_wait: float = 1.0,
        retry_max_wait: float = 5.0,
    ):
        self.api_key = api_key
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name=self.name)
        self.retry_attempts = retry_attempts
        self.retry_min_wait = retry_min_wait
        self.retry_max_wait = retry_max_wait

    @property
    def provider_key(self) -> str:
        return self.name

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def supports(self, kind: OperationKind, has_image: bool) -> bool:
        """OCR needs an image and a vision model; everything else is text-capable."""
        if kind == OperationKind.OCR:
            return has_image and self.vision_capable
        return True

    @abstractmethod
    async def _generate(self, job: ProviderJob, call_id: str) -> ProviderResult:
        """One raw provider call. May raise anything; retried by `attempt`."""
        ...

    async def attempt(self, job: ProviderJob) -> ProviderResult:
        """
        Run one provider attempt with circuit breaker and retries.

        Raises:
            CircuitBreakerOpenError: Circuit is open (too many recent failures)
            ProviderError: The provider failed after all retry attempts
        """
        call_id = str(uuid.uuid4())[:8]
        self.circuit_breaker.can_execute()

        start_time = time.perf_counter()
        try:
            async for retry_state in AsyncRetrying(
                retry=retry_if_exception(_is_retryable),
                stop=stop_after_attempt(self.retry_attempts),
                wait=wait_exponential_jitter(
                    initial=self.retry_min_wait,
                    max=self.retry_max_wait,
                    jitter=1,
                ),
                before_sleep=before_sleep_log(logger, logging.WARNING),
            ):
                with retry_state:
                    result = await self._generate(job, call_id)
        except CircuitBreakerOpenError:
            raise
        except RetryError as e:
            self.circuit_breaker.record_failure()
            cause = e.last_attempt.exception() if e.last_attempt else None
            logger.error("[%s] All %s retries exhausted: %s", call_id, self.name, str(cause))
            raise ProviderError(
                message=f"{self.name} failed after {self.retry_attempts} attempts",
                method=self.name,
                context={"call_id": call_id, "error_type": type(cause).__name__},
            )
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] %s call failed: %s", call_id, self.name, str(e))
            raise ProviderError(
                message=f"{self.name} call failed: {e}",
                method=self.name,
                context={"call_id": call_id, "error_type": type(e).__name__},
            )

        self.circuit_breaker.record_success()
        logger.info(
            "[%s] %s responded in %.0fms with %d chars",
            call_id,
            self.name,
            (time.perf_counter() - start_time) * 1000,
            len(result.text),
        )
        return result

    async def aclose(self) -> None:
        """Release network resources. Default: nothing to release."""
