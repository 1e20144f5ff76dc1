"""
StudyAid Backend — Custom Exception Hierarchy
===============================================

What:  Defines application-specific exceptions for different error scenarios.
Why:   The generation pipeline has a strict propagation policy: only two kinds
       of failure may cross its boundary. Distinct exception types make that
       policy enforceable with plain `except` clauses.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch the surfaced ones
       and return structured JSON error responses with correct HTTP status codes.
Who:   Raised by providers, the context store and the orchestrator.
When:  During request processing.

Exception Hierarchy:
    StudyAidError (base)
    ├── ConfigurationError       → 503 Service Unavailable (surfaced, never retried)
    ├── RateLimitExceededError   → 429 Too Many Requests (surfaced, retry later)
    ├── ProviderError            → absorbed by the fallback cascade
    │   └── CircuitBreakerOpenError
    └── DatabaseError            → absorbed by the context assembler

Propagation policy:
    ProviderError and DatabaseError never reach a caller of the orchestrator.
    They exist so that logs and tests can tell a timeout from a malformed
    payload from an open circuit.
"""

from typing import Any, Dict, Optional


class StudyAidError(Exception):
    """
    Base exception for all StudyAid application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ConfigurationError(StudyAidError):
    """
    Raised when a required credential or setting is absent.

    When:    A generation request arrives and no remote provider has credentials.
    HTTP:    503 Service Unavailable

    Raised before any provider call is attempted, so a misconfigured
    deployment costs nothing but the error response.
    """

    def __init__(
        self,
        message: str = "No AI provider is configured for this operation",
        missing: Optional[list] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if missing:
            ctx["missing"] = list(missing)
        super().__init__(message=message, context=ctx)
        self.missing = list(missing or [])


class RateLimitExceededError(StudyAidError):
    """
    Raised when the first-priority provider's request budget is exhausted.

    What:    The fixed window for that provider has no requests left.
    HTTP:    429 Too Many Requests

    Retry timing is the caller's decision, so this is surfaced instead of being
    silently degraded into a lower-quality result.

    Response includes:
        - retry_after: Seconds until the provider's window resets
        - Retry-After header for HTTP-compliant clients
    """

    def __init__(
        self,
        provider: str = "",
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded for provider '{provider}'. "
            f"Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        ctx["provider"] = provider
        super().__init__(message=message, context=ctx)
        self.provider = provider
        self.retry_after = retry_after


class ProviderError(StudyAidError):
    """
    Raised by a provider adapter for any failed attempt.

    When:    Non-success HTTP status, SDK exception after retries, empty or
             malformed payload, timeout.
    Handled: Caught by the orchestrator, logged with the method tag, and the
             cascade advances to the next strategy.
    """

    def __init__(
        self,
        message: str = "AI provider call failed",
        method: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if method:
            ctx["method"] = method
        super().__init__(message=message, context=ctx)
        self.method = method


class CircuitBreakerOpenError(ProviderError):
    """
    Raised when a provider's circuit breaker is OPEN.

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (reject all calls for recovery_time seconds)
        → After recovery_time → HALF-OPEN (allow one test call)
        → If test succeeds → CLOSED
        → If test fails → OPEN again

    Inside the pipeline an open circuit is just another soft failure: the
    cascade skips straight to the next provider without waiting on a timeout.
    """

    def __init__(
        self,
        recovery_time: int = 60,
        method: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Provider circuit is open after repeated failures; "
            f"retrying in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, method=method, context=ctx)
        self.recovery_time = recovery_time


class DatabaseError(StudyAidError):
    """
    Raised when a context-store query fails unexpectedly.

    The Context Assembler absorbs it and omits that source from the bundle.
    Detailed error info (SQL, constraint names) is logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
