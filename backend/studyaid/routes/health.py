"""
StudyAid Backend — Health Check Route
=======================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Checks the database with SELECT 1 and reports, without calling any
       provider, which providers are configured, their circuit states, the
       current rate-limit counters and the cache size.

Status levels:
    - healthy:   A provider is configured and the database answers (HTTP 200)
    - degraded:  Generation works but falls back more (HTTP 200)
    - unhealthy: No provider configured, generation returns 503 (HTTP 503)

Provider checks cost nothing: no API calls are made, so probing every few
seconds never touches a provider quota.
"""

import logging
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text

from studyaid import __version__
from studyaid.pipeline.orchestrator import FallbackOrchestrator
from studyaid.providers.circuit_breaker import CircuitBreaker
from studyaid.schemas.generation import HealthResponse, ProviderHealth
from studyaid.services.generation import get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


async def check_database() -> str:
    try:
        from studyaid.database import engine
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "connected"
    except Exception as e:
        logger.warning("Health check: database unreachable: %s", str(e))
        return "disconnected"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(
    orchestrator: FallbackOrchestrator = Depends(get_orchestrator),
):
    providers = {
        p.name: ProviderHealth(configured=p.is_configured(), circuit=p.circuit_breaker.state)
        for p in orchestrator.providers
    }
    configured = [h for h in providers.values() if h.configured]
    database = await check_database()

    if not configured:
        overall = "unhealthy"
    elif database != "connected" or all(h.circuit == CircuitBreaker.OPEN for h in configured):
        overall = "degraded"
    else:
        overall = "healthy"

    body = HealthResponse(
        status=overall,
        version=__version__,
        database=database,
        providers=providers,
        rate_limits=orchestrator.rate_limiter.snapshot(),
        cache_entries=len(orchestrator.cache),
        uptime_seconds=round(time.time() - _start_time, 2),
    )
    return JSONResponse(
        status_code=503 if overall == "unhealthy" else 200,
        content=body.model_dump(),
    )
