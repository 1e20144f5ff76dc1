"""
StudyAid Backend — Generation Service Wiring
==============================================

What:  Builds the FallbackOrchestrator and its collaborators from Settings.
Why:   Cache, rate limiter and circuit breakers hold state that must be
       shared by every request, but not by every test. Building them in one
       function, called once from the app lifespan, gives a single instance
       per process without module-level singletons.
How:   build_orchestrator(settings, clock, store) wires the pipeline;
       get_orchestrator is the FastAPI dependency that hands it to routes.

Provider Order:
    settings.provider_order (default "gemini,openrouter,dashscope") decides
    the static priority. Providers without credentials are still built, so
    /health can report them, but the orchestrator never attempts them.
"""

import logging
import time
from typing import Callable, List, Optional

from fastapi import Request

from studyaid.config import DASHSCOPE, GEMINI, OPENROUTER, Settings
from studyaid.pipeline.cache import ResponseCache
from studyaid.pipeline.context import ContextAssembler, ContextStore
from studyaid.pipeline.extractor import ConceptExtractor
from studyaid.pipeline.normalizer import ParameterNormalizer
from studyaid.pipeline.orchestrator import FallbackOrchestrator
from studyaid.pipeline.parsing import ResponseParser
from studyaid.pipeline.rate_limiter import ProviderRateLimiter
from studyaid.providers.base import GenerationProvider
from studyaid.providers.circuit_breaker import CircuitBreaker
from studyaid.providers.gemini import GeminiProvider
from studyaid.providers.images import ImageResolver
from studyaid.providers.local import LocalHeuristicStrategy
from studyaid.providers.openai_compat import OpenAICompatProvider

logger = logging.getLogger(__name__)


def build_providers(
    settings: Settings,
    image_resolver: ImageResolver,
    clock: Callable[[], float] = time.monotonic,
) -> List[GenerationProvider]:
    """Remote providers in configured priority order."""
    resilience = {
        "retry_attempts": settings.retry_max_attempts,
        "retry_min_wait": settings.retry_min_wait,
        "retry_max_wait": settings.retry_max_wait,
    }

    def breaker(name: str) -> CircuitBreaker:
        return CircuitBreaker(
            name=name,
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
            clock=clock,
        )

    factories = {
        GEMINI: lambda: GeminiProvider(
            api_key=settings.api_key_for(GEMINI),
            model=settings.gemini_model,
            image_resolver=image_resolver,
            request_timeout=settings.provider_timeout_seconds,
            circuit_breaker=breaker(GEMINI),
            **resilience,
        ),
        OPENROUTER: lambda: OpenAICompatProvider(
            name=OPENROUTER,
            api_key=settings.api_key_for(OPENROUTER),
            base_url=settings.openrouter_base_url,
            text_model=settings.openrouter_text_model,
            vision_model=settings.openrouter_vision_model,
            extra_headers={"X-Title": settings.openrouter_app_title},
            timeout=settings.provider_timeout_seconds,
            circuit_breaker=breaker(OPENROUTER),
            **resilience,
        ),
        DASHSCOPE: lambda: OpenAICompatProvider(
            name=DASHSCOPE,
            api_key=settings.api_key_for(DASHSCOPE),
            base_url=settings.dashscope_base_url,
            text_model=settings.dashscope_model,
            vision_model=settings.dashscope_model,
            timeout=settings.provider_timeout_seconds,
            circuit_breaker=breaker(DASHSCOPE),
            **resilience,
        ),
    }
    return [factories[name]() for name in settings.provider_order_list]


def build_orchestrator(
    settings: Settings,
    clock: Callable[[], float] = time.monotonic,
    store: Optional[ContextStore] = None,
) -> FallbackOrchestrator:
    """
    Wire one orchestrator from settings.

    Args:
        clock: Monotonic time source for cache, rate limiter and breakers.
        store: Context source; defaults to the SQL store on the app engine.
    """
    if store is None:
        from studyaid.database import async_session_factory
        from studyaid.services.context_store import SqlContextStore

        store = SqlContextStore(async_session_factory)

    extractor = ConceptExtractor(chunk_size=settings.chunk_target_size)
    image_resolver = ImageResolver(
        storage_root=settings.storage_root,
        url_template=settings.image_url_template,
        max_bytes=settings.max_image_bytes,
    )
    providers = build_providers(settings, image_resolver, clock)

    orchestrator = FallbackOrchestrator(
        providers=providers,
        local=LocalHeuristicStrategy(extractor),
        normalizer=ParameterNormalizer(
            min_tokens=settings.min_tokens,
            max_tokens=settings.max_tokens_upper,
            default_max_tokens=settings.default_max_tokens,
            default_temperature=settings.default_temperature,
            default_top_p=settings.default_top_p,
        ),
        rate_limiter=ProviderRateLimiter(
            max_requests=settings.provider_rate_limit_requests,
            window_seconds=settings.provider_rate_limit_window,
            clock=clock,
        ),
        cache=ResponseCache(
            ttl_seconds=settings.cache_ttl_seconds,
            max_entries=settings.cache_max_entries,
            clock=clock,
        ),
        assembler=ContextAssembler(
            store,
            item_chars=settings.context_item_chars,
            total_chars=settings.context_total_chars,
            max_sessions=settings.context_max_sessions,
            max_chat_entries=settings.context_max_chat_entries,
        ),
        parser=ResponseParser(extractor),
        image_resolver=image_resolver,
        provider_timeout=settings.provider_timeout_seconds,
        chunk_size=settings.chunk_target_size,
        max_prompt_chars=settings.max_prompt_chars,
    )
    logger.info(
        "Generation pipeline ready: order=%s configured=%s",
        ",".join(p.name for p in providers) or "none",
        ",".join(p.name for p in orchestrator.configured_providers()) or "none",
    )
    return orchestrator


def get_orchestrator(request: Request) -> FallbackOrchestrator:
    """FastAPI dependency: the orchestrator built during the app lifespan."""
    return request.app.state.orchestrator
