"""
StudyAid Backend — Fallback Orchestrator
==========================================

What:  The top-level coordinator of content generation. Given a
       GenerationRequest it returns a GenerationResult, trying remote
       providers in priority order and ending at the local heuristic.
Why:   Every provider is unreliable and rate limited. Callers must get a
       structurally valid result regardless, tagged with who produced it.
How:   A fixed sequence of steps per request (see Flow). Provider failures of
       any kind are soft: logged with the method tag, then the next strategy
       runs. Only ConfigurationError and RateLimitExceededError ever escape.
Who:   Built once per process by services.generation.build_orchestrator and
       injected into the generate route.

Flow:
    1. No remote provider has credentials      → ConfigurationError
    2. Normalize parameters, fingerprint, cache → hit returns from_cache=True
    3. Assemble context, resolve image, pick eligible providers
    4. First eligible provider's budget spent  → RateLimitExceededError
    5. For each eligible provider, sequentially:
         build prompt → attempt under asyncio.wait_for → strict parse
         (later providers whose budget is spent are skipped)
    6. Nothing succeeded                        → local heuristic
    7. Cache the result and return it

    Providers that cannot serve the request (OCR without an image, OCR on a
    text-only model) are never attempted and do not appear in `attempted`.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence

from studyaid.exceptions import ConfigurationError, ProviderError, RateLimitExceededError
from studyaid.pipeline.cache import ResponseCache, fingerprint
from studyaid.pipeline.chunker import bounded_text, chunk
from studyaid.pipeline.context import ContextAssembler
from studyaid.pipeline.extractor import text_confidence
from studyaid.pipeline.normalizer import ParameterNormalizer
from studyaid.pipeline.parsing import ParseFailure, ResponseParser
from studyaid.pipeline.prompts import build_prompt
from studyaid.pipeline.rate_limiter import ProviderRateLimiter
from studyaid.pipeline.types import (
    ContextBundle,
    GenerationRequest,
    GenerationResult,
    NormalizedParams,
    OcrArtifact,
    OperationKind,
    Payload,
    ProviderJob,
    SourceKind,
)
from studyaid.providers.base import GenerationProvider
from studyaid.providers.images import ImageResolver, ResolvedImage
from studyaid.providers.local import LocalHeuristicStrategy

logger = logging.getLogger(__name__)

# Confidence reported for non-OCR provider output, by method tag
PROVIDER_CONFIDENCE = {"gemini": 0.9}
DEFAULT_PROVIDER_CONFIDENCE = 0.85


class FallbackOrchestrator:
    """
    Ordered-strategy executor.

    All collaborators are injected; the orchestrator owns no global state.
    `providers` is the static priority order (most capable first).
    """

    def __init__(
        self,
        providers: Sequence[GenerationProvider],
        local: LocalHeuristicStrategy,
        normalizer: ParameterNormalizer,
        rate_limiter: ProviderRateLimiter,
        cache: ResponseCache,
        assembler: ContextAssembler,
        parser: ResponseParser,
        image_resolver: Optional[ImageResolver] = None,
        provider_timeout: float = 30.0,
        chunk_size: int = 500,
        max_prompt_chars: int = 6000,
    ):
        self.providers = list(providers)
        self.local = local
        self.normalizer = normalizer
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.assembler = assembler
        self.parser = parser
        self.image_resolver = image_resolver
        self.provider_timeout = provider_timeout
        self.chunk_size = chunk_size
        self.max_prompt_chars = max_prompt_chars

    # ── Public API ────────────────────────────────────────────────────────

    def configured_providers(self) -> List[GenerationProvider]:
        return [p for p in self.providers if p.is_configured()]

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Produce a result for `request`.

        Raises:
            ConfigurationError: No remote provider has credentials.
            RateLimitExceededError: The first eligible provider's budget is spent.
        """
        generation_id = str(uuid.uuid4())[:8]
        started = time.perf_counter()
        kind = request.operation_kind

        configured = self.configured_providers()
        if not configured:
            logger.error("[%s] No provider credentials configured for %s", generation_id, kind.value)
            raise ConfigurationError(
                message="No AI provider is configured. Set at least one provider API key.",
                missing=[p.name for p in self.providers],
            )

        params = self.normalizer.normalize(request.parameters)
        key = fingerprint(request, params)
        cached = self.cache.get(key)
        if cached is not None:
            logger.info("[%s] Cache hit for %s (%s)", generation_id, kind.value, cached.method_used)
            return cached.model_copy(update={"from_cache": True})

        bundle = await self._assemble_context(request)
        image = await self._resolve_image(request, bundle)
        has_image = image is not None
        eligible = [p for p in configured if p.supports(kind, has_image)]

        if eligible:
            first = eligible[0]
            if not self.rate_limiter.try_consume(first.provider_key):
                retry_after = self.rate_limiter.retry_after(first.provider_key)
                raise RateLimitExceededError(provider=first.provider_key, retry_after=retry_after)

        question = (request.input_payload.text or "").strip() if kind == OperationKind.RAG_CHAT else ""
        source_text = self._source_text(request, bundle)
        prompt_text = bounded_text(source_text, self.max_prompt_chars, self.chunk_size)

        attempted: List[str] = []
        skipped: List[str] = []
        result: Optional[GenerationResult] = None

        for index, provider in enumerate(eligible):
            if index > 0 and not self.rate_limiter.try_consume(provider.provider_key):
                logger.warning("[%s] Skipping %s: rate limit reached", generation_id, provider.name)
                skipped.append(provider.name)
                continue

            payload = await self._attempt(
                generation_id, provider, request, params, prompt_text, question, bundle, image, source_text
            )
            if payload is None:
                attempted.append(provider.name)
                continue

            result = GenerationResult(
                success=True,
                payload=payload,
                method_used=provider.name,
                confidence=self._confidence(provider.name, payload),
                attempted=tuple(attempted),
                metadata=self._metadata(generation_id, bundle, source_text, skipped),
                processing_time_ms=self._elapsed_ms(started),
            )
            break

        if result is None:
            outcome = self.local.produce(kind, source_text, question, bundle)
            metadata = self._metadata(generation_id, bundle, source_text, skipped)
            metadata.update(outcome.metadata)
            result = GenerationResult(
                success=True,
                payload=outcome.payload,
                method_used=self.local.name,
                confidence=outcome.confidence,
                attempted=tuple(attempted),
                metadata=metadata,
                processing_time_ms=self._elapsed_ms(started),
            )
            logger.warning(
                "[%s] All providers failed for %s (attempted=%s); using %s",
                generation_id,
                kind.value,
                ",".join(attempted) or "none",
                self.local.name,
            )

        self.cache.set(key, result)
        logger.info(
            "[%s] %s produced by %s in %dms (confidence=%.2f)",
            generation_id,
            kind.value,
            result.method_used,
            result.processing_time_ms,
            result.confidence,
        )
        return result

    # ── Steps ─────────────────────────────────────────────────────────────

    async def _attempt(
        self,
        generation_id: str,
        provider: GenerationProvider,
        request: GenerationRequest,
        params: NormalizedParams,
        prompt_text: str,
        question: str,
        bundle: Optional[ContextBundle],
        image: Optional[ResolvedImage],
        source_text: str,
    ) -> Optional[Payload]:
        """One provider attempt. Returns the parsed payload, or None on any soft failure."""
        kind = request.operation_kind
        # Material drawn from the bundle must reach the prompt once, as text or as context
        if kind == OperationKind.RAG_CHAT:
            prompt_text = ""
        elif not (request.input_payload.text or "").strip():
            bundle = None
        job = self._build_job(provider, kind, params, prompt_text, question, bundle, image)
        try:
            response = await asyncio.wait_for(provider.attempt(job), timeout=self.provider_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "[%s] %s timed out after %.0fs", generation_id, provider.name, self.provider_timeout
            )
            return None
        except ProviderError as e:
            logger.warning("[%s] %s failed: %s", generation_id, provider.name, e.message)
            return None
        except Exception as e:
            logger.error(
                "[%s] %s raised unexpectedly: %s", generation_id, provider.name, str(e), exc_info=True
            )
            return None

        if not response.success:
            logger.warning("[%s] %s returned an empty response", generation_id, provider.name)
            return None

        outcome = self.parser.parse(kind, response.text, provider.name, source_text)
        if isinstance(outcome, ParseFailure):
            logger.warning(
                "[%s] %s response rejected: %s", generation_id, provider.name, outcome.reason
            )
            return None
        return outcome.value

    def _build_job(
        self,
        provider: GenerationProvider,
        kind: OperationKind,
        params: NormalizedParams,
        prompt_text: str,
        question: str,
        bundle: Optional[ContextBundle],
        image: Optional[ResolvedImage],
    ) -> ProviderJob:
        send_image = image is not None and provider.vision_capable
        rendered = build_prompt(
            kind,
            text=prompt_text,
            question=question,
            bundle=bundle,
            has_image=send_image,
            quiz_count=self.local.extractor.max_questions,
            mindmap_topics=self.local.extractor.max_topics,
            mindmap_subtopics=self.local.extractor.subconcepts_per_topic,
        )
        return ProviderJob(
            operation_kind=kind,
            prompt=rendered.prompt,
            system_prompt=rendered.system_prompt,
            params=params,
            image_url=image.url if send_image else None,
            image_bytes=image.data if send_image else None,
            image_mime_type=image.mime_type if send_image else "image/jpeg",
        )

    async def _assemble_context(self, request: GenerationRequest) -> Optional[ContextBundle]:
        refs = request.context_refs
        if request.operation_kind != OperationKind.RAG_CHAT and not (refs.session_id or refs.image_id):
            return None
        return await self.assembler.assemble(refs)

    async def _resolve_image(
        self, request: GenerationRequest, bundle: Optional[ContextBundle]
    ) -> Optional[ResolvedImage]:
        ref = request.input_payload.image_ref or (bundle.image_url if bundle else None)
        if not ref or self.image_resolver is None:
            return None
        try:
            return await self.image_resolver.resolve(ref)
        except Exception as e:
            logger.warning("Image resolution failed for %s, continuing text-only: %s", ref, str(e))
            return None

    @staticmethod
    def _source_text(request: GenerationRequest, bundle: Optional[ContextBundle]) -> str:
        """
        Material the operation works on: the input text, or for chat (and for
        requests without text) the evidence and session text from context.
        """
        text = (request.input_payload.text or "").strip()
        if request.operation_kind != OperationKind.RAG_CHAT and text:
            return text
        if bundle is None:
            return ""
        parts = [item.text for item in bundle.by_kind(SourceKind.EVIDENCE)]
        parts += [item.text for item in bundle.by_kind(SourceKind.SESSION)]
        return "\n".join(parts)

    # ── Result Helpers ────────────────────────────────────────────────────

    @staticmethod
    def _confidence(method: str, payload: Payload) -> float:
        if isinstance(payload, OcrArtifact):
            return text_confidence(payload.text)
        return PROVIDER_CONFIDENCE.get(method, DEFAULT_PROVIDER_CONFIDENCE)

    def _metadata(
        self,
        generation_id: str,
        bundle: Optional[ContextBundle],
        source_text: str,
        skipped: List[str],
    ) -> Dict[str, Any]:
        counts = {kind.value: 0 for kind in SourceKind}
        if bundle is not None:
            counts.update({kind.value: count for kind, count in bundle.counts.items()})
        metadata: Dict[str, Any] = {
            "generation_id": generation_id,
            "context": counts,
            "chunks": len(chunk(source_text, self.chunk_size)),
        }
        if skipped:
            metadata["rate_limited"] = list(skipped)
        return metadata

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return max(0, int((time.perf_counter() - started) * 1000))

    async def aclose(self) -> None:
        """Close provider and resolver network clients."""
        for provider in self.providers:
            await provider.aclose()
        if self.image_resolver is not None:
            await self.image_resolver.aclose()
