"""
StudyAid Backend — Fallback Orchestrator Tests
================================================

What we test:
    ✅ First provider success is tagged with its name
    ✅ Failures (exception, empty, malformed, timeout, open circuit) cascade
    ✅ Total failure ends at the local heuristic with low confidence
    ✅ Cache hits skip providers and are marked from_cache
    ✅ No configured provider → ConfigurationError with zero calls
    ✅ Rate limits: first provider raises, later providers are skipped
    ✅ OCR eligibility depends on an image and a vision model
    ✅ RAG chat grounds prompts and fallback replies in context
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from studyaid.exceptions import ConfigurationError, RateLimitExceededError
from studyaid.pipeline.context import EvidenceSnippet, SessionRecord
from studyaid.pipeline.types import (
    GenerationRequest,
    OcrArtifact,
    OperationKind,
    QuizArtifact,
)
from studyaid.providers.circuit_breaker import CircuitBreaker
from studyaid.providers.images import ResolvedImage
from studyaid.providers.local import LOCAL_HEURISTIC


def request(
    kind=OperationKind.SUMMARIZE,
    text="Mitosis divides one cell into two identical cells.",
    image_ref=None,
    **kwargs,
):
    return GenerationRequest(
        operation_kind=kind,
        input_payload={"text": text, "image_ref": image_ref},
        **kwargs,
    )


VALID_QUIZ = json.dumps({
    "questions": [{
        "question": "What does mitosis produce?",
        "options": ["Two identical cells", "Four gametes", "One cell", "Spores"],
        "correct_index": 0,
    }]
})


class TestCascade:
    @pytest.mark.asyncio
    async def test_first_provider_wins(self, make_orchestrator, make_provider):
        gemini = make_provider("gemini", "A summary of mitosis.")
        openrouter = make_provider("openrouter", "unused")
        result = await make_orchestrator([gemini, openrouter]).generate(request())

        assert result.success is True
        assert result.payload == "A summary of mitosis."
        assert result.method_used == "gemini"
        assert result.confidence == 0.9
        assert result.attempted == ()
        assert result.from_cache is False
        assert openrouter.calls == 0

    @pytest.mark.asyncio
    async def test_exception_moves_to_next(self, make_orchestrator, make_provider):
        gemini = make_provider("gemini", RuntimeError("503 from upstream"))
        openrouter = make_provider("openrouter", "Fallback summary.")
        result = await make_orchestrator([gemini, openrouter]).generate(request())

        assert result.method_used == "openrouter"
        assert result.confidence == 0.85
        assert result.attempted == ("gemini",)

    @pytest.mark.asyncio
    async def test_empty_response_moves_to_next(self, make_orchestrator, make_provider):
        gemini = make_provider("gemini", None)
        openrouter = make_provider("openrouter", "Fallback summary.")
        result = await make_orchestrator([gemini, openrouter]).generate(request())
        assert result.method_used == "openrouter"

    @pytest.mark.asyncio
    async def test_malformed_quiz_moves_to_next(self, make_orchestrator, make_provider):
        gemini = make_provider("gemini", "Sure! Here's a quiz about cells.")
        dashscope = make_provider("dashscope", VALID_QUIZ)
        result = await make_orchestrator([gemini, dashscope]).generate(request(OperationKind.QUIZ_GEN))

        assert result.method_used == "dashscope"
        assert isinstance(result.payload, QuizArtifact)
        assert result.attempted == ("gemini",)

    @pytest.mark.asyncio
    async def test_timeout_moves_to_next(self, make_orchestrator, make_provider):
        gemini = make_provider("gemini", 5.0)
        openrouter = make_provider("openrouter", "On time.")
        result = await make_orchestrator([gemini, openrouter], timeout=0.05).generate(request())

        assert result.method_used == "openrouter"
        assert result.attempted == ("gemini",)

    @pytest.mark.asyncio
    async def test_open_circuit_skips_call(self, make_orchestrator, make_provider):
        gemini = make_provider("gemini", RuntimeError("down"))
        gemini.circuit_breaker = CircuitBreaker(name="gemini", failure_threshold=1)
        openrouter = make_provider("openrouter", "Served.")
        orchestrator = make_orchestrator([gemini, openrouter])

        await orchestrator.generate(request(text="first request text"))
        result = await orchestrator.generate(request(text="second request text"))

        assert gemini.calls == 1
        assert result.method_used == "openrouter"
        assert result.attempted == ("gemini",)

    @pytest.mark.asyncio
    async def test_all_fail_uses_local_quiz(self, make_orchestrator, make_provider, sample_text):
        providers = [
            make_provider("gemini", RuntimeError("boom")),
            make_provider("openrouter", "not json"),
            make_provider("dashscope", '{"questions": []}'),
        ]
        result = await make_orchestrator(providers).generate(request(OperationKind.QUIZ_GEN, sample_text))

        assert result.success is True
        assert result.method_used == LOCAL_HEURISTIC
        assert result.confidence == 0.4
        assert result.attempted == ("gemini", "openrouter", "dashscope")
        assert isinstance(result.payload, QuizArtifact)
        assert len(result.payload.questions) == 5
        assert result.payload.questions[0].correct_index == 2

    @pytest.mark.asyncio
    async def test_local_placeholder_confidence(self, make_orchestrator, make_provider):
        gemini = make_provider("gemini", RuntimeError("boom"))
        result = await make_orchestrator([gemini]).generate(request(OperationKind.MINDMAP_GEN, "a b c"))

        assert result.method_used == LOCAL_HEURISTIC
        assert result.confidence == 0.1
        assert result.payload.key_concepts == ("content", "analysis", "information")

    @pytest.mark.asyncio
    async def test_metadata(self, make_orchestrator, make_provider, sample_text):
        result = await make_orchestrator([make_provider("gemini", "ok")]).generate(
            request(text=sample_text)
        )
        assert result.metadata["context"] == {"session": 0, "evidence": 0, "chat": 0}
        assert result.metadata["chunks"] == 1
        assert result.metadata["generation_id"]
        assert "rate_limited" not in result.metadata

    @pytest.mark.asyncio
    async def test_parameters_normalized_for_provider(self, make_orchestrator, make_provider):
        gemini = make_provider("gemini", "ok")
        await make_orchestrator([gemini]).generate(
            request(parameters={"max_tokens": 10**6, "temperature": 9})
        )
        assert gemini.jobs[0].params.max_tokens == 8000
        assert gemini.jobs[0].params.temperature == 2.0


class TestCache:
    @pytest.mark.asyncio
    async def test_repeat_served_from_cache(self, make_orchestrator, make_provider):
        gemini = make_provider("gemini", "Cached summary.")
        orchestrator = make_orchestrator([gemini])

        first = await orchestrator.generate(request(text="Cells  divide."))
        second = await orchestrator.generate(request(text="Cells divide."))

        assert gemini.calls == 1
        assert second.from_cache is True
        assert second.payload == first.payload
        assert second.method_used == "gemini"

    @pytest.mark.asyncio
    async def test_mutating_a_result_leaves_cache_intact(self, make_orchestrator, make_provider):
        orchestrator = make_orchestrator([make_provider("gemini", "Summary.")])

        first = await orchestrator.generate(request())
        chunks = first.metadata["chunks"]
        first.metadata["chunks"] = 999
        second = await orchestrator.generate(request())
        second.metadata["chunks"] = 1000
        third = await orchestrator.generate(request())

        assert second.from_cache is True
        assert third.metadata["chunks"] == chunks

    @pytest.mark.asyncio
    async def test_expired_entry_regenerates(self, make_orchestrator, make_provider, clock):
        gemini = make_provider("gemini", "Summary.")
        orchestrator = make_orchestrator([gemini], cache_ttl=10)

        await orchestrator.generate(request())
        clock.advance(11)
        result = await orchestrator.generate(request())

        assert gemini.calls == 2
        assert result.from_cache is False

    @pytest.mark.asyncio
    async def test_local_results_cached(self, make_orchestrator, make_provider):
        gemini = make_provider("gemini", RuntimeError("down"))
        orchestrator = make_orchestrator([gemini])

        await orchestrator.generate(request())
        result = await orchestrator.generate(request())

        assert gemini.calls == 1
        assert result.from_cache is True
        assert result.method_used == LOCAL_HEURISTIC


class TestConfiguration:
    @pytest.mark.asyncio
    async def test_no_credentials(self, make_orchestrator, make_provider):
        gemini = make_provider("gemini", configured=False)
        openrouter = make_provider("openrouter", configured=False)

        with pytest.raises(ConfigurationError) as exc_info:
            await make_orchestrator([gemini, openrouter]).generate(request())

        assert exc_info.value.missing == ["gemini", "openrouter"]
        assert gemini.calls == 0
        assert openrouter.calls == 0

    @pytest.mark.asyncio
    async def test_unconfigured_providers_not_attempted(self, make_orchestrator, make_provider):
        gemini = make_provider("gemini", configured=False)
        openrouter = make_provider("openrouter", "Served.")
        result = await make_orchestrator([gemini, openrouter]).generate(request())

        assert result.method_used == "openrouter"
        assert result.attempted == ()
        assert gemini.calls == 0


class TestRateLimits:
    @pytest.mark.asyncio
    async def test_first_provider_exhausted_raises(self, make_orchestrator, make_provider):
        gemini = make_provider("gemini", "ok")
        orchestrator = make_orchestrator([gemini], rate_limit=1)

        await orchestrator.generate(request(text="first request text"))
        with pytest.raises(RateLimitExceededError) as exc_info:
            await orchestrator.generate(request(text="second request text"))

        assert exc_info.value.provider == "gemini"
        assert exc_info.value.retry_after == 60
        assert gemini.calls == 1

    @pytest.mark.asyncio
    async def test_cache_hit_bypasses_rate_limit(self, make_orchestrator, make_provider):
        orchestrator = make_orchestrator([make_provider("gemini", "ok")], rate_limit=1)

        await orchestrator.generate(request())
        result = await orchestrator.generate(request())
        assert result.from_cache is True

    @pytest.mark.asyncio
    async def test_later_provider_skipped(self, make_orchestrator, make_provider):
        gemini = make_provider("gemini", RuntimeError("down"))
        openrouter = make_provider("openrouter", "unused")
        orchestrator = make_orchestrator([gemini, openrouter], rate_limit=1)
        orchestrator.rate_limiter.try_consume("openrouter")

        result = await orchestrator.generate(request())

        assert openrouter.calls == 0
        assert result.method_used == LOCAL_HEURISTIC
        assert result.attempted == ("gemini",)
        assert result.metadata["rate_limited"] == ["openrouter"]

    @pytest.mark.asyncio
    async def test_window_reset_allows_again(self, make_orchestrator, make_provider, clock):
        orchestrator = make_orchestrator([make_provider("gemini", "ok")], rate_limit=1)

        await orchestrator.generate(request(text="first request text"))
        clock.advance(60)
        result = await orchestrator.generate(request(text="second request text"))
        assert result.method_used == "gemini"


class TestOcr:
    @pytest.mark.asyncio
    async def test_no_image_goes_local(self, make_orchestrator, make_provider):
        gemini = make_provider("gemini", "unused")
        result = await make_orchestrator([gemini]).generate(
            request(OperationKind.OCR, "Mitosis has four phases")
        )

        assert gemini.calls == 0
        assert result.method_used == LOCAL_HEURISTIC
        assert result.attempted == ()
        assert isinstance(result.payload, OcrArtifact)
        assert result.metadata["evidence_count"] == 1

    @pytest.mark.asyncio
    async def test_text_only_model_not_eligible(self, make_orchestrator, make_provider):
        text_only = make_provider("openrouter", "unused", vision=False)
        vision = make_provider("gemini", "Prophase\nMetaphase")
        resolver = MagicMock()
        resolver.resolve = AsyncMock(return_value=ResolvedImage(url="https://cdn.example/p.png"))
        resolver.aclose = AsyncMock()

        result = await make_orchestrator([text_only, vision], image_resolver=resolver).generate(
            request(OperationKind.OCR, None, image_ref="https://cdn.example/p.png")
        )

        assert text_only.calls == 0
        assert result.method_used == "gemini"
        assert result.payload.text == "Prophase\nMetaphase"
        assert vision.jobs[0].image_url == "https://cdn.example/p.png"
        assert 0.3 <= result.confidence <= 1.0

    @pytest.mark.asyncio
    async def test_image_from_evidence(self, make_orchestrator, make_provider, context_store):
        context_store.evidence = {"img-1": [EvidenceSnippet(text="Old text", image_url="/uploads/a.png")]}
        resolver = MagicMock()
        resolver.resolve = AsyncMock(return_value=ResolvedImage(data=b"png", mime_type="image/png"))
        gemini = make_provider("gemini", "Extracted text")

        await make_orchestrator([gemini], image_resolver=resolver).generate(
            request(OperationKind.OCR, None, context_refs={"image_id": "img-1"})
        )

        resolver.resolve.assert_awaited_once_with("/uploads/a.png")
        assert gemini.jobs[0].image_bytes == b"png"


class TestRagChat:
    @pytest.mark.asyncio
    async def test_prompt_includes_context(self, make_orchestrator, make_provider, context_store):
        context_store.evidence = {"img-1": [EvidenceSnippet(text="Mitosis has four phases", confidence=0.9)]}
        gemini = make_provider("gemini", "Mitosis has four phases: ...")

        result = await make_orchestrator([gemini]).generate(
            request(OperationKind.RAG_CHAT, "How many phases?", context_refs={"image_id": "img-1"})
        )

        assert result.method_used == "gemini"
        assert "Mitosis has four phases" in gemini.jobs[0].prompt
        assert "How many phases?" in gemini.jobs[0].prompt
        assert result.metadata["context"]["evidence"] == 1

    @pytest.mark.asyncio
    async def test_context_appears_once_in_prompt(self, make_orchestrator, make_provider, context_store):
        context_store.evidence = {"img-1": [EvidenceSnippet(text="Mitosis has four phases", confidence=0.9)]}
        context_store.sessions = [SessionRecord(session_id="s1", title="Cell Biology", concepts=("mitosis",))]
        gemini = make_provider("gemini", "Four.")

        await make_orchestrator([gemini]).generate(
            request(
                OperationKind.RAG_CHAT,
                "How many phases?",
                context_refs={"image_id": "img-1", "session_id": "s1"},
            )
        )

        prompt = gemini.jobs[0].prompt
        assert prompt.count("Mitosis has four phases") == 1
        assert prompt.count("Cell Biology") == 1

    @pytest.mark.asyncio
    async def test_summary_of_stored_evidence_lists_it_once(self, make_orchestrator, make_provider, context_store):
        context_store.evidence = {"img-1": [EvidenceSnippet(text="Mitosis has four phases", confidence=0.9)]}
        gemini = make_provider("gemini", "Summary.")

        await make_orchestrator([gemini]).generate(
            request(OperationKind.SUMMARIZE, "", context_refs={"image_id": "img-1"})
        )

        assert gemini.jobs[0].prompt.count("Mitosis has four phases") == 1

    @pytest.mark.asyncio
    async def test_fallback_reply_with_context(self, make_orchestrator, make_provider, context_store):
        context_store.evidence = {"img-1": [EvidenceSnippet(text="Mitosis has four phases")]}
        gemini = make_provider("gemini", RuntimeError("down"))

        result = await make_orchestrator([gemini]).generate(
            request(OperationKind.RAG_CHAT, "How many phases?", context_refs={"image_id": "img-1"})
        )

        assert result.method_used == LOCAL_HEURISTIC
        assert result.metadata["reply_variant"] == "fallback-with-context"
        assert "How many phases?" in result.payload

    @pytest.mark.asyncio
    async def test_fallback_reply_without_context(self, make_orchestrator, make_provider):
        gemini = make_provider("gemini", RuntimeError("down"))
        result = await make_orchestrator([gemini]).generate(request(OperationKind.RAG_CHAT, "Hello?"))

        assert result.metadata["reply_variant"] == "fallback-no-context"
        assert result.confidence == 0.1

    @pytest.mark.asyncio
    async def test_context_failure_still_answers(self, make_orchestrator, make_provider, context_store):
        context_store.fail = {"evidence_for_image", "recent_chat", "recent_sessions"}
        gemini = make_provider("gemini", "Answer.")

        result = await make_orchestrator([gemini]).generate(
            request(OperationKind.RAG_CHAT, "Hi", context_refs={"image_id": "img-1", "user_id": "u1"})
        )
        assert result.method_used == "gemini"
        assert result.metadata["context"] == {"session": 0, "evidence": 0, "chat": 0}


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_aclose_closes_resolver(self, make_orchestrator, make_provider):
        resolver = MagicMock()
        resolver.aclose = AsyncMock()
        await make_orchestrator([make_provider("gemini")], image_resolver=resolver).aclose()
        resolver.aclose.assert_awaited_once()
