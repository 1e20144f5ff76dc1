"""
StudyAid Backend — Provider Tests
===================================

What we test:
    ✅ Circuit breaker state transitions (closed → open → half-open → closed)
    ✅ GenerationProvider.attempt wraps failures in ProviderError
    ✅ Non-retryable errors are not retried
    ✅ Gemini: prompt assembly, generation config, inline images
    ✅ OpenAI-compatible: payload shape, vision content, HTTP error mapping
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from studyaid.exceptions import CircuitBreakerOpenError, ProviderError
from studyaid.pipeline.normalizer import ParameterNormalizer
from studyaid.pipeline.types import OperationKind, ProviderJob
from studyaid.providers.base import NonRetryableError
from studyaid.providers.circuit_breaker import CircuitBreaker
from studyaid.providers.images import ResolvedImage
from studyaid.providers.openai_compat import OpenAICompatProvider


def make_job(kind=OperationKind.SUMMARIZE, **kwargs) -> ProviderJob:
    return ProviderJob(
        operation_kind=kind,
        prompt=kwargs.pop("prompt", "Summarize: cells divide."),
        system_prompt=kwargs.pop("system_prompt", "You are a study assistant."),
        params=ParameterNormalizer().normalize({"max_tokens": 256, "temperature": 0.3, "top_p": 0.9}),
        **kwargs,
    )


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════


class TestCircuitBreaker:
    def test_initial_state_closed(self):
        """New circuit breaker should be in CLOSED state."""
        cb = CircuitBreaker(failure_threshold=3)
        assert cb.state == CircuitBreaker.CLOSED
        assert cb.can_execute() is True

    def test_opens_after_threshold(self):
        """Circuit should OPEN after reaching failure threshold."""
        cb = CircuitBreaker(name="gemini", failure_threshold=3)
        for _ in range(3):
            cb.record_failure()
        assert cb.state == CircuitBreaker.OPEN

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            cb.can_execute()
        assert exc_info.value.method == "gemini"

    def test_half_open_after_recovery(self, clock):
        """Circuit should go HALF_OPEN after the recovery timeout."""
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=30, clock=clock)
        cb.record_failure()
        clock.advance(30)
        assert cb.can_execute() is True
        assert cb.state == CircuitBreaker.HALF_OPEN

    def test_half_open_failure_reopens(self, clock):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=30, clock=clock)
        cb.record_failure()
        clock.advance(30)
        cb.can_execute()
        cb.record_failure()
        assert cb.state == CircuitBreaker.OPEN

    def test_success_resets(self):
        """Successful call should reset failure count and close circuit."""
        cb = CircuitBreaker(failure_threshold=3)
        cb.record_failure()
        cb.record_failure()
        cb.record_success()
        assert cb.failure_count == 0
        assert cb.state == CircuitBreaker.CLOSED


# ══════════════════════════════════════════════════════════════════════════
# Base Provider
# ══════════════════════════════════════════════════════════════════════════


class TestAttempt:
    @pytest.mark.asyncio
    async def test_failure_becomes_provider_error(self, make_provider):
        provider = make_provider("gemini", RuntimeError("boom"))
        with pytest.raises(ProviderError) as exc_info:
            await provider.attempt(make_job())
        assert exc_info.value.method == "gemini"
        assert provider.circuit_breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self, make_provider):
        provider = make_provider("gemini", RuntimeError("flaky"), "Recovered.")
        provider.retry_attempts = 2
        with patch("studyaid.providers.base.wait_exponential_jitter") as mock_wait:
            mock_wait.return_value = lambda retry_state: 0
            result = await provider.attempt(make_job())
        assert result.text == "Recovered."
        assert provider.calls == 2
        assert provider.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_non_retryable_not_retried(self, make_provider):
        provider = make_provider("gemini", NonRetryableError("401"))
        provider.retry_attempts = 3
        with pytest.raises(ProviderError):
            await provider.attempt(make_job())
        assert provider.calls == 1

    @pytest.mark.asyncio
    async def test_open_circuit_rejects(self, make_provider):
        provider = make_provider("gemini", "unused")
        provider.circuit_breaker = CircuitBreaker(name="gemini", failure_threshold=1)
        provider.circuit_breaker.record_failure()
        with pytest.raises(CircuitBreakerOpenError):
            await provider.attempt(make_job())
        assert provider.calls == 0

    def test_ocr_needs_image_and_vision(self, make_provider):
        assert make_provider("a", vision=True).supports(OperationKind.OCR, has_image=True)
        assert not make_provider("b", vision=True).supports(OperationKind.OCR, has_image=False)
        assert not make_provider("c", vision=False).supports(OperationKind.OCR, has_image=True)
        assert make_provider("d", vision=False).supports(OperationKind.QUIZ_GEN, has_image=False)


# ══════════════════════════════════════════════════════════════════════════
# Gemini
# ══════════════════════════════════════════════════════════════════════════


class TestGeminiProvider:
    def _provider(self, mock_genai, text="Generated text", **kwargs):
        from studyaid.providers.gemini import GeminiProvider

        mock_response = MagicMock()
        mock_response.text = text
        mock_model = MagicMock()
        mock_model.generate_content_async = AsyncMock(return_value=mock_response)
        mock_genai.GenerativeModel.return_value = mock_model
        provider = GeminiProvider(api_key="test-key", retry_attempts=1, **kwargs)
        return provider, mock_model

    @pytest.mark.asyncio
    async def test_successful_generation(self):
        """Text job sends system + user prompt with normalized config."""
        with patch("studyaid.providers.gemini.genai") as mock_genai:
            provider, mock_model = self._provider(mock_genai)
            result = await provider.attempt(make_job())

        mock_genai.configure.assert_called_once_with(api_key="test-key")
        assert result.success is True
        assert result.text == "Generated text"
        args, kwargs = mock_model.generate_content_async.call_args
        assert args[0] == ["You are a study assistant.", "Summarize: cells divide."]
        assert kwargs["generation_config"] == {"max_output_tokens": 256, "temperature": 0.3, "top_p": 0.9}

    @pytest.mark.asyncio
    async def test_inline_image_bytes(self):
        with patch("studyaid.providers.gemini.genai") as mock_genai:
            provider, mock_model = self._provider(mock_genai)
            await provider.attempt(
                make_job(OperationKind.OCR, system_prompt=None, image_bytes=b"\x89PNG", image_mime_type="image/png")
            )

        contents = mock_model.generate_content_async.call_args[0][0]
        assert contents[-1] == {"mime_type": "image/png", "data": b"\x89PNG"}

    @pytest.mark.asyncio
    async def test_image_url_downloaded(self):
        resolver = MagicMock()
        resolver.fetch_bytes = AsyncMock(return_value=ResolvedImage(data=b"jpg", mime_type="image/jpeg"))
        with patch("studyaid.providers.gemini.genai") as mock_genai:
            provider, mock_model = self._provider(mock_genai, image_resolver=resolver)
            await provider.attempt(make_job(OperationKind.OCR, image_url="https://cdn.example/a.jpg"))

        resolver.fetch_bytes.assert_awaited_once_with("https://cdn.example/a.jpg")
        assert mock_model.generate_content_async.call_args[0][0][-1]["data"] == b"jpg"

    @pytest.mark.asyncio
    async def test_undownloadable_image_fails(self):
        with patch("studyaid.providers.gemini.genai") as mock_genai:
            provider, mock_model = self._provider(mock_genai)
            with pytest.raises(ProviderError):
                await provider.attempt(make_job(OperationKind.OCR, image_url="https://cdn.example/a.jpg"))
        mock_model.generate_content_async.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_text_unsuccessful(self):
        with patch("studyaid.providers.gemini.genai") as mock_genai:
            provider, _ = self._provider(mock_genai, text="")
            result = await provider.attempt(make_job())
        assert result.success is False

    def test_unconfigured_without_key(self):
        from studyaid.providers.gemini import GeminiProvider

        with patch("studyaid.providers.gemini.genai") as mock_genai:
            provider = GeminiProvider(api_key="")
        mock_genai.configure.assert_not_called()
        assert provider.is_configured() is False


# ══════════════════════════════════════════════════════════════════════════
# OpenAI-compatible
# ══════════════════════════════════════════════════════════════════════════


def compat_provider(handler, vision_model="vision-model", **kwargs) -> OpenAICompatProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAICompatProvider(
        name="openrouter",
        api_key="or-key",
        base_url="https://openrouter.example/api/v1/",
        text_model="text-model",
        vision_model=vision_model,
        extra_headers={"X-Title": "StudyAid"},
        client=client,
        retry_attempts=1,
        **kwargs,
    )


def completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class TestOpenAICompatProvider:
    @pytest.mark.asyncio
    async def test_successful_call(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["headers"] = request.headers
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion("  A summary.  "))

        provider = compat_provider(handler)
        result = await provider.attempt(make_job())

        assert result.success is True
        assert result.text == "A summary."
        assert captured["url"] == "https://openrouter.example/api/v1/chat/completions"
        assert captured["headers"]["authorization"] == "Bearer or-key"
        assert captured["headers"]["x-title"] == "StudyAid"
        body = captured["body"]
        assert body["model"] == "text-model"
        assert body["messages"][0] == {"role": "system", "content": "You are a study assistant."}
        assert body["max_tokens"] == 256
        await provider.aclose()

    def test_vision_payload_from_bytes(self):
        provider = compat_provider(lambda r: httpx.Response(200))
        payload = provider.build_payload(
            make_job(OperationKind.OCR, system_prompt=None, image_bytes=b"abc", image_mime_type="image/png")
        )
        assert payload["model"] == "vision-model"
        content = payload["messages"][0]["content"]
        assert content[0]["type"] == "text"
        assert content[1]["image_url"]["url"] == "data:image/png;base64,YWJj"

    def test_text_only_model_ignores_image(self):
        provider = compat_provider(lambda r: httpx.Response(200), vision_model=None)
        payload = provider.build_payload(make_job(image_url="https://cdn.example/a.png"))
        assert provider.vision_capable is False
        assert payload["model"] == "text-model"
        assert isinstance(payload["messages"][-1]["content"], str)

    @pytest.mark.asyncio
    async def test_unauthorized_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, json={"error": "bad key"})

        provider = compat_provider(handler)
        provider.retry_attempts = 3
        with pytest.raises(ProviderError):
            await provider.attempt(make_job())
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        provider = compat_provider(lambda r: httpx.Response(503, text="overloaded"))
        with pytest.raises(ProviderError):
            await provider.attempt(make_job())
        assert provider.circuit_breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_missing_choices_unsuccessful(self):
        provider = compat_provider(lambda r: httpx.Response(200, json={"choices": []}))
        result = await provider.attempt(make_job())
        assert result.success is False
