"""
StudyAid Backend — OpenAI-Compatible Chat Completions Provider
================================================================

What:  httpx adapter for any provider speaking the OpenAI chat completions
       protocol. Configured twice by default: OpenRouter and DashScope.
Why:   Both fallbacks expose the same wire format; one adapter with two
       configurations avoids two near-identical clients.
How:   POST {base_url}/chat/completions with a bearer token. Jobs with an image
       use the vision model and an `image_url` content part (remote URL, or a
       base64 data URL for local bytes). Non-2xx statuses raise; 401/403/404
       are not retried since a retry cannot fix them.
"""

import base64
import logging
from typing import Dict, Optional

import httpx

from studyaid.pipeline.types import ProviderJob, ProviderResult
from studyaid.providers.base import GenerationProvider, NonRetryableError

logger = logging.getLogger(__name__)

NON_RETRYABLE_STATUS = {400, 401, 403, 404, 422}


class OpenAICompatProvider(GenerationProvider):
    """
    Attributes:
        name: Method tag and rate-limit key ("openrouter", "dashscope")
        text_model: Model used for text-only jobs
        vision_model: Model used when the job carries an image (None = text only)
    """

    def __init__(
        self,
        name: str,
        api_key: str,
        base_url: str,
        text_model: str,
        vision_model: Optional[str] = None,
        extra_headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs,
    ):
        self.name = name
        self.vision_capable = vision_model is not None
        super().__init__(api_key=api_key, **kwargs)
        self.base_url = base_url.rstrip("/")
        self.text_model = text_model
        self.vision_model = vision_model
        self.extra_headers = extra_headers or {}
        self._client = client or httpx.AsyncClient(timeout=timeout)

        logger.info(
            "%s provider initialized (text=%s, vision=%s)",
            name,
            text_model,
            vision_model or "none",
        )

    def _image_url(self, job: ProviderJob) -> Optional[str]:
        if job.image_url:
            return job.image_url
        if job.image_bytes:
            encoded = base64.b64encode(job.image_bytes).decode("ascii")
            return f"data:{job.image_mime_type};base64,{encoded}"
        return None

    def build_payload(self, job: ProviderJob) -> dict:
        image_url = self._image_url(job) if self.vision_capable else None

        if image_url:
            user_content = [
                {"type": "text", "text": job.prompt},
                {"type": "image_url", "image_url": {"url": image_url}},
            ]
            model = self.vision_model
        else:
            user_content = job.prompt
            model = self.text_model

        messages = []
        if job.system_prompt:
            messages.append({"role": "system", "content": job.system_prompt})
        messages.append({"role": "user", "content": user_content})

        return {
            "model": model,
            "messages": messages,
            "max_tokens": job.params.max_tokens,
            "temperature": job.params.temperature,
            "top_p": job.params.top_p,
        }

    async def _generate(self, job: ProviderJob, call_id: str) -> ProviderResult:
        payload = self.build_payload(job)
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            **self.extra_headers,
        }
        logger.info("[%s] Starting %s call with model=%s", call_id, self.name, payload["model"])

        response = await self._client.post(
            f"{self.base_url}/chat/completions", json=payload, headers=headers
        )
        if response.status_code in NON_RETRYABLE_STATUS:
            raise NonRetryableError(
                f"{self.name} returned HTTP {response.status_code}: {response.text[:200]}"
            )
        response.raise_for_status()

        data = response.json()
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            logger.warning("[%s] %s response had no choices", call_id, self.name)
            return ProviderResult(success=False, text="", raw=data)

        text = content.strip() if isinstance(content, str) else ""
        return ProviderResult(success=bool(text), text=text, raw=data)

    async def aclose(self) -> None:
        await self._client.aclose()
