"""
StudyAid Backend — Google Gemini Provider
===========================================

What:  Gemini adapter for the fallback cascade (text and vision).
Why:   Gemini has a free tier, strong vision for handwritten notes, and fast
       responses from gemini-1.5-flash; it is first in the default order.
How:   Sends the prompt (plus inline image bytes when the job has an image)
       through the google-generativeai SDK. Retries and the circuit breaker
       come from GenerationProvider.

Image handling:
    The SDK wants image data, not a URL. Jobs carrying only a URL are
    downloaded through the ImageResolver; if that fails the attempt raises
    and the cascade moves on to a provider that accepts URLs.
"""

import base64
import logging
from typing import Optional

import google.generativeai as genai

from studyaid.config import GEMINI
from studyaid.pipeline.types import ProviderJob, ProviderResult
from studyaid.providers.base import GenerationProvider, NonRetryableError
from studyaid.providers.images import ImageResolver

logger = logging.getLogger(__name__)


class GeminiProvider(GenerationProvider):
    """
    Google Gemini implementation of GenerationProvider.

    Architecture:
        - One instance per process (built by services.generation)
        - Configures the SDK with the API key once
        - Reuses a single GenerativeModel across calls
    """

    name = GEMINI
    vision_capable = True

    def __init__(
        self,
        api_key: str = "",
        model: str = "gemini-1.5-flash",
        image_resolver: Optional[ImageResolver] = None,
        request_timeout: float = 60.0,
        **kwargs,
    ):
        super().__init__(api_key=api_key, **kwargs)
        # The SDK keeps auth in module-level state
        if self.api_key:
            genai.configure(api_key=self.api_key)
        self.model_name = model
        self.model = genai.GenerativeModel(model)
        self.image_resolver = image_resolver
        self.request_timeout = request_timeout

        logger.info(
            "GeminiProvider initialized with model=%s, circuit_breaker(threshold=%d, recovery=%ds)",
            model,
            self.circuit_breaker.failure_threshold,
            self.circuit_breaker.recovery_timeout,
        )

    async def _image_part(self, job: ProviderJob) -> Optional[dict]:
        if job.image_bytes:
            return {"mime_type": job.image_mime_type, "data": job.image_bytes}
        if not job.image_url:
            return None
        if job.image_url.startswith("data:"):
            header, _, encoded = job.image_url.partition(",")
            mime_type = header[5:].split(";")[0] or job.image_mime_type
            return {"mime_type": mime_type, "data": base64.b64decode(encoded)}
        if self.image_resolver is None:
            raise NonRetryableError("image URL given but no resolver to download it")
        image = await self.image_resolver.fetch_bytes(job.image_url)
        if image is None or not image.data:
            raise NonRetryableError(f"could not download image {job.image_url}")
        return {"mime_type": image.mime_type, "data": image.data}

    async def _generate(self, job: ProviderJob, call_id: str) -> ProviderResult:
        contents = []
        if job.system_prompt:
            contents.append(job.system_prompt)
        contents.append(job.prompt)
        image_part = await self._image_part(job)
        if image_part is not None:
            contents.append(image_part)

        logger.info(
            "[%s] Starting Gemini %s call (image=%s)",
            call_id,
            job.operation_kind.value,
            image_part is not None,
        )
        response = await self.model.generate_content_async(
            contents,
            generation_config={
                "max_output_tokens": job.params.max_tokens,
                "temperature": job.params.temperature,
                "top_p": job.params.top_p,
            },
            request_options={"timeout": self.request_timeout},
        )
        # .text raises ValueError when the candidate was blocked
        text = response.text.strip() if response.text else ""
        return ProviderResult(success=bool(text), text=text, raw=response)
