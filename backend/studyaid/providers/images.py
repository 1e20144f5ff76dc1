"""
StudyAid Backend — Image Resolution
=====================================

What:  Maps an opaque image reference to something a vision provider can use:
       a retrievable URL, raw bytes, or both.
Why:   Requests carry image ids, storage paths or full URLs. Providers need a
       URL (OpenAI-compatible APIs) or inline bytes (Gemini).
How:   - Absolute http(s) refs pass through as URLs
       - Refs naming a file under `storage_root` are read with aiofiles
       - Anything else is expanded through `image_url_template` ("{ref}")
       Any failure returns None: the request degrades to text-only.

Security Model:
    Local refs are resolved against the storage root and rejected if the
    resolved path escapes it (no "../" traversal). Files and downloads above
    `max_bytes` are refused.
"""

import logging
import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import aiofiles
import httpx

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {"image/png", "image/jpeg", "image/jpg", "image/webp", "image/gif"}


@dataclass(frozen=True)
class ResolvedImage:
    url: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: str = "image/jpeg"


def _is_absolute_url(ref: str) -> bool:
    return ref.startswith("http://") or ref.startswith("https://")


class ImageResolver:
    """
    Configuration:
        storage_root: Directory holding uploaded images
        url_template: Format string with a "{ref}" placeholder ("" disables it)
        max_bytes: Largest image accepted, local or downloaded
        timeout: Download timeout in seconds
    """

    def __init__(
        self,
        storage_root: str = "./storage",
        url_template: str = "",
        max_bytes: int = 10_485_760,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.storage_root = Path(storage_root).resolve()
        self.url_template = url_template
        self.max_bytes = max_bytes
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    def _local_path(self, ref: str) -> Optional[Path]:
        candidate = (self.storage_root / ref.lstrip("/")).resolve()
        if os.path.commonpath([str(candidate), str(self.storage_root)]) != str(self.storage_root):
            logger.warning("Image ref escapes storage root, ignoring: %s", ref)
            return None
        return candidate if candidate.is_file() else None

    async def resolve(self, ref: Optional[str]) -> Optional[ResolvedImage]:
        """Resolve `ref`; None when there is no usable image."""
        if not ref or not ref.strip():
            return None
        ref = ref.strip()

        if _is_absolute_url(ref):
            return ResolvedImage(url=ref, mime_type=mimetypes.guess_type(ref)[0] or "image/jpeg")

        try:
            path = self._local_path(ref)
            if path is not None:
                return await self._read_local(path)
        except OSError as e:
            logger.warning("Failed to read local image %s: %s", ref, str(e))
            return None

        if self.url_template:
            return ResolvedImage(url=self.url_template.format(ref=ref))

        logger.info("Image ref %s could not be resolved; continuing text-only", ref)
        return None

    async def _read_local(self, path: Path) -> Optional[ResolvedImage]:
        mime_type = mimetypes.guess_type(path.name)[0] or ""
        if mime_type not in ALLOWED_MIME_TYPES:
            logger.warning("Unsupported image type %s for %s", mime_type or "unknown", path.name)
            return None
        if path.stat().st_size > self.max_bytes:
            logger.warning("Image %s exceeds %d bytes", path.name, self.max_bytes)
            return None
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
        return ResolvedImage(data=data, mime_type=mime_type)

    async def fetch_bytes(self, url: str) -> Optional[ResolvedImage]:
        """Download `url` for providers that need inline image data."""
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Image download failed for %s: %s", url, str(e))
            return None
        if len(response.content) > self.max_bytes:
            logger.warning("Downloaded image exceeds %d bytes: %s", self.max_bytes, url)
            return None
        mime_type = response.headers.get("content-type", "").split(";")[0].strip()
        if mime_type not in ALLOWED_MIME_TYPES:
            mime_type = mimetypes.guess_type(url)[0] or "image/jpeg"
        return ResolvedImage(url=url, data=response.content, mime_type=mime_type)

    async def aclose(self) -> None:
        await self._client.aclose()
