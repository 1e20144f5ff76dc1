"""
StudyAid Backend — Response Cache
===================================

What:  TTL + capacity-bounded memo of GenerationResults keyed by a request
       fingerprint.
Why:   Students re-open the same note and regenerate the same quiz. Serving a
       repeat from memory saves a provider call and the rate budget behind it.
How:   An insertion-ordered dict of CacheEntry objects behind a threading.Lock.
       Reads evict expired entries; inserts past capacity evict the single
       earliest-inserted entry (insertion order, not access order).

Fingerprint:
    SHA-256 over the canonical JSON of
        (operation_kind, normalized input, normalized parameters)
    where normalized input = whitespace-collapsed text + image_ref + context refs.
    Two requests differing only in whitespace share a fingerprint; requests
    differing in anything that changes the output do not.
"""

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from studyaid.pipeline.types import GenerationRequest, GenerationResult, NormalizedParams

logger = logging.getLogger(__name__)


def collapse_whitespace(text: Optional[str]) -> str:
    return " ".join((text or "").split())


def fingerprint(request: GenerationRequest, params: NormalizedParams) -> str:
    """Deterministic SHA-256 hex digest identifying a request's output."""
    refs = request.context_refs
    material = {
        "operation_kind": request.operation_kind.value,
        "input": {
            "text": collapse_whitespace(request.input_payload.text),
            "image_ref": request.input_payload.image_ref,
            "context_refs": {
                "session_id": refs.session_id,
                "image_id": refs.image_id,
                "user_id": refs.user_id,
                "limit": refs.limit,
            },
        },
        "params": params.model_dump(),
    }
    canonical = json.dumps(material, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    fingerprint: str
    value: GenerationResult
    inserted_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.inserted_at < self.ttl


class ResponseCache:
    """
    Thread-safe TTL cache.

    Configuration:
        ttl_seconds: Lifetime of an entry (default: 600)
        max_entries: Capacity before eviction (default: 100)
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        ttl_seconds: float = 600,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[GenerationResult]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not entry.is_fresh(self._clock()):
                del self._entries[key]
                logger.debug("Cache entry %s expired", key[:12])
                return None
            # Callers get their own copy; the stored result never changes
            return entry.value.model_copy(deep=True)

    def set(self, key: str, value: GenerationResult) -> None:
        with self._lock:
            # Re-setting a key refreshes its timestamp and moves it to the back
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Cache full, evicted %s", evicted[:12])
            self._entries[key] = CacheEntry(
                fingerprint=key,
                value=value.model_copy(deep=True),
                inserted_at=self._clock(),
                ttl=self.ttl_seconds,
            )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
