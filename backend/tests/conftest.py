"""
StudyAid Backend — Test Configuration (conftest.py)
=====================================================

What:  Shared pytest fixtures for the entire test suite.
Why:   The pipeline is built from injected collaborators; tests swap in a
       fake clock, an in-memory context store and scripted providers so no
       test touches the network or a real database.

Fixture Hierarchy (all function-scoped):
    ├── clock:             FakeClock, advanced manually
    ├── context_store:     FakeContextStore with sessions/evidence/chat
    ├── extractor:         ConceptExtractor with default settings
    ├── make_provider:     Factory for ScriptedProvider
    ├── make_orchestrator: Factory for a FallbackOrchestrator over fakes
    └── test_client:       HTTPX AsyncClient against the FastAPI app
"""

import asyncio
import os
import tempfile
from typing import List, Optional, Sequence, Union

# Override settings for testing BEFORE any studyaid imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["GEMINI_API_KEY"] = ""
os.environ["OPENROUTER_API_KEY"] = ""
os.environ["DASHSCOPE_API_KEY"] = ""
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="studyaid_test_")
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from studyaid.pipeline.cache import ResponseCache
from studyaid.pipeline.context import (
    ChatRecord,
    ContextAssembler,
    ContextStore,
    EvidenceSnippet,
    SessionRecord,
)
from studyaid.pipeline.extractor import ConceptExtractor
from studyaid.pipeline.normalizer import ParameterNormalizer
from studyaid.pipeline.orchestrator import FallbackOrchestrator
from studyaid.pipeline.parsing import ResponseParser
from studyaid.pipeline.rate_limiter import ProviderRateLimiter
from studyaid.pipeline.types import ProviderJob, ProviderResult
from studyaid.providers.base import GenerationProvider
from studyaid.providers.circuit_breaker import CircuitBreaker
from studyaid.providers.local import LocalHeuristicStrategy


# ══════════════════════════════════════════════════════════════════════════
# Fakes
# ══════════════════════════════════════════════════════════════════════════


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeContextStore(ContextStore):
    """In-memory ContextStore; set `fail` to a method name to make it raise."""

    def __init__(self):
        self.sessions: List[SessionRecord] = []
        self.evidence = {}
        self.chat: List[ChatRecord] = []
        self.fail: set = set()
        self.calls: List[str] = []

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail:
            raise RuntimeError(f"{name} unavailable")

    async def get_session(self, session_id, user_id=None):
        self._check("get_session")
        for session in self.sessions:
            if session.session_id == session_id:
                return session
        return None

    async def recent_sessions(self, user_id, limit):
        self._check("recent_sessions")
        return self.sessions[:limit]

    async def evidence_for_image(self, image_id):
        self._check("evidence_for_image")
        return list(self.evidence.get(image_id, []))

    async def recent_chat(self, user_id, limit):
        self._check("recent_chat")
        return self.chat[:limit]


Step = Union[str, BaseException, float, None]


class ScriptedProvider(GenerationProvider):
    """
    Provider whose responses are scripted per call.

    Each step is one of:
        str        → successful response text
        Exception  → raised from the call
        float      → sleep that many seconds (for timeout tests), then "late"
        None       → empty response
    The last step repeats once the script runs out.
    """

    def __init__(
        self,
        name: str,
        steps: Sequence[Step] = ("ok",),
        configured: bool = True,
        vision: bool = True,
    ):
        self.name = name
        self.vision_capable = vision
        super().__init__(
            api_key="key" if configured else "",
            circuit_breaker=CircuitBreaker(name=name, failure_threshold=100),
            retry_attempts=1,
        )
        self.steps = list(steps)
        self.jobs: List[ProviderJob] = []

    @property
    def calls(self) -> int:
        return len(self.jobs)

    async def _generate(self, job: ProviderJob, call_id: str) -> ProviderResult:
        self.jobs.append(job)
        step = self.steps[min(len(self.jobs) - 1, len(self.steps) - 1)]
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, float):
            await asyncio.sleep(step)
            return ProviderResult(success=True, text="late")
        if step is None:
            return ProviderResult(success=False, text="")
        return ProviderResult(success=True, text=step)


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def context_store():
    return FakeContextStore()


@pytest.fixture
def extractor():
    return ConceptExtractor()


@pytest.fixture
def make_provider():
    def _make(name: str, *steps: Step, configured: bool = True, vision: bool = True):
        return ScriptedProvider(name, steps or ("ok",), configured=configured, vision=vision)
    return _make


@pytest.fixture
def make_orchestrator(clock, context_store, extractor):
    """
    Build a FallbackOrchestrator over fakes.

    Usage:
        orchestrator = make_orchestrator([provider_a, provider_b], rate_limit=2)
    """
    def _make(
        providers: Sequence[GenerationProvider],
        rate_limit: int = 60,
        cache_ttl: float = 600,
        cache_entries: int = 100,
        timeout: float = 30.0,
        image_resolver=None,
        store: Optional[ContextStore] = None,
    ) -> FallbackOrchestrator:
        return FallbackOrchestrator(
            providers=providers,
            local=LocalHeuristicStrategy(extractor),
            normalizer=ParameterNormalizer(),
            rate_limiter=ProviderRateLimiter(max_requests=rate_limit, window_seconds=60, clock=clock),
            cache=ResponseCache(ttl_seconds=cache_ttl, max_entries=cache_entries, clock=clock),
            assembler=ContextAssembler(store or context_store),
            parser=ResponseParser(extractor),
            image_resolver=image_resolver,
            provider_timeout=timeout,
        )
    return _make


@pytest.fixture
def sample_text():
    return (
        "Photosynthesis converts light energy into chemical energy.\n"
        "Chlorophyll absorbs sunlight inside chloroplasts.\n"
        "Glucose and oxygen are produced from carbon dioxide and water.\n"
        "Cellular respiration releases the stored energy."
    )


@pytest_asyncio.fixture
async def test_client(make_orchestrator, make_provider):
    """
    HTTPX AsyncClient against the FastAPI app with a scripted orchestrator.

    The orchestrator is set on app.state before startup, so the lifespan
    keeps it instead of building one from settings. Tests reach it through
    `test_client.orchestrator`.
    """
    from studyaid.main import create_app

    app = create_app()
    orchestrator = make_orchestrator([make_provider("gemini", "Generated summary text.")])
    app.state.orchestrator = orchestrator
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        client.orchestrator = orchestrator
        yield client
