"""
StudyAid Backend — Generation Pipeline Value Types
====================================================

What:  Pydantic models for everything that flows through the pipeline:
       requests, normalized parameters, provider results, evidence, context
       bundles, structured artifacts and the final GenerationResult.
Why:   One typed vocabulary shared by the orchestrator, providers, heuristics
       and the HTTP layer. Frozen models make "immutable once constructed"
       a property of the type rather than a convention.
How:   Request-side models accept anything (parameters are corrected by the
       normalizer, never rejected). Result-side models enforce bounds with
       Field constraints so an out-of-range confidence is a bug caught at
       construction time.
"""

import uuid
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field

FROZEN = {"frozen": True}


class OperationKind(str, Enum):
    """The unit of work a GenerationRequest asks for."""

    OCR = "ocr"
    SUMMARIZE = "summarize"
    QUIZ_GEN = "quiz_gen"
    MINDMAP_GEN = "mindmap_gen"
    RAG_CHAT = "rag_chat"


class ContentType(str, Enum):
    TEXT = "text"
    EQUATION = "equation"
    DIAGRAM = "diagram"
    MIXED = "mixed"


class SourceKind(str, Enum):
    SESSION = "session"
    EVIDENCE = "evidence"
    CHAT = "chat"


# ══════════════════════════════════════════════════════════════════════════
# Request Side
# ══════════════════════════════════════════════════════════════════════════


class InputPayload(BaseModel):
    """Raw text and/or an opaque reference to an image resource."""

    text: Optional[str] = Field(default=None, description="Raw text input or chat question")
    image_ref: Optional[str] = Field(default=None, description="Opaque image identifier or URL")

    model_config = FROZEN


class GenerationParameters(BaseModel):
    """
    Caller-supplied sampling parameters.

    Deliberately untyped: fractional, out-of-range or unusable values are
    floored, clamped or defaulted by the normalizer, never rejected.
    """

    max_tokens: Any = Field(default=None, description="Response token budget")
    temperature: Any = Field(default=None, description="Sampling temperature")
    top_p: Any = Field(default=None, description="Nucleus sampling width")

    model_config = FROZEN


class NormalizedParams(BaseModel):
    """Parameters after clamping; always within documented bounds."""

    max_tokens: int
    temperature: float = Field(ge=0.0, le=2.0)
    top_p: float = Field(ge=0.0, le=1.0)

    model_config = FROZEN


class ContextRefs(BaseModel):
    """Identifiers of stored records used to ground the request."""

    session_id: Optional[str] = None
    image_id: Optional[str] = None
    user_id: Optional[str] = None
    limit: Optional[int] = Field(default=None, description="Lowers the session/chat caps")

    model_config = FROZEN


class GenerationRequest(BaseModel):
    """One incoming unit of work. Created per call; never persisted."""

    operation_kind: OperationKind
    input_payload: InputPayload = Field(default_factory=InputPayload)
    parameters: GenerationParameters = Field(default_factory=GenerationParameters)
    context_refs: ContextRefs = Field(default_factory=ContextRefs)

    model_config = FROZEN


# ══════════════════════════════════════════════════════════════════════════
# Evidence & Context
# ══════════════════════════════════════════════════════════════════════════


class SourceLocator(BaseModel):
    """Approximate position of an evidence chunk inside its source."""

    chunk_index: int = 0
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    model_config = FROZEN


class EvidenceRecord(BaseModel):
    """A unit of extracted text with confidence and source-location metadata."""

    text: str
    confidence: float = Field(ge=0.0, le=1.0)
    content_type: ContentType = ContentType.TEXT
    source_locator: SourceLocator = Field(default_factory=SourceLocator)
    method: str

    model_config = FROZEN


class ContextItem(BaseModel):
    source_kind: SourceKind
    text: str
    truncated_length: int = Field(ge=0, description="Length of `text` after truncation")
    original_length: int = Field(ge=0)

    model_config = FROZEN


class ContextBundle(BaseModel):
    """Size-bounded, ordered context for one request. Never mutated after assembly."""

    items: Tuple[ContextItem, ...] = ()
    size_cap: int = 0
    counts: Dict[SourceKind, int] = Field(default_factory=dict)
    image_url: Optional[str] = None

    model_config = FROZEN

    @property
    def total_chars(self) -> int:
        return sum(item.truncated_length for item in self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    def by_kind(self, kind: SourceKind) -> List[ContextItem]:
        return [item for item in self.items if item.source_kind == kind]


# ══════════════════════════════════════════════════════════════════════════
# Structured Artifacts
# ══════════════════════════════════════════════════════════════════════════


class MindmapNode(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])
    label: str
    description: str = ""
    children: Tuple["MindmapNode", ...] = ()

    model_config = FROZEN


class MindmapArtifact(BaseModel):
    kind: Literal["mindmap"] = "mindmap"
    title: str
    nodes: Tuple[MindmapNode, ...]
    key_concepts: Tuple[str, ...] = ()

    model_config = FROZEN


class QuizQuestion(BaseModel):
    id: str
    question: str
    options: Tuple[str, str, str, str]
    correct_index: int = Field(ge=0, le=3)
    explanation: str = ""
    concept: Optional[str] = None

    model_config = FROZEN

    @property
    def correct_option(self) -> str:
        return self.options[self.correct_index]


class QuizArtifact(BaseModel):
    kind: Literal["quiz"] = "quiz"
    questions: Tuple[QuizQuestion, ...]
    key_concepts: Tuple[str, ...] = ()

    model_config = FROZEN


class OcrArtifact(BaseModel):
    kind: Literal["ocr"] = "ocr"
    text: str
    evidence: Tuple[EvidenceRecord, ...] = ()

    model_config = FROZEN


StructuredArtifact = Union[OcrArtifact, QuizArtifact, MindmapArtifact]
Payload = Union[str, OcrArtifact, QuizArtifact, MindmapArtifact]


# ══════════════════════════════════════════════════════════════════════════
# Provider & Result
# ══════════════════════════════════════════════════════════════════════════


class ProviderJob(BaseModel):
    """Everything a provider needs for one attempt, already prepared."""

    operation_kind: OperationKind
    prompt: str
    system_prompt: Optional[str] = None
    params: NormalizedParams
    image_url: Optional[str] = None
    image_bytes: Optional[bytes] = None
    image_mime_type: str = "image/jpeg"

    model_config = FROZEN

    @property
    def has_image(self) -> bool:
        return bool(self.image_url or self.image_bytes)


class ProviderResult(BaseModel):
    """Common internal shape every provider adapter returns."""

    success: bool
    text: str = ""
    raw: Any = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}


class GenerationResult(BaseModel):
    """
    The pipeline's answer. Immutable once constructed.

    `method_used` tells downstream consumers which strategy produced the
    payload ("local-heuristic" marks a degraded, lower-confidence result).
    """

    success: bool
    payload: Payload
    method_used: str
    confidence: float = Field(ge=0.0, le=1.0)
    from_cache: bool = False
    processing_time_ms: int = Field(default=0, ge=0)
    attempted: Tuple[str, ...] = ()
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = FROZEN


MindmapNode.model_rebuild()
