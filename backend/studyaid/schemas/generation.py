"""
StudyAid Backend — Pydantic Request/Response Schemas
======================================================

What:  The HTTP contract of the generation API.
Why:   Request bodies are validated at the edge (shape and size), while
       parameter *values* are left to the normalizer, which clamps rather
       than rejects.
How:   GenerateRequest mirrors GenerationRequest with HTTP-level limits and
       converts into it; responses reuse GenerationResult directly.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field, model_validator

from studyaid.pipeline.types import (
    ContextRefs,
    GenerationParameters,
    GenerationRequest,
    GenerationResult,
    InputPayload,
    OperationKind,
)

# Largest text body accepted on the wire; prompts are chunk-bounded further
MAX_INPUT_CHARS = 200_000


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class GenerateInput(BaseModel):
    text: Optional[str] = Field(
        default=None,
        max_length=MAX_INPUT_CHARS,
        description="Source text, or the user's question for rag_chat",
    )
    image_ref: Optional[str] = Field(
        default=None,
        max_length=2048,
        description="Image URL, storage path, or image identifier",
    )


class GenerateRequest(BaseModel):
    """
    What:  Body of POST /api/generate.

    Example:
        {
            "operation_kind": "quiz_gen",
            "input": {"text": "Photosynthesis converts light energy..."},
            "parameters": {"max_tokens": 1500, "temperature": 0.5},
            "context_refs": {}
        }
    """

    operation_kind: OperationKind
    input: GenerateInput = Field(default_factory=GenerateInput)
    parameters: GenerationParameters = Field(default_factory=GenerationParameters)
    context_refs: ContextRefs = Field(default_factory=ContextRefs)

    @model_validator(mode="after")
    def require_some_input(self) -> "GenerateRequest":
        has_text = bool(self.input.text and self.input.text.strip())
        if self.operation_kind == OperationKind.RAG_CHAT and not has_text:
            raise ValueError("rag_chat requires input.text (the user's question)")
        refs = self.context_refs
        if not (has_text or self.input.image_ref or refs.session_id or refs.image_id):
            raise ValueError("Provide input.text, input.image_ref, or a session/image reference")
        return self

    def to_generation_request(self) -> GenerationRequest:
        return GenerationRequest(
            operation_kind=self.operation_kind,
            input_payload=InputPayload(text=self.input.text, image_ref=self.input.image_ref),
            parameters=self.parameters,
            context_refs=self.context_refs,
        )


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class GenerateResponse(GenerationResult):
    """GenerationResult plus the request correlation ID."""

    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class ErrorResponse(BaseModel):
    """
    What:  Standardized error body for all API errors.

    Example:
        {
            "error": "rate_limit_exceeded",
            "message": "Rate limit exceeded for provider 'gemini'...",
            "details": {"retry_after": 42, "provider": "gemini"},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class ProviderHealth(BaseModel):
    configured: bool
    circuit: str = Field(description="closed, open or half_open")


class HealthResponse(BaseModel):
    """
    Status levels:
        healthy:   At least one provider configured, database reachable
        degraded:  Requests still succeed, but only via fallbacks
                   (database down, or every configured circuit open)
        unhealthy: No provider configured; generation returns 503
    """
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    providers: Dict[str, ProviderHealth] = Field(default_factory=dict)
    rate_limits: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    cache_entries: int = 0
    uptime_seconds: float = Field(description="Seconds since service started")
