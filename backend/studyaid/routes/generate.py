"""
StudyAid Backend — Generate Route Handler
===========================================

What:  POST /api/generate runs one GenerationRequest through the pipeline.
Why:   Single entry point for OCR, summaries, quizzes, mindmaps and RAG chat.
How:   Validates the body, converts it to a GenerationRequest and awaits the
       orchestrator. Errors are mapped by the global handlers in main.py.

Request Flow:
    1. FastAPI validates GenerateRequest (shape and size only)
    2. Orchestrator: config check → cache → context → providers → fallback
    3. 200 with the GenerationResult, tagged with method_used

Status codes:
    200: Always for a produced result, including a degraded local-heuristic one
    400: Malformed body
    429: First-priority provider's budget is spent (Retry-After set)
    503: No provider credentials configured
"""

import logging

from fastapi import APIRouter, Depends, Request

from studyaid.pipeline.orchestrator import FallbackOrchestrator
from studyaid.schemas.generation import ErrorResponse, GenerateRequest, GenerateResponse
from studyaid.services.generation import get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Generate"])


@router.post(
    "/generate",
    response_model=GenerateResponse,
    responses={
        200: {"description": "Content generated (possibly by a fallback)", "model": GenerateResponse},
        400: {"description": "Malformed request body", "model": ErrorResponse},
        429: {"description": "Provider rate limit exceeded", "model": ErrorResponse},
        503: {"description": "No AI provider configured", "model": ErrorResponse},
    },
    summary="Generate study content",
    description=(
        "Run OCR, summarization, quiz generation, mindmap generation or RAG chat. "
        "Providers are tried in priority order; if all fail, an offline heuristic "
        "produces a lower-confidence result tagged method_used='local-heuristic'."
    ),
)
async def generate(
    body: GenerateRequest,
    request: Request,
    orchestrator: FallbackOrchestrator = Depends(get_orchestrator),
) -> GenerateResponse:
    rid = getattr(request.state, "request_id", "")
    logger.info("[%s] Generate request: %s", rid, body.operation_kind.value)

    result = await orchestrator.generate(body.to_generation_request())

    return GenerateResponse(**dict(result), request_id=rid)
