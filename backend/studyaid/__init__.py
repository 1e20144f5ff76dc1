"""
StudyAid Backend — Application Package Initializer
===================================================

What: Marks the `studyaid` directory as a Python package.
Why:  Enables module imports like `from studyaid.config import settings`.
Who:  Used implicitly by Python's import system and explicitly by Alembic, pytest, and uvicorn.

Architecture Note:
    The backend is a thin HTTP layer over one subsystem with real depth,
    the content-generation pipeline:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │    Services (wiring, context store) │  ← Builds the pipeline once per process
    ├─────────────────────────────────────┤
    │  Pipeline (normalize, cache, limit, │  ← Fallback orchestration, heuristics
    │  chunk, context, orchestrate)       │
    ├─────────────────────────────────────┤
    │  Providers (Gemini, OpenAI-compat,  │  ← Unreliable third parties
    │  local heuristic)                   │
    ├─────────────────────────────────────┤
    │  Models & Database (read-only)      │  ← Context sources
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
