# Pipeline package init
"""
StudyAid Backend — Content Generation Pipeline
================================================

What:  The resilient multi-provider generation core.
Why:   OCR, summaries, quizzes, mindmaps and RAG chat all need the same thing:
       call an unreliable provider, degrade gracefully, never surface a raw
       provider failure.
How:   Small single-purpose components composed by the FallbackOrchestrator.

Component Inventory (leaf-first):
    - types.py:         Immutable pydantic value types
    - normalizer.py:    Clamp generation parameters into provider-safe bounds
    - rate_limiter.py:  Fixed-window request budget per provider
    - cache.py:         TTL + capacity-bounded result cache, SHA-256 fingerprints
    - chunker.py:       Line/sentence-boundary text chunking
    - context.py:       Bounded context assembly over a read-only ContextStore
    - extractor.py:     Offline concept/structure heuristics
    - parsing.py:       Strict provider-output validation (Parsed | ParseFailure)
    - prompts.py:       Operation-specific prompt builders
    - orchestrator.py:  Ordered fallback execution

Nothing in this package reads settings or touches the network directly;
configuration and providers are injected by services.generation.
"""
