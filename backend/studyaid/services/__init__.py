# Services package init
"""
StudyAid Backend — Services Layer
===================================

What:  Wiring between configuration, persistence and the generation pipeline.
Why:   Routes handle HTTP; the pipeline handles generation; something has to
       build the pipeline from settings exactly once per process.

Service Inventory:
    - generation.py:     build_orchestrator(settings) and the FastAPI dependency
    - context_store.py:  SqlContextStore, the async SQLAlchemy ContextStore

Why services are separate from routes:
    1. Testability: The orchestrator can be built with fakes and no HTTP
    2. Replaceability: Swap the context store without touching routes
"""
