# Routes package init
"""
StudyAid Backend — API Routes Package
=======================================

What:  HTTP route handlers that accept requests and return responses.

Route Inventory:
    - generate.py:  POST /api/generate   (run one generation request)
    - health.py:    GET  /health         (service health check)

Design Principle:
    Routes are THIN. They translate HTTP to a GenerationRequest, call the
    orchestrator, and translate the result back. Error mapping lives in the
    global exception handlers in main.py.
"""
