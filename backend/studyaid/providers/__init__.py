# Providers package init
"""
StudyAid Backend — Generation Providers
=========================================

What:  Strategies the FallbackOrchestrator tries, in priority order.

Provider Inventory:
    - base.py:            GenerationProvider ABC (circuit breaker + tenacity retries)
    - gemini.py:          Google Gemini via google-generativeai (vision-capable)
    - openai_compat.py:   OpenAI-style chat completions over httpx
                          (configured for OpenRouter and DashScope)
    - local.py:           Offline heuristic terminal strategy
    - circuit_breaker.py: CLOSED/OPEN/HALF_OPEN breaker shared by remote providers
    - images.py:          Image reference → URL or bytes
"""
