"""
NoteGuard — Services Layer
===========================

Service Inventory:
    - classifier: maps raw failures into the error taxonomy
    - RetryOrchestrator: classification-aware retries with usage recording
    - FallbackProvider / FallbackUsageTracker: non-AI alternatives
    - LLMService (abstract) / GeminiService: provider adapter
    - NoteAIService: summary and tag workflow composed from the above
"""
