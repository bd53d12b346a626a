"""
NoteGuard — Package Initializer
================================

What: Marks `noteguard` as a Python package and exposes its version.
Who:  Imported by the composition root (`noteguard.main`) and by tests.

Architecture Note:
    The package is layered leaf-first:

    ┌─────────────────────────────────────────────┐
    │   NoteAIService (summaries / tag workflow)  │  ← composes everything below
    ├─────────────────────────────────────────────┤
    │   RetryOrchestrator    FallbackProvider     │  ← resilience
    ├─────────────────────────────────────────────┤
    │   Classifier   TokenMonitor   ErrorLogger   │  ← policy + bookkeeping
    ├─────────────────────────────────────────────┤
    │   Schemas (pydantic)   Config   Exceptions  │  ← data + ambient stack
    └─────────────────────────────────────────────┘

    Every store is an explicit object. `noteguard.main.create_guard()` wires a
    complete set; tests build their own with a controllable clock.
"""

__version__ = "1.0.0"
