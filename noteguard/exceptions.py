"""
NoteGuard — Custom Exception Hierarchy
=======================================

What:  Application-specific exceptions for the failure modes of the library.
How:   Each exception class carries a message and optional context dict.
       Provider adapters raise the provider-side ones; the classifier turns
       them into ClassifiedErrors; the retry orchestrator raises
       AIServiceError once a failure is terminal.
Who:   Raised by services and stores; caught by callers of NoteAIService or
       RetryOrchestrator.

Exception Hierarchy:
    NoteGuardError (base)
    ├── ValidationError           → bad limits or option input (caller can fix)
    ├── NotFoundError             → unknown alert rule / option id
    ├── LLMServiceError           → provider adapter failure (code, status)
    ├── TokenLimitExceededError   → prompt too long, rejected before the call
    ├── AIServiceError            → terminal classified failure (.error)
    └── AlertDeliveryError        → an alert channel could not deliver
"""

from typing import Any, Dict, Optional

from noteguard.schemas.errors import ClassifiedError


class NoteGuardError(Exception):
    """
    Base exception for all NoteGuard errors.

    Attributes:
        message:  User-facing error description
        context:  Additional debug info (logged, never shown to end users)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(NoteGuardError):
    """
    Raised when caller input fails validation.

    When:    Unknown limit keys, out-of-range thresholds, malformed fallback
             options.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(NoteGuardError):
    """Raised when a referenced alert rule or fallback option does not exist."""

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class LLMServiceError(NoteGuardError):
    """
    Raised by a provider adapter when a call fails.

    What:    Carries whatever structure the provider gave us: a stable code
             ("empty_response", "content_filtered", ...), an HTTP status and a
             retry hint in seconds.
    When:    Empty responses, blocked content, SDK errors that were wrapped.

    The classifier reads `code` and `status_code` before falling back to the
    message text.
    """

    def __init__(
        self,
        message: str = "AI service is temporarily unavailable",
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if code:
            ctx["code"] = code
        if status_code:
            ctx["status_code"] = status_code
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.code = code
        self.status_code = status_code
        self.retry_after = retry_after


class TokenLimitExceededError(NoteGuardError):
    """
    Raised when a prompt is estimated to exceed the provider's input budget.

    The call is never made; classification maps this to a non-retryable
    `token_limit_exceeded` error.
    """

    def __init__(
        self,
        token_count: int,
        limit: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Content is too long for AI processing "
            f"(estimated {token_count} tokens, limit {limit})"
        )
        ctx = context or {}
        ctx["token_count"] = token_count
        ctx["limit"] = limit
        super().__init__(message=message, context=ctx)
        self.token_count = token_count
        self.limit = limit


class AIServiceError(NoteGuardError):
    """
    Raised when an AI operation has failed for good.

    What:    Wraps the ClassifiedError of the final failure. Callers inspect
             `.error` to pick fallback options.
    When:    Non-retryable failure, retries exhausted, or admission denied.

    Attributes:
        error:        The classified failure
        retry_after:  Seconds to wait before a manual retry, when retryable
    """

    def __init__(
        self,
        error: ClassifiedError,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["code"] = error.code
        ctx["category"] = error.category.value
        super().__init__(message=error.message, context=ctx)
        self.error = error
        retry_after_ms = error.effective_retry_after_ms
        self.retry_after = (retry_after_ms + 999) // 1000 if retry_after_ms else None


class AlertDeliveryError(NoteGuardError):
    """Raised by an alert channel when a notification could not be delivered."""

    def __init__(
        self,
        channel: str,
        message: str = "Alert delivery failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["channel"] = channel
        super().__init__(message=message, context=ctx)
        self.channel = channel
