"""
NoteGuard — Error Classifier
=============================

What:  Maps any failure coming out of an AI call into a ClassifiedError:
       category, severity, whether a retry can help, and how long to wait.
How:   Two steps.
       1. normalize_exception() turns a raised exception (SDK error, our own
          adapter errors, timeouts, plain mappings) into a RawFailure.
       2. classify() runs a fixed rule chain over the RawFailure; the first
          matching rule wins.
Who:   RetryOrchestrator, for every failed attempt.

Rule chain:
    1. Known provider signals   → AI_ERROR_CATALOG entry
         structured code, then message pattern, then HTTP status 400/401/403/429
    2. Token-length violation   → token / error / no retry
    3. Network indicators       → network / error / retry after 5s
    4. Server indicators        → server / critical / retry after 10s
    5. Anything else            → unknown / error / retry after 5s
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Pattern, Tuple, Union

from google.api_core import exceptions as google_exceptions

from noteguard.exceptions import AIServiceError, LLMServiceError, TokenLimitExceededError
from noteguard.schemas.errors import (
    ClassifiedError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    FailureKind,
    RawFailure,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogEntry:
    """Classification outcome for one known provider failure."""

    code: str
    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    retryable: bool
    retry_after_ms: Optional[int] = None
    patterns: Tuple[Pattern[str], ...] = field(default_factory=tuple)


def _patterns(*regexes: str) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(r, re.IGNORECASE) for r in regexes)


# ══════════════════════════════════════════════════════════════════════════
# Known provider failures
# ══════════════════════════════════════════════════════════════════════════

# Order matters for message patterns: first match wins.
_CATALOG = (
    CatalogEntry(
        "api_key_expired",
        "The AI service API key has expired. Please contact an administrator.",
        ErrorCategory.API, ErrorSeverity.CRITICAL, False,
        patterns=_patterns(r"api[\s_-]?key.*expired"),
    ),
    CatalogEntry(
        "api_key_invalid",
        "The AI service API key is invalid. Please contact an administrator.",
        ErrorCategory.API, ErrorSeverity.CRITICAL, False,
        patterns=_patterns(
            r"api[\s_-]?key.*(invalid|not valid|missing)",
            r"invalid.*api[\s_-]?key",
            r"unauthenticated|authentication (failed|error)",
        ),
    ),
    CatalogEntry(
        "api_quota_exceeded",
        "The AI service quota has been used up. Please try again later.",
        ErrorCategory.API, ErrorSeverity.ERROR, False,
        patterns=_patterns(r"quota.*exceeded", r"exceeded.*quota"),
    ),
    CatalogEntry(
        "rate_limit_exceeded",
        "Too many AI requests. Please wait a moment and try again.",
        ErrorCategory.API, ErrorSeverity.WARNING, True, 60_000,
        patterns=_patterns(r"rate.*limit.*exceeded", r"too many requests"),
    ),
    CatalogEntry(
        "token_limit_exceeded",
        "The content is too long for AI processing. Try shortening it.",
        ErrorCategory.TOKEN, ErrorSeverity.ERROR, False,
        patterns=_patterns(r"token.*limit.*exceeded", r"exceeds.*(maximum|max).*tokens"),
    ),
    CatalogEntry(
        "content_filtered",
        "The AI declined to process this content. Please review it and try again.",
        ErrorCategory.AI, ErrorSeverity.WARNING, False,
        patterns=_patterns(r"content.*(filter|block)", r"safety"),
    ),
    CatalogEntry(
        "empty_response",
        "The AI returned an empty response.",
        ErrorCategory.AI, ErrorSeverity.WARNING, False,
        patterns=_patterns(r"empty response"),
    ),
    CatalogEntry(
        "invalid_response_format",
        "The AI response could not be understood.",
        ErrorCategory.AI, ErrorSeverity.WARNING, False,
        patterns=_patterns(r"invalid.*response"),
    ),
    CatalogEntry(
        "model_not_found",
        "The configured AI model does not exist. Please contact an administrator.",
        ErrorCategory.API, ErrorSeverity.CRITICAL, False,
        patterns=_patterns(r"model.*not found"),
    ),
    CatalogEntry(
        "model_unavailable",
        "The AI model is temporarily unavailable.",
        ErrorCategory.SERVER, ErrorSeverity.CRITICAL, True, 10_000,
        patterns=_patterns(r"model.*(unavailable|overloaded)"),
    ),
    CatalogEntry(
        "api_timeout",
        "The AI service took too long to respond.",
        ErrorCategory.NETWORK, ErrorSeverity.ERROR, True, 5_000,
        patterns=_patterns(r"time[\s_-]?out|timed out", r"deadline exceeded"),
    ),
    CatalogEntry(
        "dns_resolution_failed",
        "The AI service address could not be resolved.",
        ErrorCategory.NETWORK, ErrorSeverity.ERROR, True, 5_000,
        patterns=_patterns(r"dns", r"name resolution", r"getaddrinfo"),
    ),
    CatalogEntry(
        "ssl_certificate_error",
        "A secure connection to the AI service could not be established.",
        ErrorCategory.SYSTEM, ErrorSeverity.CRITICAL, False,
        patterns=_patterns(r"ssl|certificate"),
    ),
    CatalogEntry(
        "network_connection_failed",
        "Could not connect to the AI service. Check the network connection.",
        ErrorCategory.NETWORK, ErrorSeverity.ERROR, True, 5_000,
        patterns=_patterns(r"network.*connection", r"connection.*(refused|reset|failed|aborted)"),
    ),
    CatalogEntry(
        "memory_insufficient",
        "Not enough memory to complete the AI request.",
        ErrorCategory.SYSTEM, ErrorSeverity.CRITICAL, False,
        patterns=_patterns(r"out of memory|memory.*insufficient"),
    ),
    CatalogEntry(
        "file_system_error",
        "A file system error interrupted the AI request.",
        ErrorCategory.SYSTEM, ErrorSeverity.CRITICAL, False,
        patterns=_patterns(r"file ?system|no space left"),
    ),
    CatalogEntry(
        "invalid_request",
        "The AI service rejected the request.",
        ErrorCategory.API, ErrorSeverity.ERROR, False,
    ),
)

AI_ERROR_CATALOG: Dict[str, CatalogEntry] = {entry.code: entry for entry in _CATALOG}

_STATUS_CODES = {
    400: "invalid_request",
    401: "api_key_invalid",
    403: "api_quota_exceeded",
    404: "model_not_found",
    429: "rate_limit_exceeded",
}

_TOKEN_LENGTH = AI_ERROR_CATALOG["token_limit_exceeded"]

_NETWORK_ERROR = CatalogEntry(
    "network_error",
    "A network problem interrupted the AI request. Retrying shortly.",
    ErrorCategory.NETWORK, ErrorSeverity.ERROR, True, 5_000,
)

_SERVER_ERROR = CatalogEntry(
    "server_error",
    "The AI service is having problems. Retrying shortly.",
    ErrorCategory.SERVER, ErrorSeverity.CRITICAL, True, 10_000,
)

_UNKNOWN_ERROR = CatalogEntry(
    "unknown_error",
    "An unexpected error occurred while contacting the AI service.",
    ErrorCategory.UNKNOWN, ErrorSeverity.ERROR, True, 5_000,
)

_NETWORK_WORDS = re.compile(r"network|fetch|connection", re.IGNORECASE)
_SERVER_WORDS = re.compile(r"server|internal", re.IGNORECASE)


# ══════════════════════════════════════════════════════════════════════════
# Adapter boundary
# ══════════════════════════════════════════════════════════════════════════

def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return int(value)
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _as_code(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    return str(value)


def normalize_exception(error: Any) -> RawFailure:
    """
    Reduce a raised exception (or error-shaped mapping) to a RawFailure.

    Known shapes:
        TokenLimitExceededError         → TOKEN_LENGTH
        LLMServiceError                 → PROVIDER (code, status)
        google.api_core API errors      → HTTP (status, reason as code)
        TimeoutError                    → NETWORK (code api_timeout)
        ConnectionError                 → NETWORK
        mapping / anything else         → GENERIC (name, code, message, status)
    """
    if isinstance(error, RawFailure):
        return error

    if isinstance(error, TokenLimitExceededError):
        return RawFailure(
            kind=FailureKind.TOKEN_LENGTH,
            message=error.message,
            name=type(error).__name__,
        )

    if isinstance(error, LLMServiceError):
        return RawFailure(
            kind=FailureKind.PROVIDER,
            message=error.message,
            name=type(error).__name__,
            code=error.code,
            status=error.status_code,
        )

    if isinstance(error, google_exceptions.GoogleAPICallError):
        return RawFailure(
            kind=FailureKind.HTTP,
            message=getattr(error, "message", None) or str(error),
            name=type(error).__name__,
            code=_as_code(getattr(error, "reason", None)),
            status=_as_int(getattr(error, "code", None)),
        )

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return RawFailure(
            kind=FailureKind.NETWORK,
            message=str(error) or "Request timed out",
            name=type(error).__name__,
            code="api_timeout",
        )

    if isinstance(error, ConnectionError):
        return RawFailure(
            kind=FailureKind.NETWORK,
            message=str(error) or "Connection failed",
            name=type(error).__name__,
        )

    if isinstance(error, Mapping):
        return RawFailure(
            kind=FailureKind.GENERIC,
            message=str(error.get("message") or ""),
            name=_as_code(error.get("name")),
            code=_as_code(error.get("code")),
            status=_as_int(error.get("status") or error.get("status_code")),
        )

    if isinstance(error, BaseException):
        return RawFailure(
            kind=FailureKind.GENERIC,
            message=str(error),
            name=type(error).__name__,
            code=_as_code(getattr(error, "code", None)),
            status=_as_int(getattr(error, "status", None) or getattr(error, "status_code", None)),
        )

    return RawFailure(kind=FailureKind.GENERIC, message=str(error))


# ══════════════════════════════════════════════════════════════════════════
# Rule chain
# ══════════════════════════════════════════════════════════════════════════

def _provider_signal(raw: RawFailure) -> Optional[CatalogEntry]:
    if raw.code:
        entry = AI_ERROR_CATALOG.get(raw.code.lower())
        if entry:
            return entry
    if raw.message:
        for entry in _CATALOG:
            if any(p.search(raw.message) for p in entry.patterns):
                return entry
    # Status last: Gemini reports a bad key as a plain 400
    if raw.status in _STATUS_CODES:
        return AI_ERROR_CATALOG[_STATUS_CODES[raw.status]]
    return None


def _is_network(raw: RawFailure) -> bool:
    return (
        raw.kind == FailureKind.NETWORK
        or raw.name == "NetworkError"
        or (raw.code or "").upper() == "NETWORK_ERROR"
        or bool(_NETWORK_WORDS.search(raw.message))
    )


def _is_server(raw: RawFailure) -> bool:
    return (
        (raw.status is not None and raw.status >= 500)
        or (raw.code or "").startswith("5")
        or bool(_SERVER_WORDS.search(raw.message))
    )


def _select_rule(raw: RawFailure) -> CatalogEntry:
    entry = _provider_signal(raw)
    if entry is not None:
        return entry
    if raw.kind == FailureKind.TOKEN_LENGTH:
        return _TOKEN_LENGTH
    if _is_network(raw):
        return _NETWORK_ERROR
    if _is_server(raw):
        return _SERVER_ERROR
    return _UNKNOWN_ERROR


def _coerce_context(
    context: Optional[Union[ErrorContext, Mapping[str, Any]]],
) -> Optional[ErrorContext]:
    if context is None or isinstance(context, ErrorContext):
        return context
    return ErrorContext(**context)


def classify(
    raw_error: Any,
    context: Optional[Union[ErrorContext, Mapping[str, Any]]] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> Optional[ClassifiedError]:
    """
    Classify a failure.

    Args:
        raw_error: RawFailure, exception or error-shaped mapping.
        context:   Where it happened; `user_id` and `action` (used as the
                   API endpoint label) are copied onto the result.
        clock:     Timestamp source.

    Returns:
        The ClassifiedError, or None when `raw_error` is None. An
        AIServiceError or ClassifiedError is returned as already classified.
    """
    if raw_error is None:
        return None
    if isinstance(raw_error, AIServiceError):
        return raw_error.error
    if isinstance(raw_error, ClassifiedError):
        return raw_error

    raw = normalize_exception(raw_error)
    ctx = _coerce_context(context)
    rule = _select_rule(raw)

    message = rule.message
    if rule is _UNKNOWN_ERROR and raw.message:
        message = raw.message

    logger.debug(
        "Classified %s(%s) as %s/%s",
        raw.name or raw.kind.value,
        raw.code or raw.status or "-",
        rule.category.value,
        rule.code,
    )
    return ClassifiedError(
        code=rule.code,
        message=message,
        category=rule.category,
        severity=rule.severity,
        timestamp=clock(),
        user_id=ctx.user_id if ctx else None,
        retryable=rule.retryable,
        retry_after_ms=rule.retry_after_ms if rule.retryable else None,
        api_endpoint=ctx.action if ctx else None,
        retry_count=0,
    )
