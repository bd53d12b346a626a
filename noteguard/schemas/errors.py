"""
NoteGuard — Error Classification Schemas
=========================================

What:  The taxonomy every failure is mapped into, plus the normalized input
       the classifier accepts.
Who:   Produced by `noteguard.services.classifier`; consumed by the retry
       orchestrator, the fallback provider and the error log.

Shapes:
    RawFailure       → what went wrong, as reported by an adapter
    ErrorContext     → where it went wrong (user, action, component)
    ClassifiedError  → what it means (category, severity, retry policy)
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ErrorCategory(str, Enum):
    NETWORK = "network"
    SERVER = "server"
    API = "api"
    TOKEN = "token"
    AI = "ai"
    SYSTEM = "system"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class FailureKind(str, Enum):
    """Closed set of raw failure shapes an adapter can report."""

    PROVIDER = "provider"          # SDK/adapter error carrying a structured code
    TOKEN_LENGTH = "token_length"  # prompt rejected before the call was made
    NETWORK = "network"            # transport-level failure
    HTTP = "http"                  # response with an HTTP status
    GENERIC = "generic"            # anything else; only message/name are known


class RawFailure(BaseModel):
    """
    A provider failure normalized at the adapter boundary.

    The classifier only looks at these five fields, so new providers plug in
    by writing one normalization function instead of teaching the classifier
    another exception type.
    """

    kind: FailureKind = FailureKind.GENERIC
    message: str = ""
    name: Optional[str] = None
    code: Optional[str] = None
    status: Optional[int] = None

    model_config = {"frozen": True}


class TokenUsageInfo(BaseModel):
    input: int = 0
    output: int = 0
    total: int = 0
    limit: Optional[int] = None

    model_config = {"frozen": True}


class ErrorContext(BaseModel):
    """
    Where a failure happened. `action` doubles as the API endpoint label on
    the classified error.
    """

    user_id: Optional[str] = None
    action: Optional[str] = None
    component: Optional[str] = None
    url: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class ClassifiedError(BaseModel):
    """
    A single failure occurrence mapped into the taxonomy.

    Consumers must ignore `retry_after_ms` when `retryable` is False.
    """

    code: str
    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    timestamp: datetime = Field(default_factory=datetime.now)
    user_id: Optional[str] = None
    retryable: bool = False
    retry_after_ms: Optional[int] = None
    token_usage: Optional[TokenUsageInfo] = None
    api_endpoint: Optional[str] = None
    retry_count: Optional[int] = None

    model_config = {"frozen": True}

    @property
    def effective_retry_after_ms(self) -> int:
        """Retry hint with the non-retryable case folded to zero."""
        if not self.retryable or self.retry_after_ms is None:
            return 0
        return self.retry_after_ms
