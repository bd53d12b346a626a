"""
NoteGuard — Pydantic Schemas
=============================

What:  Data shapes shared by every layer. Models carry no behavior beyond
       field defaults and validation.
"""

from noteguard.schemas.errors import (
    ClassifiedError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    FailureKind,
    RawFailure,
    TokenUsageInfo,
)
from noteguard.schemas.fallback import (
    FallbackOption,
    FallbackType,
    FallbackUsageRecord,
    FallbackUsageStats,
)
from noteguard.schemas.monitoring import (
    AlertConditions,
    AlertNotification,
    AlertRule,
    DeliveryResult,
    ErrorLogEntry,
    ErrorStats,
    LogMetadata,
)
from noteguard.schemas.usage import (
    LimitCheck,
    LimitConfig,
    LimitStatus,
    Reservation,
    UsageRecord,
    UsageSnapshot,
    UsageStats,
    ValidationResult,
)

__all__ = [
    "AlertConditions",
    "AlertNotification",
    "AlertRule",
    "ClassifiedError",
    "DeliveryResult",
    "ErrorCategory",
    "ErrorContext",
    "ErrorLogEntry",
    "ErrorSeverity",
    "ErrorStats",
    "FailureKind",
    "FallbackOption",
    "FallbackType",
    "FallbackUsageRecord",
    "FallbackUsageStats",
    "LimitCheck",
    "LimitConfig",
    "LimitStatus",
    "LogMetadata",
    "RawFailure",
    "Reservation",
    "TokenUsageInfo",
    "UsageRecord",
    "UsageSnapshot",
    "UsageStats",
    "ValidationResult",
]
