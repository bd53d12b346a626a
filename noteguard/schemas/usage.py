"""
NoteGuard — Token Usage Schemas
================================

What:  Records, limits and query results of the token usage ledger.
Who:   `noteguard.monitoring.token_monitor` and its callers.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from noteguard.schemas.errors import ClassifiedError


class UsageRecord(BaseModel):
    """
    One completed AI call.

    `total` is filled from input + output when not given. Records are frozen
    once stored; the ledger only appends and prunes.
    """

    input_tokens: int = Field(ge=0)
    output_tokens: int = Field(ge=0)
    total: int = Field(default=-1)
    timestamp: datetime
    operation: str = "generate"
    user_id: Optional[str] = None

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def fill_total(cls, data):
        if isinstance(data, dict) and data.get("total") in (None, -1):
            data = dict(data)
            data["total"] = int(data.get("input_tokens", 0)) + int(data.get("output_tokens", 0))
        return data


class LimitConfig(BaseModel):
    """
    Token limits for one store.

    Fields are validated individually. There is no cross-field check, so a
    per-request limit above the hourly limit is accepted as configured.
    """

    daily_limit: int = Field(default=100_000, ge=0)
    hourly_limit: int = Field(default=10_000, ge=0)
    per_request_limit: int = Field(default=8_000, ge=0)
    warning_threshold: float = Field(default=0.8, ge=0.0, le=1.0)


class LimitCheck(BaseModel):
    can_proceed: bool
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    """Outcome of an admission check. `error` is set iff `allowed` is False."""

    allowed: bool
    error: Optional[ClassifiedError] = None
    warnings: List[str] = Field(default_factory=list)


class UsageStats(BaseModel):
    total_usage: int = 0
    average_daily: float = 0.0
    peak_hourly: int = 0
    operations: Dict[str, int] = Field(default_factory=dict)


class UsageSnapshot(BaseModel):
    daily: int
    hourly: int
    limits: LimitConfig
    stats: UsageStats


class LimitStatus(BaseModel):
    """Flat view of the current budget, shaped for a status badge or banner."""

    can_use_ai: bool
    daily_usage: int
    daily_limit: int
    hourly_usage: int
    hourly_limit: int
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class Reservation(BaseModel):
    """Tokens held against the budget while a call is in flight."""

    id: str = Field(default_factory=lambda: f"rsv_{uuid.uuid4().hex[:12]}")
    estimated_tokens: int
    operation: str
    user_id: Optional[str] = None
    timestamp: datetime
    warnings: List[str] = Field(default_factory=list)

    model_config = {"frozen": True}
