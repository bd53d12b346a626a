"""
NoteGuard — Fallback Schemas
=============================

What:  Non-AI alternatives offered to the user and the bookkeeping of which
       ones got used.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field


class FallbackType(str, Enum):
    MANUAL_INPUT = "manual_input"
    TEMPLATE = "template"
    SUGGESTION = "suggestion"
    RETRY = "retry"


class FallbackOption(BaseModel):
    """A user-facing alternative. Lower `priority` is offered first."""

    id: str
    name: str
    description: str
    type: FallbackType
    priority: int = Field(ge=0)
    available: bool = True


class FallbackUsageRecord(BaseModel):
    error_code: str
    fallback_type: str
    success: bool
    timestamp: datetime

    model_config = {"frozen": True}


class FallbackUsageStats(BaseModel):
    total_fallbacks: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_error_code: Dict[str, int] = Field(default_factory=dict)
    success_rate: float = 0.0
