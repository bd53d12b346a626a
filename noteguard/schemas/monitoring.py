"""
NoteGuard — Error Log & Alert Schemas
======================================

What:  Log entries, alert rules, aggregate statistics and delivery receipts.
Who:   `noteguard.monitoring.error_logger` and `noteguard.monitoring.alerting`.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from noteguard.schemas.errors import ClassifiedError, ErrorContext


class LogMetadata(BaseModel):
    session_id: Optional[str] = None
    request_id: Optional[str] = None
    environment: str = "development"
    version: str = "1.0.0"


class ErrorLogEntry(BaseModel):
    """
    One logged failure.

    Only the resolution fields ever change, and only from unresolved to
    resolved.
    """

    id: str
    error: ClassifiedError
    context: ErrorContext
    metadata: LogMetadata
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None


class AlertConditions(BaseModel):
    """
    Allow-lists; an omitted list matches everything. `threshold` counts logs
    with the same code in the trailing hour.
    """

    category: Optional[List[str]] = None
    severity: Optional[List[str]] = None
    code: Optional[List[str]] = None
    threshold: Optional[int] = Field(default=None, ge=1)


class AlertRule(BaseModel):
    id: str
    name: str
    conditions: AlertConditions = Field(default_factory=AlertConditions)
    channels: List[str] = Field(default_factory=list)
    recipients: List[str] = Field(default_factory=list)
    enabled: bool = True
    last_triggered: Optional[datetime] = None
    trigger_count: int = 0


class AlertNotification(BaseModel):
    """What a channel receives when a rule fires."""

    rule_id: str
    rule_name: str
    recipients: List[str]
    log_id: str
    code: str
    message: str
    category: str
    severity: str
    user_id: Optional[str] = None
    triggered_at: datetime


class DeliveryResult(BaseModel):
    channel: str
    delivered: bool
    attempts: int = 0
    error: Optional[str] = None
    timestamp: datetime


class TimeRange(BaseModel):
    start: datetime
    end: datetime


class ErrorTrends(BaseModel):
    hourly: Dict[str, int] = Field(default_factory=dict)
    daily: Dict[str, int] = Field(default_factory=dict)


class ErrorStats(BaseModel):
    total: int = 0
    by_category: Dict[str, int] = Field(default_factory=dict)
    by_severity: Dict[str, int] = Field(default_factory=dict)
    by_code: Dict[str, int] = Field(default_factory=dict)
    by_user: Dict[str, int] = Field(default_factory=dict)
    by_component: Dict[str, int] = Field(default_factory=dict)
    time_range: TimeRange
    trends: ErrorTrends = Field(default_factory=ErrorTrends)
