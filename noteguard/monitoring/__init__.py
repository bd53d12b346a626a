"""
NoteGuard — Monitoring
=======================

What:  Bookkeeping stores: the token usage ledger with its admission
       monitor, and the error log with alert dispatch.
"""

from noteguard.monitoring.alerting import AlertChannel, AlertDispatcher, LoggingAlertChannel
from noteguard.monitoring.error_logger import ErrorLogger, ErrorLogStore
from noteguard.monitoring.token_monitor import TokenMonitor, TokenUsageStore

__all__ = [
    "AlertChannel",
    "AlertDispatcher",
    "ErrorLogger",
    "ErrorLogStore",
    "LoggingAlertChannel",
    "TokenMonitor",
    "TokenUsageStore",
]
