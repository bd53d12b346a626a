"""
NoteGuard — Error Log Store & Logger
=====================================

What:  Retains classified errors for 30 days, answers filtered and aggregate
       queries over them, and fires alert rules.
How:   ErrorLogStore holds entries ordered by context timestamp, prunes on
       every write, then evaluates each enabled AlertRule against the new
       entry. ErrorLogger is the facade services use: it stamps the context
       time and the runtime metadata (environment, version, request/session
       id) before handing the entry to the store.
Who:   RetryOrchestrator logs every classified failure; hosts query stats and
       resolve entries from admin tooling.

Alert rules:
    - category / severity / code lists are allow-lists; omitted = any
    - threshold = minimum same-code entries in the trailing hour
    - a rule fires at most once per cooldown window (default 1 hour)
    - last_triggered is stamped before dispatch
"""

import logging
import threading
import uuid
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from noteguard.context import request_id_var, session_id_var
from noteguard.exceptions import NotFoundError
from noteguard.monitoring.alerting import AlertDispatcher
from noteguard.schemas.errors import (
    ClassifiedError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
)
from noteguard.schemas.monitoring import (
    AlertConditions,
    AlertRule,
    DeliveryResult,
    ErrorLogEntry,
    ErrorStats,
    ErrorTrends,
    LogMetadata,
    TimeRange,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _user_of(entry: ErrorLogEntry) -> Optional[str]:
    return entry.context.user_id or entry.error.user_id


# ══════════════════════════════════════════════════════════════════════════
# Error Log Store
# ══════════════════════════════════════════════════════════════════════════

class ErrorLogStore:
    """
    In-memory error log with alert evaluation.

    Args:
        dispatcher:     Where fired alerts go (defaults to logging channels).
        retention:      How long entries are kept.
        alert_cooldown: Minimum gap between two firings of the same rule.
        clock:          Returns the current local time; injected by tests.
    """

    def __init__(
        self,
        dispatcher: Optional[AlertDispatcher] = None,
        retention: timedelta = timedelta(days=30),
        alert_cooldown: timedelta = timedelta(hours=1),
        clock: Clock = datetime.now,
    ):
        self.clock = clock
        self.dispatcher = dispatcher or AlertDispatcher(clock=clock)
        self.retention = retention
        self.alert_cooldown = alert_cooldown
        self._logs: Deque[ErrorLogEntry] = deque()
        self._rules: Dict[str, AlertRule] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._logs)

    # ── Writes ────────────────────────────────────────────────────────────

    def add_log(
        self,
        error: ClassifiedError,
        context: ErrorContext,
        metadata: LogMetadata,
    ) -> str:
        """
        Store one entry and evaluate alert rules against it.

        Returns:
            The new entry id.
        """
        entry = ErrorLogEntry(
            id=f"error_{uuid.uuid4().hex[:12]}",
            error=error,
            context=context,
            metadata=metadata,
        )
        with self._lock:
            now = self.clock()
            self._insert(entry)
            self._prune_locked(now)
            fired = self._matching_rules(entry, now)

        for rule in fired:
            self._dispatch(rule, entry)
        return entry.id

    def _insert(self, entry: ErrorLogEntry) -> None:
        ts = entry.context.timestamp
        if not self._logs or self._logs[-1].context.timestamp <= ts:
            self._logs.append(entry)
            return
        index = len(self._logs)
        while index > 0 and self._logs[index - 1].context.timestamp > ts:
            index -= 1
        self._logs.insert(index, entry)

    def prune(self) -> int:
        with self._lock:
            return self._prune_locked(self.clock())

    def _prune_locked(self, now: datetime) -> int:
        cutoff = now - self.retention
        removed = 0
        while self._logs and self._logs[0].context.timestamp <= cutoff:
            self._logs.popleft()
            removed += 1
        return removed

    def resolve_error(self, log_id: str, resolved_by: Optional[str] = None) -> bool:
        """
        Mark an entry resolved. Returns False for an unknown id.

        Resolving twice keeps the first resolver and timestamp.
        """
        with self._lock:
            for entry in self._logs:
                if entry.id != log_id:
                    continue
                if not entry.resolved:
                    entry.resolved = True
                    entry.resolved_at = self.clock()
                    entry.resolved_by = resolved_by
                    logger.info("Error %s resolved by %s", log_id, resolved_by or "-")
                return True
        return False

    # ── Queries ───────────────────────────────────────────────────────────

    def get_logs(
        self,
        user_id: Optional[str] = None,
        category: Optional[Union[ErrorCategory, str]] = None,
        severity: Optional[Union[ErrorSeverity, str]] = None,
        code: Optional[str] = None,
        component: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        resolved: Optional[bool] = None,
    ) -> List[ErrorLogEntry]:
        """
        Entries matching every given filter, newest first.

        Returned entries are copies; resolve through resolve_error().
        """
        with self._lock:
            matches = [
                entry.model_copy(deep=True)
                for entry in reversed(self._logs)
                if (user_id is None or _user_of(entry) == user_id)
                and (category is None or entry.error.category == category)
                and (severity is None or entry.error.severity == severity)
                and (code is None or entry.error.code == code)
                and (component is None or entry.context.component == component)
                and (start_date is None or entry.context.timestamp >= start_date)
                and (end_date is None or entry.context.timestamp <= end_date)
                and (resolved is None or entry.resolved == resolved)
            ]
        return matches

    def get_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> ErrorStats:
        """
        Aggregate counts over [start, end] (default: the last 24 hours).

        Every category and severity appears in the result, zero or not.
        """
        end = end or self.clock()
        start = start or end - timedelta(hours=24)

        stats = ErrorStats(
            by_category={c.value: 0 for c in ErrorCategory},
            by_severity={s.value: 0 for s in ErrorSeverity},
            time_range=TimeRange(start=start, end=end),
            trends=ErrorTrends(),
        )

        with self._lock:
            entries = [
                e for e in self._logs if start <= e.context.timestamp <= end
            ]

        for entry in entries:
            error = entry.error
            stats.total += 1
            stats.by_category[error.category.value] += 1
            stats.by_severity[error.severity.value] += 1
            stats.by_code[error.code] = stats.by_code.get(error.code, 0) + 1

            user = _user_of(entry)
            if user:
                stats.by_user[user] = stats.by_user.get(user, 0) + 1
            if entry.context.component:
                component = entry.context.component
                stats.by_component[component] = stats.by_component.get(component, 0) + 1

            hour = entry.context.timestamp.strftime("%Y-%m-%dT%H")
            day = entry.context.timestamp.strftime("%Y-%m-%d")
            stats.trends.hourly[hour] = stats.trends.hourly.get(hour, 0) + 1
            stats.trends.daily[day] = stats.trends.daily.get(day, 0) + 1

        return stats

    # ── Alert rules ───────────────────────────────────────────────────────

    def add_alert(
        self,
        name: str,
        conditions: Optional[Union[AlertConditions, Dict[str, Any]]] = None,
        channels: Optional[List[str]] = None,
        recipients: Optional[List[str]] = None,
        enabled: bool = True,
    ) -> str:
        if isinstance(conditions, dict):
            conditions = AlertConditions(**conditions)
        rule = AlertRule(
            id=f"alert_{uuid.uuid4().hex[:12]}",
            name=name,
            conditions=conditions or AlertConditions(),
            channels=channels or [],
            recipients=recipients or [],
            enabled=enabled,
        )
        with self._lock:
            self._rules[rule.id] = rule
        logger.info("Alert rule '%s' registered (%s)", name, rule.id)
        return rule.id

    def get_alerts(self) -> List[AlertRule]:
        with self._lock:
            return [rule.model_copy(deep=True) for rule in self._rules.values()]

    def set_alert_enabled(self, alert_id: str, enabled: bool) -> None:
        with self._lock:
            rule = self._rules.get(alert_id)
            if rule is None:
                raise NotFoundError("alert rule", alert_id)
            rule.enabled = enabled

    def _matching_rules(self, entry: ErrorLogEntry, now: datetime) -> List[AlertRule]:
        fired = []
        for rule in self._rules.values():
            if not rule.enabled or not self._conditions_match(rule.conditions, entry, now):
                continue
            if rule.last_triggered and now - rule.last_triggered < self.alert_cooldown:
                logger.debug("Alert '%s' suppressed by cooldown", rule.name)
                continue
            rule.last_triggered = now
            rule.trigger_count += 1
            fired.append(rule.model_copy(deep=True))
        return fired

    def _conditions_match(
        self,
        conditions: AlertConditions,
        entry: ErrorLogEntry,
        now: datetime,
    ) -> bool:
        error = entry.error
        if conditions.category and error.category.value not in conditions.category:
            return False
        if conditions.severity and error.severity.value not in conditions.severity:
            return False
        if conditions.code and error.code not in conditions.code:
            return False
        if conditions.threshold:
            since = now - timedelta(hours=1)
            recent = 0
            for logged in reversed(self._logs):
                if logged.context.timestamp < since:
                    break
                if logged.error.code == error.code:
                    recent += 1
            if recent < conditions.threshold:
                return False
        return True

    def _dispatch(self, rule: AlertRule, entry: ErrorLogEntry) -> List[DeliveryResult]:
        logger.warning(
            "Alert '%s' triggered by %s (%s)",
            rule.name,
            entry.error.code,
            entry.id,
        )
        return self.dispatcher.dispatch(rule, entry)


# ══════════════════════════════════════════════════════════════════════════
# Error Logger (facade)
# ══════════════════════════════════════════════════════════════════════════

_SEVERITY_LEVELS = {
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class ErrorLogger:
    """
    Records classified errors with runtime metadata.

    Args:
        store:       Backing ErrorLogStore.
        environment: Deployment environment stamped on every entry.
        version:     Application version stamped on every entry.
    """

    def __init__(
        self,
        store: ErrorLogStore,
        environment: str = "development",
        version: str = "1.0.0",
    ):
        self.store = store
        self.environment = environment
        self.version = version

    def log_error(
        self,
        error: ClassifiedError,
        context: Optional[Union[ErrorContext, Dict[str, Any]]] = None,
        session_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> str:
        """
        Store `error` and mirror it to the application log.

        The context timestamp is set to now. Request and session ids default
        to the values bound by `noteguard.context.request_scope()`.

        Returns:
            The log entry id.
        """
        now = self.store.clock()
        if context is None:
            context = ErrorContext(user_id=error.user_id, timestamp=now)
        elif isinstance(context, dict):
            context = ErrorContext(**{**context, "timestamp": now})
        else:
            context = context.model_copy(update={"timestamp": now})

        metadata = LogMetadata(
            session_id=session_id or session_id_var.get() or None,
            request_id=request_id or request_id_var.get() or None,
            environment=self.environment,
            version=self.version,
        )
        log_id = self.store.add_log(error, context, metadata)

        logger.log(
            _SEVERITY_LEVELS.get(error.severity, logging.ERROR),
            "[%s] %s (%s/%s) user=%s component=%s: %s",
            metadata.request_id or log_id,
            error.code,
            error.category.value,
            error.severity.value,
            context.user_id or error.user_id or "-",
            context.component or "-",
            error.message,
        )
        return log_id

    def get_logs(self, **filters) -> List[ErrorLogEntry]:
        return self.store.get_logs(**filters)

    def get_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> ErrorStats:
        return self.store.get_stats(start, end)

    def resolve_error(self, log_id: str, resolved_by: Optional[str] = None) -> bool:
        return self.store.resolve_error(log_id, resolved_by)

    def add_alert(self, name: str, **rule) -> str:
        return self.store.add_alert(name, **rule)

    def setup_critical_alerts(self, recipients: Optional[List[str]] = None) -> List[str]:
        """
        Register the standard production alert rules.

        - API key errors (invalid/expired key) → email + slack
        - Critical system errors              → email + slack
        - High error rate (10 of one code/h)  → slack
        """
        recipients = recipients or []
        return [
            self.add_alert(
                "API Key Errors",
                conditions={
                    "code": ["api_key_invalid", "api_key_expired"],
                    "severity": ["critical"],
                },
                channels=["email", "slack"],
                recipients=recipients,
            ),
            self.add_alert(
                "System Errors",
                conditions={"category": ["system"], "severity": ["critical"]},
                channels=["email", "slack"],
                recipients=recipients,
            ),
            self.add_alert(
                "High Error Rate",
                conditions={"threshold": 10},
                channels=["slack"],
                recipients=recipients,
            ),
        ]
