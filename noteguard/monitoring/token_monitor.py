"""
NoteGuard — Token Usage Ledger & Admission Monitor
===================================================

What:  Meters token consumption per user over a rolling day and hour, and
       decides whether a new AI request may start.
How:   TokenUsageStore keeps an append-only, time-ordered deque of
       UsageRecords (7-day retention, pruned from the left on every write).
       TokenMonitor layers admission policy on top: a per-request cap first,
       then the daily/hourly budget.
Who:   RetryOrchestrator records usage after successful calls and reserves
       budget before them; hosts call validate_request() / get_usage() for
       status displays.

Windows:
    daily   → records at or after local midnight of the current day
    hourly  → records at or after now - 1 hour

Concurrency:
    validate_request() is a read-only check. reserve() runs the same check
    with in-flight reservations counted and, if admitted, holds the estimate
    in one critical section, so two concurrent callers cannot both squeeze
    under the limit.
"""

import logging
import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from noteguard.exceptions import AIServiceError, ValidationError
from noteguard.schemas.errors import (
    ClassifiedError,
    ErrorCategory,
    ErrorSeverity,
    TokenUsageInfo,
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

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

TOKEN_LIMIT_EXCEEDED = "token_limit_exceeded"


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _hour_bucket(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H")


# ══════════════════════════════════════════════════════════════════════════
# Usage Ledger
# ══════════════════════════════════════════════════════════════════════════

class TokenUsageStore:
    """
    In-memory ledger of completed AI calls plus the active LimitConfig.

    Records are kept sorted by timestamp, so window sums walk backwards from
    the newest record and stop at the window start, and pruning pops from the
    front.

    Args:
        limits:    Initial limits (defaults to LimitConfig()).
        retention: How long records are kept.
        clock:     Returns the current local time; injected by tests.
    """

    def __init__(
        self,
        limits: Optional[LimitConfig] = None,
        retention: timedelta = timedelta(days=7),
        clock: Clock = datetime.now,
    ):
        self.limits = limits or LimitConfig()
        self.retention = retention
        self.clock = clock
        self._records: Deque[UsageRecord] = deque()
        self._reservations: Dict[str, Reservation] = {}
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def __len__(self) -> int:
        return len(self._records)

    # ── Writes ────────────────────────────────────────────────────────────

    def record_usage(
        self,
        input_tokens: int,
        output_tokens: int,
        operation: str = "generate",
        user_id: Optional[str] = None,
        total: Optional[int] = None,
    ) -> UsageRecord:
        """
        Append one usage record stamped with the current time.

        `total` defaults to input + output. Expired records are pruned as part
        of the same write.
        """
        with self._lock:
            now = self.clock()
            record = UsageRecord(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total=total,
                timestamp=now,
                operation=operation,
                user_id=user_id,
            )
            self._insert(record)
            self._prune_locked(now)

        logger.debug(
            "Recorded %d tokens for operation=%s user=%s",
            record.total,
            operation,
            user_id or "-",
        )
        return record

    def _insert(self, record: UsageRecord) -> None:
        if not self._records or self._records[-1].timestamp <= record.timestamp:
            self._records.append(record)
            return
        # Out-of-order timestamp (clock stepped back): find its slot from the right
        index = len(self._records)
        while index > 0 and self._records[index - 1].timestamp > record.timestamp:
            index -= 1
        self._records.insert(index, record)

    def prune(self) -> int:
        """Drop records older than the retention window. Returns how many went."""
        with self._lock:
            return self._prune_locked(self.clock())

    def _prune_locked(self, now: datetime) -> int:
        cutoff = now - self.retention
        removed = 0
        while self._records and self._records[0].timestamp <= cutoff:
            self._records.popleft()
            removed += 1
        return removed

    def reset_usage(self, user_id: Optional[str] = None) -> None:
        """Forget one user's records, or every record when no user is given."""
        with self._lock:
            if user_id is None:
                self._records.clear()
                self._reservations.clear()
                logger.info("Token usage ledger cleared")
                return
            self._records = deque(r for r in self._records if r.user_id != user_id)
            self._reservations = {
                rid: r for rid, r in self._reservations.items() if r.user_id != user_id
            }
            logger.info("Token usage cleared for user=%s", user_id)

    def update_limits(self, **partial) -> LimitConfig:
        """
        Shallow-merge new values into the current limits.

        Raises:
            ValidationError: unknown key, or a value outside its field's range.
        """
        unknown = set(partial) - set(LimitConfig.model_fields)
        if unknown:
            raise ValidationError(
                f"Unknown limit setting(s): {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )
        with self._lock:
            try:
                self.limits = LimitConfig.model_validate(
                    {**self.limits.model_dump(), **partial}
                )
            except PydanticValidationError as e:
                raise ValidationError(
                    "Invalid limit configuration",
                    context={"errors": e.errors(include_url=False)},
                ) from e
        logger.info("Token limits updated: %s", partial)
        return self.limits

    # ── Reservations ──────────────────────────────────────────────────────

    def add_reservation(self, reservation: Reservation) -> None:
        with self._lock:
            self._reservations[reservation.id] = reservation

    def pop_reservation(self, reservation_id: str) -> Optional[Reservation]:
        with self._lock:
            return self._reservations.pop(reservation_id, None)

    @property
    def pending_reservations(self) -> int:
        return len(self._reservations)

    # ── Queries ───────────────────────────────────────────────────────────

    def _sum_since(
        self,
        since: datetime,
        user_id: Optional[str],
        include_pending: bool,
    ) -> int:
        total = 0
        with self._lock:
            for record in reversed(self._records):
                if record.timestamp < since:
                    break
                if user_id is None or record.user_id == user_id:
                    total += record.total
            if include_pending:
                for reservation in self._reservations.values():
                    if reservation.timestamp >= since and (
                        user_id is None or reservation.user_id == user_id
                    ):
                        total += reservation.estimated_tokens
        return total

    def get_daily_usage(
        self,
        user_id: Optional[str] = None,
        include_pending: bool = False,
    ) -> int:
        """Tokens used since local midnight; all users when user_id is None."""
        return self._sum_since(_start_of_day(self.clock()), user_id, include_pending)

    def get_hourly_usage(
        self,
        user_id: Optional[str] = None,
        include_pending: bool = False,
    ) -> int:
        """Tokens used in the trailing hour; all users when user_id is None."""
        return self._sum_since(self.clock() - timedelta(hours=1), user_id, include_pending)

    def check_limits(
        self,
        user_id: Optional[str] = None,
        include_pending: bool = False,
    ) -> LimitCheck:
        """
        Evaluate the daily and hourly budgets independently.

        A window at or over its limit adds an error; a window at or over
        limit * warning_threshold (but under the limit) adds a warning.
        """
        with self._lock:
            limits = self.limits
            daily = self.get_daily_usage(user_id, include_pending)
            hourly = self.get_hourly_usage(user_id, include_pending)

        warnings = []
        errors = []
        threshold_pct = round(limits.warning_threshold * 100)
        for label, usage, limit in (
            ("Daily", daily, limits.daily_limit),
            ("Hourly", hourly, limits.hourly_limit),
        ):
            if usage >= limit:
                errors.append(
                    f"{label} token limit exceeded ({usage:,}/{limit:,} tokens)."
                )
            elif usage >= limit * limits.warning_threshold:
                warnings.append(
                    f"{label} token usage has reached the {threshold_pct}% warning "
                    f"threshold ({usage:,}/{limit:,} tokens)."
                )

        return LimitCheck(can_proceed=not errors, warnings=warnings, errors=errors)

    def get_usage_stats(self, user_id: Optional[str] = None, days: int = 7) -> UsageStats:
        """
        Totals over the last `days` days.

        average_daily is total / days even when some days had no traffic;
        peak_hourly is the largest single clock-hour bucket.
        """
        now = self.clock()
        cutoff = now - timedelta(days=days)
        total = 0
        hourly: Dict[str, int] = {}
        operations: Dict[str, int] = {}

        with self._lock:
            for record in reversed(self._records):
                if record.timestamp < cutoff:
                    break
                if user_id is not None and record.user_id != user_id:
                    continue
                total += record.total
                bucket = _hour_bucket(record.timestamp)
                hourly[bucket] = hourly.get(bucket, 0) + record.total
                operations[record.operation] = operations.get(record.operation, 0) + record.total

        return UsageStats(
            total_usage=total,
            average_daily=total / days if days > 0 else 0.0,
            peak_hourly=max(hourly.values(), default=0),
            operations=operations,
        )


# ══════════════════════════════════════════════════════════════════════════
# Admission Monitor
# ══════════════════════════════════════════════════════════════════════════

class TokenMonitor:
    """
    Admission policy over a TokenUsageStore.

    Two-stage check:
        1. estimated_tokens > per_request_limit → denied, regardless of usage
        2. check_limits() has errors           → denied with the joined errors
        otherwise                              → allowed, warnings attached

    Denials carry a non-retryable `token_limit_exceeded` ClassifiedError so
    callers can hand it straight to the fallback provider.
    """

    def __init__(self, store: TokenUsageStore):
        self.store = store

    @property
    def limits(self) -> LimitConfig:
        return self.store.limits

    def record_usage(
        self,
        input_tokens: int,
        output_tokens: int,
        operation: str = "generate",
        user_id: Optional[str] = None,
        total: Optional[int] = None,
    ) -> UsageRecord:
        return self.store.record_usage(
            input_tokens, output_tokens, operation=operation, user_id=user_id, total=total
        )

    def validate_request(
        self,
        estimated_tokens: int,
        user_id: Optional[str] = None,
    ) -> ValidationResult:
        """
        Check whether a request of `estimated_tokens` may start.

        Never changes the ledger. Zero or negative estimates are treated as 0.
        """
        return self._evaluate(estimated_tokens, user_id, include_pending=False)

    def _evaluate(
        self,
        estimated_tokens: int,
        user_id: Optional[str],
        include_pending: bool,
    ) -> ValidationResult:
        estimated = max(0, int(estimated_tokens))
        limits = self.store.limits

        if estimated > limits.per_request_limit:
            return ValidationResult(
                allowed=False,
                error=self._limit_error(
                    f"Request exceeds the per-request token limit "
                    f"({estimated:,}/{limits.per_request_limit:,} tokens).",
                    estimated,
                    limits.per_request_limit,
                    user_id,
                ),
            )

        check = self.store.check_limits(user_id, include_pending=include_pending)
        if not check.can_proceed:
            return ValidationResult(
                allowed=False,
                error=self._limit_error(
                    " ".join(check.errors),
                    estimated,
                    limits.daily_limit,
                    user_id,
                ),
                warnings=check.warnings,
            )

        return ValidationResult(allowed=True, warnings=check.warnings)

    def _limit_error(
        self,
        message: str,
        estimated: int,
        limit: int,
        user_id: Optional[str],
    ) -> ClassifiedError:
        return ClassifiedError(
            code=TOKEN_LIMIT_EXCEEDED,
            message=message,
            category=ErrorCategory.TOKEN,
            severity=ErrorSeverity.ERROR,
            timestamp=self.store.clock(),
            user_id=user_id,
            retryable=False,
            token_usage=TokenUsageInfo(
                input=estimated, output=0, total=estimated, limit=limit
            ),
        )

    # ── Reserve / commit ──────────────────────────────────────────────────

    def reserve(
        self,
        estimated_tokens: int,
        operation: str = "generate",
        user_id: Optional[str] = None,
    ) -> Reservation:
        """
        Atomically admit a request and hold its estimate against the budget.

        Raises:
            AIServiceError: admission denied; `.error` is the token error.
        """
        with self.store.lock:
            result = self._evaluate(estimated_tokens, user_id, include_pending=True)
            if not result.allowed:
                logger.warning(
                    "Token admission denied for user=%s operation=%s: %s",
                    user_id or "-",
                    operation,
                    result.error.message,
                )
                raise AIServiceError(result.error)

            reservation = Reservation(
                estimated_tokens=max(0, int(estimated_tokens)),
                operation=operation,
                user_id=user_id,
                timestamp=self.store.clock(),
                warnings=result.warnings,
            )
            self.store.add_reservation(reservation)

        for warning in result.warnings:
            logger.warning("Token budget warning for user=%s: %s", user_id or "-", warning)
        return reservation

    def commit(
        self,
        reservation: Reservation,
        input_tokens: Optional[int] = None,
        output_tokens: int = 0,
    ) -> UsageRecord:
        """
        Replace a hold with the actual usage. Without actual counts, the
        estimate is recorded as input tokens.
        """
        with self.store.lock:
            if self.store.pop_reservation(reservation.id) is None:
                logger.debug("Committing reservation %s that was no longer held", reservation.id)
            return self.store.record_usage(
                reservation.estimated_tokens if input_tokens is None else input_tokens,
                output_tokens,
                operation=reservation.operation,
                user_id=reservation.user_id,
            )

    def release(self, reservation: Reservation) -> bool:
        """Drop a hold without recording usage. False if it was not held."""
        return self.store.pop_reservation(reservation.id) is not None

    # ── Reporting / admin ─────────────────────────────────────────────────

    def get_usage(self, user_id: Optional[str] = None) -> UsageSnapshot:
        return UsageSnapshot(
            daily=self.store.get_daily_usage(user_id),
            hourly=self.store.get_hourly_usage(user_id),
            limits=self.store.limits,
            stats=self.store.get_usage_stats(user_id),
        )

    def get_limit_status(self, user_id: Optional[str] = None) -> LimitStatus:
        """Budget summary for UI banners: usage, limits and any messages."""
        check = self.store.check_limits(user_id)
        limits = self.store.limits
        return LimitStatus(
            can_use_ai=check.can_proceed,
            daily_usage=self.store.get_daily_usage(user_id),
            daily_limit=limits.daily_limit,
            hourly_usage=self.store.get_hourly_usage(user_id),
            hourly_limit=limits.hourly_limit,
            warnings=check.warnings,
            errors=check.errors,
        )

    def update_limits(self, **partial) -> LimitConfig:
        return self.store.update_limits(**partial)

    def reset_usage(self, user_id: Optional[str] = None) -> None:
        self.store.reset_usage(user_id)
