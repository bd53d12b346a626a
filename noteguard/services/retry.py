"""
NoteGuard — Retry Orchestrator
===============================

What:  Runs an async AI operation with classification-driven retries.
How:   tenacity AsyncRetrying drives the loop. Each failed attempt is
       classified and logged; retryable failures sleep
       max(retry_after, base_delay * 2^(attempt-1)) and run again, anything
       else ends the loop with AIServiceError.
Who:   NoteAIService, and any host code that talks to a provider directly.

Flow per call:
    [reserve estimate] → attempt 1 → fail → classify → log → sleep → attempt 2 ...
        success  → record usage (commit reservation) → return result
        terminal → release reservation → raise AIServiceError(classified)
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar, Union

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)

from noteguard.exceptions import AIServiceError
from noteguard.monitoring.error_logger import ErrorLogger
from noteguard.monitoring.token_monitor import TokenMonitor
from noteguard.schemas.errors import (
    ClassifiedError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
)
from noteguard.schemas.usage import Reservation
from noteguard.services.classifier import classify

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES_EXCEEDED = "MAX_RETRIES_EXCEEDED"


class _UnclassifiedFailure(Exception):
    """An attempt failed with something the classifier could not map."""

    def __init__(self, cause: BaseException):
        super().__init__(str(cause))
        self.cause = cause


def _should_retry(exc: BaseException) -> bool:
    if isinstance(exc, AIServiceError):
        return exc.error.retryable
    return isinstance(exc, _UnclassifiedFailure)


def _usage_of(result: Any):
    """Pull (input, output) token counts from a result, if it carries any."""
    usage = getattr(result, "token_usage", None)
    if usage is None and isinstance(result, Mapping):
        usage = result.get("token_usage")
    if usage is None:
        return None
    if isinstance(usage, Mapping):
        return int(usage.get("input_tokens", 0)), int(usage.get("output_tokens", 0))
    return int(getattr(usage, "input_tokens", 0)), int(getattr(usage, "output_tokens", 0))


class RetryOrchestrator:
    """
    Classification-aware retry loop around provider calls.

    Args:
        monitor:      Records usage on success; holds reservations.
        error_logger: Receives every classified failure.
        sleep:        Awaitable sleep (seconds); replaced in tests.
        clock:        Timestamp source for classified errors.
    """

    def __init__(
        self,
        monitor: TokenMonitor,
        error_logger: ErrorLogger,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.monitor = monitor
        self.error_logger = error_logger
        self._sleep = sleep
        self.clock = clock

    async def call_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: int = 3,
        base_delay_ms: int = 1000,
        user_id: Optional[str] = None,
        operation_tag: str = "generate",
        estimated_tokens: Optional[int] = None,
        context: Optional[Union[ErrorContext, Mapping[str, Any]]] = None,
    ) -> T:
        """
        Execute `operation` with up to `max_retries` attempts in total.

        Args:
            operation:        Zero-argument coroutine function.
            max_retries:      Total attempts, including the first.
            base_delay_ms:    Base of the exponential backoff.
            user_id:          Owner of the usage and of logged errors.
            operation_tag:    Label stored on usage records.
            estimated_tokens: When given, the estimate is reserved before the
                              first attempt and converted to actual usage on
                              success.
            context:          Extra error context (component, url, ...).

        Returns:
            The operation's result.

        Raises:
            AIServiceError: admission denied, non-retryable failure, or
                            retries exhausted. `.error` is the classified
                            failure of the final attempt.
        """
        max_retries = max(1, max_retries)
        error_context = self._build_context(context, user_id, operation_tag)

        reservation: Optional[Reservation] = None
        if estimated_tokens is not None:
            try:
                reservation = self.monitor.reserve(
                    estimated_tokens, operation=operation_tag, user_id=user_id
                )
            except AIServiceError as e:
                self.error_logger.log_error(e.error, error_context)
                raise

        def wait_for(retry_state: RetryCallState) -> float:
            exc = retry_state.outcome.exception()
            exponential = base_delay_ms * 2 ** (retry_state.attempt_number - 1)
            hint = exc.error.effective_retry_after_ms if isinstance(exc, AIServiceError) else 0
            return max(hint, exponential) / 1000

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_retries),
                wait=wait_for,
                retry=retry_if_exception(_should_retry),
                sleep=self._sleep,
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    result = await self._attempt(
                        operation,
                        attempt.retry_state.attempt_number,
                        error_context,
                    )
        except _UnclassifiedFailure as e:
            if reservation is not None:
                self.monitor.release(reservation)
            terminal = self._max_retries_error(e.cause, max_retries, error_context)
            self.error_logger.log_error(terminal, error_context)
            raise AIServiceError(terminal) from e.cause
        except AIServiceError as e:
            if reservation is not None:
                self.monitor.release(reservation)
            logger.error(
                "%s failed for user=%s with %s after %d attempt(s)",
                operation_tag,
                user_id or "-",
                e.error.code,
                (e.error.retry_count or 0) + 1,
            )
            raise
        except BaseException:
            if reservation is not None:
                self.monitor.release(reservation)
            raise

        self._record_success(result, reservation, operation_tag, user_id)
        return result

    async def _attempt(
        self,
        operation: Callable[[], Awaitable[T]],
        attempt_number: int,
        context: ErrorContext,
    ) -> T:
        try:
            return await operation()
        except AIServiceError:
            # already classified and logged by an inner call_with_retry
            raise
        except Exception as exc:
            classified = classify(exc, context, clock=self.clock)
            if classified is None:
                raise _UnclassifiedFailure(exc) from exc
            classified = classified.model_copy(update={"retry_count": attempt_number - 1})
            self.error_logger.log_error(classified, context)
            raise AIServiceError(classified) from exc

    def _record_success(
        self,
        result: Any,
        reservation: Optional[Reservation],
        operation_tag: str,
        user_id: Optional[str],
    ) -> None:
        usage = _usage_of(result)
        if reservation is not None:
            if usage is None:
                self.monitor.commit(reservation)
            else:
                self.monitor.commit(reservation, usage[0], usage[1])
        elif usage is not None:
            self.monitor.record_usage(
                usage[0], usage[1], operation=operation_tag, user_id=user_id
            )

    def _build_context(
        self,
        context: Optional[Union[ErrorContext, Mapping[str, Any]]],
        user_id: Optional[str],
        operation_tag: str,
    ) -> ErrorContext:
        if isinstance(context, ErrorContext):
            base = context.model_dump()
        else:
            base = dict(context or {})
        if base.get("action") is None:
            base["action"] = operation_tag
        if base.get("user_id") is None:
            base["user_id"] = user_id
        base["timestamp"] = self.clock()
        return ErrorContext(**base)

    def _max_retries_error(
        self,
        cause: BaseException,
        max_retries: int,
        context: ErrorContext,
    ) -> ClassifiedError:
        return ClassifiedError(
            code=MAX_RETRIES_EXCEEDED,
            message=f"AI request failed after {max_retries} attempt(s): {cause}",
            category=ErrorCategory.UNKNOWN,
            severity=ErrorSeverity.ERROR,
            timestamp=self.clock(),
            user_id=context.user_id,
            retryable=False,
            api_endpoint=context.action,
            retry_count=max_retries - 1,
        )
