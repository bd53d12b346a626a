"""
NoteGuard — Alert Dispatch
===========================

What:  Delivers fired alert rules to named channels (email, slack, webhook).
How:   Each channel implements AlertChannel.deliver() and raises
       AlertDeliveryError on failure. AlertDispatcher retries each channel
       with tenacity and returns one DeliveryResult per channel, so the
       caller knows what actually went out.
Who:   Called by ErrorLogStore when a rule matches a new log entry.

Real transports are provided by the host application. LoggingAlertChannel
is the default for every well-known channel name: it writes the alert to
the application log at WARNING.
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, Iterable, List, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_none,
)

from noteguard.exceptions import AlertDeliveryError
from noteguard.schemas.monitoring import (
    AlertNotification,
    AlertRule,
    DeliveryResult,
    ErrorLogEntry,
)

logger = logging.getLogger(__name__)

DEFAULT_CHANNELS = ("email", "slack", "webhook")


class AlertChannel(ABC):
    """
    A destination for alert notifications.

    Contract:
        - deliver() returns normally once the notification is accepted
        - transient or permanent failures raise AlertDeliveryError
    """

    name: str

    @abstractmethod
    def deliver(self, notification: AlertNotification) -> None:
        ...


class LoggingAlertChannel(AlertChannel):
    """Writes the alert to the application log instead of sending it."""

    def __init__(self, name: str):
        self.name = name

    def deliver(self, notification: AlertNotification) -> None:
        logger.warning(
            "[ALERT:%s] %s → %s | %s (%s/%s) log=%s user=%s",
            self.name,
            notification.rule_name,
            ", ".join(notification.recipients) or "(no recipients)",
            notification.message,
            notification.category,
            notification.severity,
            notification.log_id,
            notification.user_id or "-",
        )


class AlertDispatcher:
    """
    Routes a fired rule to its channels with per-channel retries.

    Args:
        channels:     Initial channels; defaults to a LoggingAlertChannel for
                      each of email, slack and webhook.
        max_attempts: Delivery attempts per channel.
        wait:         tenacity wait strategy between attempts.
        clock:        Timestamp source for DeliveryResults.
    """

    def __init__(
        self,
        channels: Optional[Iterable[AlertChannel]] = None,
        max_attempts: int = 3,
        wait=None,
        clock: Callable[[], datetime] = datetime.now,
        history_size: int = 500,
    ):
        if channels is None:
            channels = [LoggingAlertChannel(name) for name in DEFAULT_CHANNELS]
        self._channels: Dict[str, AlertChannel] = {c.name: c for c in channels}
        self.max_attempts = max_attempts
        self._wait = wait if wait is not None else wait_none()
        self.clock = clock
        self.history: Deque[DeliveryResult] = deque(maxlen=history_size)

    def register(self, channel: AlertChannel) -> None:
        """Add or replace the channel under `channel.name`."""
        self._channels[channel.name] = channel

    @property
    def channel_names(self) -> List[str]:
        return sorted(self._channels)

    def dispatch(self, rule: AlertRule, entry: ErrorLogEntry) -> List[DeliveryResult]:
        notification = AlertNotification(
            rule_id=rule.id,
            rule_name=rule.name,
            recipients=list(rule.recipients),
            log_id=entry.id,
            code=entry.error.code,
            message=entry.error.message,
            category=entry.error.category.value,
            severity=entry.error.severity.value,
            user_id=entry.error.user_id,
            triggered_at=self.clock(),
        )
        results = [self._deliver(name, notification) for name in rule.channels]
        self.history.extend(results)
        return results

    def _deliver(self, channel_name: str, notification: AlertNotification) -> DeliveryResult:
        channel = self._channels.get(channel_name)
        if channel is None:
            logger.error(
                "Alert '%s' targets unknown channel '%s'",
                notification.rule_name,
                channel_name,
            )
            return DeliveryResult(
                channel=channel_name,
                delivered=False,
                error="No channel registered under this name",
                timestamp=self.clock(),
            )

        attempts = 0
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=self._wait,
                retry=retry_if_exception_type(AlertDeliveryError),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    channel.deliver(notification)
        except AlertDeliveryError as e:
            logger.error(
                "Alert '%s' could not be delivered via %s after %d attempt(s): %s",
                notification.rule_name,
                channel_name,
                attempts,
                e.message,
            )
            return DeliveryResult(
                channel=channel_name,
                delivered=False,
                attempts=attempts,
                error=e.message,
                timestamp=self.clock(),
            )

        return DeliveryResult(
            channel=channel_name,
            delivered=True,
            attempts=attempts,
            timestamp=self.clock(),
        )
