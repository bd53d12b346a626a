"""
NoteGuard — Error Logger & Alerting Tests
==========================================

What we test:
    ✅ Entries carry context time, runtime metadata and request ids
    ✅ Filtering, ordering and copy semantics of get_logs
    ✅ Aggregate statistics and the 24h default window
    ✅ Resolution is idempotent
    ✅ Alert allow-lists, thresholds and cooldown
    ✅ Per-channel delivery retries
"""

import pytest

from noteguard.context import request_scope
from noteguard.exceptions import NotFoundError
from noteguard.monitoring.alerting import AlertDispatcher
from noteguard.monitoring.error_logger import ErrorLogStore
from noteguard.schemas.errors import (
    ClassifiedError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
)
from noteguard.schemas.monitoring import LogMetadata


def _error(
    code="rate_limit_exceeded",
    category=ErrorCategory.API,
    severity=ErrorSeverity.WARNING,
    user_id=None,
):
    return ClassifiedError(
        code=code,
        message=f"{code} happened",
        category=category,
        severity=severity,
        user_id=user_id,
        retryable=True,
        retry_after_ms=60_000,
    )


class TestLogError:
    """Tests for ErrorLogger.log_error."""

    def test_entry_is_stamped(self, error_logger, error_store, clock):
        log_id = error_logger.log_error(_error(), {"user_id": "u1", "component": "editor"})

        assert log_id.startswith("error_")
        entry = error_store.get_logs()[0]
        assert entry.id == log_id
        assert entry.context.timestamp == clock.now
        assert entry.context.user_id == "u1"
        assert entry.metadata.environment == "test"
        assert entry.metadata.version == "9.9.9"
        assert entry.resolved is False

    def test_context_model_is_not_mutated(self, error_logger, clock):
        context = ErrorContext(user_id="u1", action="summary")
        original_ts = context.timestamp
        clock.advance(minutes=5)
        error_logger.log_error(_error(), context)
        assert context.timestamp == original_ts

    def test_missing_context_uses_error_user(self, error_logger, error_store):
        error_logger.log_error(_error(user_id="u9"))
        assert error_store.get_logs(user_id="u9")

    def test_request_scope_ids(self, error_logger, error_store):
        with request_scope("req-1", session_id="sess-1"):
            error_logger.log_error(_error())
        error_logger.log_error(_error())

        newest, oldest = error_store.get_logs()
        assert oldest.metadata.request_id == "req-1"
        assert oldest.metadata.session_id == "sess-1"
        assert newest.metadata.request_id is None

    def test_explicit_ids_win(self, error_logger, error_store):
        with request_scope("req-1"):
            error_logger.log_error(_error(), request_id="req-2", session_id="s")
        entry = error_store.get_logs()[0]
        assert entry.metadata.request_id == "req-2"
        assert entry.metadata.session_id == "s"


class TestQueries:
    """Tests for get_logs and get_stats."""

    def test_newest_first(self, error_logger, error_store, clock):
        error_logger.log_error(_error(code="first"))
        clock.advance(minutes=1)
        error_logger.log_error(_error(code="second"))
        assert [e.error.code for e in error_store.get_logs()] == ["second", "first"]

    def test_filters_combine(self, error_logger, error_store, clock):
        error_logger.log_error(_error(), {"user_id": "u1", "component": "editor"})
        error_logger.log_error(
            _error(code="ssl_certificate_error", category=ErrorCategory.SYSTEM, severity=ErrorSeverity.CRITICAL),
            {"user_id": "u1"},
        )
        error_logger.log_error(_error(), {"user_id": "u2"})

        assert len(error_store.get_logs(user_id="u1")) == 2
        assert len(error_store.get_logs(category="system")) == 1
        assert len(error_store.get_logs(severity=ErrorSeverity.WARNING)) == 2
        assert len(error_store.get_logs(code="rate_limit_exceeded", user_id="u2")) == 1
        assert len(error_store.get_logs(component="editor")) == 1
        assert error_store.get_logs(start_date=clock.now.replace(hour=13)) == []

    def test_returned_entries_are_copies(self, error_logger, error_store):
        error_logger.log_error(_error())
        copy = error_store.get_logs()[0]
        copy.resolved = True
        assert error_store.get_logs(resolved=False)

    def test_stats_have_every_bucket(self, error_store):
        stats = error_store.get_stats()
        assert stats.total == 0
        assert set(stats.by_category) == {c.value for c in ErrorCategory}
        assert set(stats.by_severity) == {s.value for s in ErrorSeverity}
        assert all(v == 0 for v in stats.by_category.values())

    def test_stats_buckets_sum_to_total(self, error_logger, error_store):
        mixed = [
            _error(),
            _error(code="api_timeout", category=ErrorCategory.NETWORK, severity=ErrorSeverity.ERROR),
            _error(code="ssl_certificate_error", category=ErrorCategory.SYSTEM, severity=ErrorSeverity.CRITICAL),
            _error(code="empty_response", category=ErrorCategory.AI, severity=ErrorSeverity.WARNING),
            _error(code="token_limit_exceeded", category=ErrorCategory.TOKEN, severity=ErrorSeverity.ERROR),
        ]
        for error in mixed:
            error_logger.log_error(error)

        stats = error_store.get_stats()
        assert stats.total == len(mixed)
        assert sum(stats.by_category.values()) == len(mixed)
        assert sum(stats.by_severity.values()) == len(mixed)

    def test_stats_counts(self, error_logger, error_store):
        error_logger.log_error(_error(), {"user_id": "u1", "component": "editor"})
        error_logger.log_error(_error(), {"user_id": "u1"})
        error_logger.log_error(_error(code="api_timeout", category=ErrorCategory.NETWORK, severity=ErrorSeverity.ERROR))

        stats = error_store.get_stats()
        assert stats.total == 3
        assert stats.by_category["api"] == 2
        assert stats.by_category["network"] == 1
        assert stats.by_severity["warning"] == 2
        assert stats.by_code == {"rate_limit_exceeded": 2, "api_timeout": 1}
        assert stats.by_user == {"u1": 2}
        assert stats.by_component == {"editor": 1}
        assert stats.trends.hourly == {"2024-05-15T12": 3}
        assert stats.trends.daily == {"2024-05-15": 3}

    def test_stats_default_to_last_day(self, error_logger, error_store, clock):
        error_logger.log_error(_error())
        clock.advance(hours=25)
        error_logger.log_error(_error())
        assert error_store.get_stats().total == 1

    def test_entries_expire_after_retention(self, error_logger, error_store, clock):
        error_logger.log_error(_error())
        clock.advance(days=31)
        error_logger.log_error(_error())
        assert len(error_store) == 1


class TestResolve:
    """Tests for resolve_error."""

    def test_unknown_id(self, error_logger):
        assert error_logger.resolve_error("error_missing") is False

    def test_resolve_keeps_first_resolver(self, error_logger, error_store, clock):
        log_id = error_logger.log_error(_error())
        assert error_logger.resolve_error(log_id, "alice") is True
        first_time = clock.now
        clock.advance(minutes=10)
        assert error_logger.resolve_error(log_id, "bob") is True

        entry = error_store.get_logs(resolved=True)[0]
        assert entry.resolved_by == "alice"
        assert entry.resolved_at == first_time


class TestAlertRules:
    """Tests for alert matching, threshold and cooldown."""

    def test_code_allow_list(self, error_logger, recording_channel):
        error_logger.add_alert("keys", conditions={"code": ["api_key_invalid"]}, channels=["slack"])
        error_logger.log_error(_error())
        assert recording_channel.delivered == []

        error_logger.log_error(
            _error(code="api_key_invalid", category=ErrorCategory.API, severity=ErrorSeverity.CRITICAL)
        )
        assert len(recording_channel.delivered) == 1
        assert recording_channel.delivered[0].code == "api_key_invalid"

    def test_disabled_rule_never_fires(self, error_logger, error_store, recording_channel):
        alert_id = error_logger.add_alert("all", channels=["slack"])
        error_store.set_alert_enabled(alert_id, False)
        error_logger.log_error(_error())
        assert recording_channel.delivered == []

    def test_set_enabled_on_unknown_rule(self, error_store):
        with pytest.raises(NotFoundError):
            error_store.set_alert_enabled("alert_missing", True)

    def test_threshold_counts_same_code_in_last_hour(self, error_logger, recording_channel, clock):
        error_logger.add_alert("burst", conditions={"threshold": 3}, channels=["slack"])

        error_logger.log_error(_error())
        error_logger.log_error(_error(code="other"))
        error_logger.log_error(_error())
        assert recording_channel.delivered == []

        error_logger.log_error(_error())
        assert len(recording_channel.delivered) == 1

    def test_threshold_ignores_entries_older_than_an_hour(self, error_logger, recording_channel, clock):
        error_logger.add_alert("burst", conditions={"threshold": 2}, channels=["slack"])
        error_logger.log_error(_error())
        clock.advance(minutes=61)
        error_logger.log_error(_error())
        assert recording_channel.delivered == []

    def test_cooldown_fires_once_per_hour(self, error_logger, error_store, recording_channel, clock):
        alert_id = error_logger.add_alert(
            "rate", conditions={"code": ["rate_limit_exceeded"]}, channels=["slack"]
        )

        for _ in range(100):
            error_logger.log_error(_error())
            clock.advance(seconds=30)
        assert len(recording_channel.delivered) == 1

        clock.advance(minutes=11)
        error_logger.log_error(_error())
        assert len(recording_channel.delivered) == 2

        rule = next(r for r in error_store.get_alerts() if r.id == alert_id)
        assert rule.trigger_count == 2
        assert rule.last_triggered == clock.now

    def test_critical_alert_setup(self, error_logger, error_store, recording_channel):
        ids = error_logger.setup_critical_alerts(["ops@example.com"])
        assert len(ids) == 3
        names = {r.name for r in error_store.get_alerts()}
        assert names == {"API Key Errors", "System Errors", "High Error Rate"}

        error_logger.log_error(
            _error(code="api_key_expired", category=ErrorCategory.API, severity=ErrorSeverity.CRITICAL)
        )
        assert len(recording_channel.delivered) == 1
        assert recording_channel.delivered[0].recipients == ["ops@example.com"]
        assert recording_channel.delivered[0].rule_name == "API Key Errors"


class TestDispatcher:
    """Tests for per-channel delivery."""

    def _store(self, clock, *channels, max_attempts=3):
        dispatcher = AlertDispatcher(channels=channels, max_attempts=max_attempts, clock=clock)
        return ErrorLogStore(dispatcher=dispatcher, clock=clock), dispatcher

    def _log(self, store, clock):
        store.add_alert("all", channels=["slack", "pager"])
        store.add_log(_error(), ErrorContext(timestamp=clock.now), LogMetadata(environment="test"))

    def test_transient_failures_are_retried(self, clock, make_channel):
        flaky = make_channel("slack", failures=2)
        store, dispatcher = self._store(clock, flaky)
        self._log(store, clock)

        assert flaky.calls == 3
        assert len(flaky.delivered) == 1
        slack = next(r for r in dispatcher.history if r.channel == "slack")
        assert slack.delivered is True
        assert slack.attempts == 3

    def test_exhausted_delivery_is_reported(self, clock, make_channel):
        broken = make_channel("slack", failures=10)
        store, dispatcher = self._store(clock, broken, max_attempts=2)
        self._log(store, clock)

        assert broken.calls == 2
        slack = next(r for r in dispatcher.history if r.channel == "slack")
        assert slack.delivered is False
        assert "502" in slack.error

    def test_unknown_channel_is_not_delivered(self, clock, make_channel):
        store, dispatcher = self._store(clock, make_channel("slack"))
        self._log(store, clock)

        pager = next(r for r in dispatcher.history if r.channel == "pager")
        assert pager.delivered is False
        assert pager.attempts == 0

    def test_default_channels(self):
        assert AlertDispatcher().channel_names == ["email", "slack", "webhook"]
