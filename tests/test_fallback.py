"""
NoteGuard — Fallback Provider Tests
====================================

What we test:
    ✅ Category-driven option selection and ordering
    ✅ Summary template shapes and truncation
    ✅ Heuristic tags (keywords, length, weekday, cap)
    ✅ Registry management and usage statistics
"""

import pytest

from noteguard.exceptions import NotFoundError, ValidationError
from noteguard.schemas.errors import ClassifiedError, ErrorCategory, ErrorSeverity
from noteguard.schemas.fallback import FallbackType
from noteguard.services.fallback import DAY_TAGS, EMPTY_SUMMARY


def _error(category: ErrorCategory) -> ClassifiedError:
    return ClassifiedError(
        code=f"{category.value}_error",
        message="failed",
        category=category,
        severity=ErrorSeverity.ERROR,
    )


class TestFallbackOptions:
    """Tests for get_fallback_options."""

    def test_token_errors(self, fallback_provider):
        options = fallback_provider.get_fallback_options(_error(ErrorCategory.TOKEN))
        assert [o.id for o in options] == [
            "manual_summary",
            "manual_tags",
            "summary_template",
            "tag_suggestions",
        ]

    @pytest.mark.parametrize("category", [ErrorCategory.API, ErrorCategory.SERVER])
    def test_api_and_server_errors(self, fallback_provider, category):
        options = fallback_provider.get_fallback_options(_error(category))
        assert {o.type for o in options} == {FallbackType.MANUAL_INPUT, FallbackType.RETRY}
        assert [o.priority for o in options] == sorted(o.priority for o in options)

    def test_network_errors_offer_retry_first(self, fallback_provider):
        options = fallback_provider.get_fallback_options(_error(ErrorCategory.NETWORK))
        assert options[0].id == "retry_later"
        assert {o.type for o in options[1:]} == {FallbackType.MANUAL_INPUT}

    def test_ai_errors(self, fallback_provider):
        options = fallback_provider.get_fallback_options(_error(ErrorCategory.AI))
        assert {o.type for o in options} == {FallbackType.MANUAL_INPUT, FallbackType.TEMPLATE}

    @pytest.mark.parametrize("category", [ErrorCategory.UNKNOWN, ErrorCategory.SYSTEM])
    def test_other_errors_get_everything(self, fallback_provider, category):
        options = fallback_provider.get_fallback_options(_error(category))
        assert len(options) == 5
        assert [o.priority for o in options] == [1, 2, 3, 4, 5]

    def test_unavailable_options_are_never_offered(self, fallback_provider):
        fallback_provider.set_option_availability("retry_later", False)
        options = fallback_provider.get_fallback_options(_error(ErrorCategory.NETWORK))
        assert "retry_later" not in [o.id for o in options]
        assert all(o.available for o in options)


class TestSummaryTemplate:
    """Tests for generate_summary_template."""

    @pytest.mark.parametrize("content", ["", "   ", "\n\n  \n"])
    def test_empty_content(self, fallback_provider, content):
        assert fallback_provider.generate_summary_template(content) == EMPTY_SUMMARY

    def test_single_line(self, fallback_provider):
        assert fallback_provider.generate_summary_template("Buy milk") == "• Buy milk"

    def test_single_long_line_is_truncated(self, fallback_provider):
        summary = fallback_provider.generate_summary_template("x" * 120)
        assert summary == "• " + "x" * 80 + "..."

    def test_two_lines(self, fallback_provider):
        summary = fallback_provider.generate_summary_template("first\nlast")
        assert summary == "• first\n• last"

    def test_many_lines_include_count(self, fallback_provider):
        content = "first\nsecond\n\nthird\nfourth\nlast"
        summary = fallback_provider.generate_summary_template(content)
        assert summary.splitlines() == ["• first", "• (3 more items)", "• last"]

    def test_identical_last_line_is_skipped(self, fallback_provider):
        summary = fallback_provider.generate_summary_template("same\nmiddle\nsame")
        assert summary.splitlines() == ["• same", "• (1 more items)"]

    def test_each_line_truncated_independently(self, fallback_provider):
        summary = fallback_provider.generate_summary_template("a" * 90 + "\n" + "b" * 10)
        assert summary.splitlines() == ["• " + "a" * 80 + "...", "• " + "b" * 10]

    def test_lines_are_stripped(self, fallback_provider):
        summary = fallback_provider.generate_summary_template("  - buy milk  \n\tcall mom\n    - buy milk")
        assert summary.splitlines() == ["• - buy milk", "• (1 more items)"]


class TestTagSuggestions:
    """Tests for generate_tag_suggestions."""

    def test_keywords_and_weekday(self, fallback_provider):
        tags = fallback_provider.generate_tag_suggestions("Meeting notes about the new UI design")
        assert "meeting" in tags
        assert "design" in tags
        assert tags[-1] == "wednesday"

    def test_short_keywords_match_whole_words(self, fallback_provider):
        tags = fallback_provider.generate_tag_suggestions("quick build guide for the squid")
        assert "design" not in tags
        assert "design" in fallback_provider.generate_tag_suggestions("new ux flow")

    def test_korean_keywords(self, fallback_provider):
        tags = fallback_provider.generate_tag_suggestions("오늘 회의에서 프로젝트 계획을 논의했다")
        assert {"meeting", "project", "plan"} <= set(tags)

    def test_short_note_tag(self, fallback_provider):
        assert "quick-note" in fallback_provider.generate_tag_suggestions("hello")

    def test_long_note_tag(self, fallback_provider):
        tags = fallback_provider.generate_tag_suggestions("lorem " * 300)
        assert "long-form" in tags
        assert "quick-note" not in tags

    def test_medium_note_has_no_length_tag(self, fallback_provider):
        tags = fallback_provider.generate_tag_suggestions("z" * 500)
        assert tags == ["wednesday"]

    def test_cap_keeps_weekday(self, fallback_provider):
        content = "meeting todo idea study project personal work tech design review"
        tags = fallback_provider.generate_tag_suggestions(content)
        assert len(tags) == 6
        assert tags[-1] == "wednesday"
        assert len(set(tags)) == len(tags)

    def test_exactly_one_weekday_tag(self, fallback_provider, clock):
        for _ in range(7):
            tags = fallback_provider.generate_tag_suggestions("project work")
            assert sum(1 for t in tags if t in DAY_TAGS) == 1
            clock.advance(days=1)


class TestOptionRegistry:
    """Tests for custom options."""

    def test_add_and_remove_custom_option(self, fallback_provider):
        option_id = fallback_provider.add_custom_option(
            "Ask a teammate", "Ping someone for a summary", FallbackType.MANUAL_INPUT, 0
        )
        assert option_id.startswith("custom_")
        options = fallback_provider.get_all_options()
        assert options[0].id == option_id

        assert fallback_provider.remove_option(option_id) is True
        assert fallback_provider.remove_option(option_id) is False

    def test_custom_option_is_offered_by_type(self, fallback_provider):
        option_id = fallback_provider.add_custom_option(
            "Retry at night", "Schedule for off-peak hours", "retry", 10
        )
        options = fallback_provider.get_fallback_options(_error(ErrorCategory.SERVER))
        assert option_id in [o.id for o in options]

    def test_invalid_option_type(self, fallback_provider):
        with pytest.raises(ValidationError):
            fallback_provider.add_custom_option("Bad", "bad", "carrier_pigeon", 1)

    def test_empty_name(self, fallback_provider):
        with pytest.raises(ValidationError):
            fallback_provider.add_custom_option("  ", "bad", FallbackType.RETRY, 1)

    def test_availability_of_unknown_option(self, fallback_provider):
        with pytest.raises(NotFoundError):
            fallback_provider.set_option_availability("missing", False)


class TestFallbackUsageTracker:
    """Tests for fallback statistics."""

    def test_empty_stats(self, fallback_tracker):
        stats = fallback_tracker.get_stats()
        assert stats.total_fallbacks == 0
        assert stats.success_rate == 0

    def test_stats(self, fallback_tracker):
        fallback_tracker.record_usage("rate_limit_exceeded", FallbackType.RETRY, True)
        fallback_tracker.record_usage("rate_limit_exceeded", "manual_input", False)
        fallback_tracker.record_usage("api_key_invalid", "manual_input", True)
        fallback_tracker.record_usage("network_error", "retry", True)

        stats = fallback_tracker.get_stats()
        assert stats.total_fallbacks == 4
        assert stats.by_type == {"retry": 2, "manual_input": 2}
        assert stats.by_error_code == {
            "rate_limit_exceeded": 2,
            "api_key_invalid": 1,
            "network_error": 1,
        }
        assert stats.success_rate == pytest.approx(0.75)

    def test_old_records_expire(self, fallback_tracker, clock):
        fallback_tracker.record_usage("x", "retry", True)
        clock.advance(days=31)
        fallback_tracker.record_usage("y", "retry", False)
        stats = fallback_tracker.get_stats()
        assert stats.total_fallbacks == 1
        assert stats.by_error_code == {"y": 1}
