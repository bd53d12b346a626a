"""
NoteGuard — Fallback Provider
==============================

What:  Deterministic, non-AI alternatives for when the AI path fails:
       a registry of user-facing options, a template summary, heuristic tag
       suggestions, and a tracker of which fallbacks were used.
How:   get_fallback_options() picks option types by error category;
       generate_summary_template() and generate_tag_suggestions() only look
       at the note text (and today's weekday).
Who:   NoteAIService after a terminal AIServiceError; hosts rendering a
       "what now?" dialog.

Category → offered option types:
    token          → manual_input, template, suggestion
    api / server   → manual_input, retry
    network        → retry first, then manual_input
    ai             → manual_input, template
    anything else  → every available option
"""

import logging
import re
import threading
import uuid
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional, Pattern, Sequence, Tuple

from noteguard.exceptions import NotFoundError, ValidationError
from noteguard.schemas.errors import ClassifiedError, ErrorCategory
from noteguard.schemas.fallback import (
    FallbackOption,
    FallbackType,
    FallbackUsageRecord,
    FallbackUsageStats,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

MAX_TAGS = 6
TEMPLATE_LINE_LIMIT = 80
EMPTY_SUMMARY = "• No content"

LONG_NOTE_CHARS = 1000
SHORT_NOTE_CHARS = 100

DAY_TAGS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

# (tag, keywords); case-insensitive substring match, except that ASCII
# keywords of three letters or fewer must be whole words ("ui" is not in "quick")
TAG_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("meeting", ("회의", "미팅", "meeting")),
    ("todo", ("할일", "todo", "task", "작업")),
    ("idea", ("아이디어", "idea", "생각")),
    ("study", ("학습", "study", "공부", "교육")),
    ("project", ("프로젝트", "project", "작업")),
    ("personal", ("개인", "personal", "일상")),
    ("work", ("업무", "work", "직장")),
    ("tech", ("기술", "tech", "개발", "코딩")),
    ("design", ("디자인", "design", "ui", "ux")),
    ("marketing", ("마케팅", "marketing", "광고")),
    ("customer", ("고객", "customer", "클라이언트")),
    ("product", ("제품", "product", "상품")),
    ("analysis", ("분석", "analysis", "데이터")),
    ("plan", ("계획", "plan", "전략")),
    ("review", ("리뷰", "review", "검토")),
)


def _keyword_pattern(keywords: Tuple[str, ...]) -> Pattern[str]:
    parts = [
        rf"\b{re.escape(k)}\b" if k.isascii() and len(k) <= 3 else re.escape(k)
        for k in keywords
    ]
    return re.compile("|".join(parts), re.IGNORECASE)


_TAG_PATTERNS: Tuple[Tuple[str, Pattern[str]], ...] = tuple(
    (tag, _keyword_pattern(keywords)) for tag, keywords in TAG_KEYWORDS
)

_CATEGORY_TYPES: Dict[ErrorCategory, Tuple[FallbackType, ...]] = {
    ErrorCategory.TOKEN: (FallbackType.MANUAL_INPUT, FallbackType.TEMPLATE, FallbackType.SUGGESTION),
    ErrorCategory.API: (FallbackType.MANUAL_INPUT, FallbackType.RETRY),
    ErrorCategory.SERVER: (FallbackType.MANUAL_INPUT, FallbackType.RETRY),
    ErrorCategory.NETWORK: (FallbackType.MANUAL_INPUT, FallbackType.RETRY),
    ErrorCategory.AI: (FallbackType.MANUAL_INPUT, FallbackType.TEMPLATE),
}


def _default_options() -> List[FallbackOption]:
    return [
        FallbackOption(
            id="manual_summary",
            name="Write summary manually",
            description="Write the summary yourself.",
            type=FallbackType.MANUAL_INPUT,
            priority=1,
        ),
        FallbackOption(
            id="manual_tags",
            name="Add tags manually",
            description="Pick the tags yourself.",
            type=FallbackType.MANUAL_INPUT,
            priority=2,
        ),
        FallbackOption(
            id="summary_template",
            name="Use summary template",
            description="Build a basic summary from the first and last lines of the note.",
            type=FallbackType.TEMPLATE,
            priority=3,
        ),
        FallbackOption(
            id="tag_suggestions",
            name="Suggested tags",
            description="Tags suggested from keywords in the note.",
            type=FallbackType.SUGGESTION,
            priority=4,
        ),
        FallbackOption(
            id="retry_later",
            name="Try again later",
            description="Retry the AI feature in a little while.",
            type=FallbackType.RETRY,
            priority=5,
        ),
    ]


def _truncate(line: str, limit: int = TEMPLATE_LINE_LIMIT) -> str:
    return line[:limit] + "..." if len(line) > limit else line


# ══════════════════════════════════════════════════════════════════════════
# Fallback Provider
# ══════════════════════════════════════════════════════════════════════════

class FallbackProvider:
    """
    Registry of fallback options plus the non-AI generators.

    Args:
        options: Initial registry (defaults to the five built-in options).
        clock:   Used for the weekday tag; injected by tests.
    """

    def __init__(
        self,
        options: Optional[Sequence[FallbackOption]] = None,
        clock: Clock = datetime.now,
    ):
        self.clock = clock
        self._options: Dict[str, FallbackOption] = {
            option.id: option for option in (options or _default_options())
        }
        self._lock = threading.RLock()

    # ── Option selection ──────────────────────────────────────────────────

    def get_fallback_options(self, error: ClassifiedError) -> List[FallbackOption]:
        """Available options that suit `error`, in the order to offer them."""
        with self._lock:
            available = sorted(
                (o.model_copy() for o in self._options.values() if o.available),
                key=lambda o: o.priority,
            )

        types = _CATEGORY_TYPES.get(error.category)
        if types is None:
            return available

        selected = [o for o in available if o.type in types]
        if error.category == ErrorCategory.NETWORK:
            # retry goes first for network failures
            selected.sort(key=lambda o: (o.type != FallbackType.RETRY, o.priority))
        return selected

    # ── Generators ────────────────────────────────────────────────────────

    def generate_summary_template(self, content: str) -> str:
        """
        Bullet summary built from the note's lines.

            no lines   → "• No content"
            one line   → that line
            many lines → first line, "(N more items)" when there are more
                         than two, and the last line if it differs
        Lines are stripped of surrounding whitespace before they are
        truncated and compared, so indented and unindented copies of a line
        count as equal. Each line is cut to 80 characters (plus "...").
        """
        lines = [line.strip() for line in (content or "").splitlines() if line.strip()]
        if not lines:
            return EMPTY_SUMMARY
        if len(lines) == 1:
            return f"• {_truncate(lines[0])}"

        bullets = [f"• {_truncate(lines[0])}"]
        if len(lines) > 2:
            bullets.append(f"• ({len(lines) - 2} more items)")
        if lines[-1] != lines[0]:
            bullets.append(f"• {_truncate(lines[-1])}")
        return "\n".join(bullets)

    def generate_tag_suggestions(self, content: str) -> List[str]:
        """
        Keyword tags, then one length tag, then today's weekday.

        At most six tags; the weekday tag always survives the cap.
        """
        text = content or ""
        tags = [tag for tag, pattern in _TAG_PATTERNS if pattern.search(text)]

        if len(text) > LONG_NOTE_CHARS:
            tags.append("long-form")
        elif len(text) < SHORT_NOTE_CHARS:
            tags.append("quick-note")

        day_tag = DAY_TAGS[self.clock().weekday()]
        unique = list(dict.fromkeys(t for t in tags if t != day_tag))
        return unique[: MAX_TAGS - 1] + [day_tag]

    # ── Registry management ───────────────────────────────────────────────

    def add_custom_option(
        self,
        name: str,
        description: str,
        option_type: FallbackType,
        priority: int,
        available: bool = True,
    ) -> str:
        """
        Register a new option.

        Returns:
            The generated option id.

        Raises:
            ValidationError: empty name or unsupported type.
        """
        if not name or not name.strip():
            raise ValidationError("Fallback option name must not be empty", field="name")
        try:
            option_type = FallbackType(option_type)
        except ValueError as e:
            raise ValidationError(f"Unknown fallback type '{option_type}'", field="option_type") from e

        option = FallbackOption(
            id=f"custom_{uuid.uuid4().hex[:12]}",
            name=name.strip(),
            description=description,
            type=option_type,
            priority=priority,
            available=available,
        )
        with self._lock:
            self._options[option.id] = option
        logger.info("Fallback option '%s' added (%s)", option.name, option.id)
        return option.id

    def remove_option(self, option_id: str) -> bool:
        with self._lock:
            return self._options.pop(option_id, None) is not None

    def set_option_availability(self, option_id: str, available: bool) -> None:
        """
        Raises:
            NotFoundError: unknown option id.
        """
        with self._lock:
            option = self._options.get(option_id)
            if option is None:
                raise NotFoundError("fallback option", option_id)
            option.available = available

    def get_all_options(self) -> List[FallbackOption]:
        with self._lock:
            return sorted(
                (o.model_copy() for o in self._options.values()),
                key=lambda o: o.priority,
            )


# ══════════════════════════════════════════════════════════════════════════
# Fallback Usage Tracker
# ══════════════════════════════════════════════════════════════════════════

class FallbackUsageTracker:
    """Counts which fallbacks were used for which errors, over 30 days."""

    def __init__(
        self,
        retention: timedelta = timedelta(days=30),
        clock: Clock = datetime.now,
    ):
        self.retention = retention
        self.clock = clock
        self._records: Deque[FallbackUsageRecord] = deque()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._records)

    def record_usage(self, error_code: str, fallback_type: str, success: bool) -> None:
        fallback_type = getattr(fallback_type, "value", fallback_type)
        with self._lock:
            now = self.clock()
            self._records.append(
                FallbackUsageRecord(
                    error_code=error_code,
                    fallback_type=fallback_type,
                    success=success,
                    timestamp=now,
                )
            )
            self._prune_locked(now)
        logger.info(
            "Fallback %s used for %s (success=%s)", fallback_type, error_code, success
        )

    def prune(self) -> int:
        with self._lock:
            return self._prune_locked(self.clock())

    def _prune_locked(self, now: datetime) -> int:
        cutoff = now - self.retention
        removed = 0
        while self._records and self._records[0].timestamp <= cutoff:
            self._records.popleft()
            removed += 1
        return removed

    def get_stats(self) -> FallbackUsageStats:
        with self._lock:
            records = list(self._records)

        stats = FallbackUsageStats(total_fallbacks=len(records))
        for record in records:
            stats.by_type[record.fallback_type] = stats.by_type.get(record.fallback_type, 0) + 1
            stats.by_error_code[record.error_code] = stats.by_error_code.get(record.error_code, 0) + 1
        if records:
            stats.success_rate = sum(1 for r in records if r.success) / len(records)
        return stats
