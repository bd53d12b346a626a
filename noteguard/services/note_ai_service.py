"""
NoteGuard — Note AI Service (Workflow Orchestrator)
====================================================

What:  Summary and tag generation for a note, with budgeting, retries and
       graceful degradation in one call.
How:   Composes LLMService, RetryOrchestrator, FallbackProvider and
       FallbackUsageTracker.
Who:   Called by the host application's note handlers.
When:  Whenever a user asks for a summary or tags.

Orchestration Flow:
    ┌──────────┐    ┌─────────────┐    ┌──────────────┐    ┌──────────┐
    │ Estimate │───▶│  Reserve    │───▶│  Provider    │───▶│  Commit  │
    │ tokens   │    │  (Monitor)  │    │  (w/ retry)  │    │  usage   │
    └──────────┘    └─────────────┘    └──────────────┘    └──────────┘

    On a terminal AIServiceError:
    - fallback options for the error's category are attached
    - a template summary / heuristic tags are produced instead
    - the outcome names the fallback type it served; the host reports
      whether the user kept it through record_fallback_feedback, which is
      the only writer of the usage tracker
"""

import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from noteguard.exceptions import AIServiceError
from noteguard.schemas.errors import ClassifiedError
from noteguard.schemas.fallback import FallbackOption, FallbackType
from noteguard.services.classifier import classify
from noteguard.services.fallback import FallbackProvider, FallbackUsageTracker
from noteguard.services.llm_base import LLMService
from noteguard.services.retry import RetryOrchestrator

logger = logging.getLogger(__name__)

COMPONENT = "note_ai_service"


class SummaryOutcome(BaseModel):
    summary: str
    used_fallback: bool = False
    fallback_type: Optional[FallbackType] = None
    error: Optional[ClassifiedError] = None
    fallback_options: List[FallbackOption] = Field(default_factory=list)


class TagOutcome(BaseModel):
    tags: List[str]
    used_fallback: bool = False
    fallback_type: Optional[FallbackType] = None
    error: Optional[ClassifiedError] = None
    fallback_options: List[FallbackOption] = Field(default_factory=list)


class NoteAIService:
    """
    AI features for notes, degrading to deterministic output on failure.

    Args:
        llm:               Provider adapter.
        orchestrator:      Retry loop with admission and error logging.
        fallback_provider: Template/heuristic generators and option registry.
        fallback_tracker:  Written only by record_fallback_feedback.
        max_retries:       Attempts per request.
        base_delay_ms:     Backoff base.
    """

    def __init__(
        self,
        llm: LLMService,
        orchestrator: RetryOrchestrator,
        fallback_provider: FallbackProvider,
        fallback_tracker: FallbackUsageTracker,
        max_retries: int = 3,
        base_delay_ms: int = 1000,
    ):
        self.llm = llm
        self.orchestrator = orchestrator
        self.fallback_provider = fallback_provider
        self.fallback_tracker = fallback_tracker
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms

    async def summarize(self, content: str, user_id: Optional[str] = None) -> SummaryOutcome:
        """
        Summarize a note as bullet points.

        Returns:
            The AI summary, or the template summary with the error and the
            fallback options when the AI path failed for good.
        """
        try:
            result = await self.orchestrator.call_with_retry(
                lambda: self.llm.generate_summary(content),
                max_retries=self.max_retries,
                base_delay_ms=self.base_delay_ms,
                user_id=user_id,
                operation_tag="summary",
                estimated_tokens=self.llm.estimate_tokens(content),
                context={"component": COMPONENT},
            )
        except AIServiceError as e:
            logger.info("Summary for user=%s falls back to template (%s)", user_id or "-", e.error.code)
            summary = self.fallback_provider.generate_summary_template(content)
            return SummaryOutcome(
                summary=summary,
                used_fallback=True,
                fallback_type=FallbackType.TEMPLATE,
                error=e.error,
                fallback_options=self.fallback_provider.get_fallback_options(e.error),
            )

        logger.info("Summary generated for user=%s (%d chars)", user_id or "-", len(result.text))
        return SummaryOutcome(summary=result.text)

    async def suggest_tags(self, content: str, user_id: Optional[str] = None) -> TagOutcome:
        """
        Suggest up to six tags for a note.

        Returns:
            The AI tags, or keyword-based suggestions when the AI path failed
            for good (or answered with no usable tags).
        """
        try:
            result = await self.orchestrator.call_with_retry(
                lambda: self.llm.generate_tags(content),
                max_retries=self.max_retries,
                base_delay_ms=self.base_delay_ms,
                user_id=user_id,
                operation_tag="tags",
                estimated_tokens=self.llm.estimate_tokens(content),
                context={"component": COMPONENT},
            )
        except AIServiceError as e:
            logger.info("Tags for user=%s fall back to suggestions (%s)", user_id or "-", e.error.code)
            tags = self.fallback_provider.generate_tag_suggestions(content)
            return TagOutcome(
                tags=tags,
                used_fallback=True,
                fallback_type=FallbackType.SUGGESTION,
                error=e.error,
                fallback_options=self.fallback_provider.get_fallback_options(e.error),
            )

        if not result.tags:
            logger.warning("Provider returned no usable tags for user=%s", user_id or "-")
            error = classify(
                {"code": "invalid_response_format", "message": "No usable tags in AI response"},
                {"user_id": user_id, "action": "tags"},
                clock=self.orchestrator.clock,
            )
            return TagOutcome(
                tags=self.fallback_provider.generate_tag_suggestions(content),
                used_fallback=True,
                fallback_type=FallbackType.SUGGESTION,
                error=error,
                fallback_options=self.fallback_provider.get_fallback_options(error),
            )
        return TagOutcome(tags=result.tags)

    def record_fallback_feedback(
        self,
        error_code: str,
        fallback_type: FallbackType,
        success: bool,
    ) -> None:
        """
        Record whether the user kept a fallback they were served.

        Call once per served outcome, with `outcome.error.code` and
        `outcome.fallback_type`; serving alone records nothing.
        """
        self.fallback_tracker.record_usage(error_code, fallback_type, success)
