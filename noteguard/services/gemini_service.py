"""
NoteGuard — Google Gemini Service Implementation
=================================================

What:  Concrete LLMService using Google Gemini for note summaries and tags.
How:   Estimates the prompt size locally, rejects oversized prompts before
       any network call, sends the prompt, and returns the text together with
       the token counts Gemini reports in `usage_metadata`.
Who:   Built by the composition root; called by NoteAIService through the
       RetryOrchestrator (which owns retries; this class makes one call).

Token estimation:
    Hangul characters average about 4 characters per token and other text
    about 3.5, so the estimate is ceil(hangul / 4 + other / 3.5). It is only
    used for admission and the prompt-size guard; billing uses the counts
    returned by the API.
"""

import logging
import math
import re
import time
import uuid
from typing import List, Optional

import google.generativeai as genai

from noteguard.config import settings
from noteguard.exceptions import LLMServiceError, TokenLimitExceededError
from noteguard.services.llm_base import GenerationResult, LLMService, TokenCount

logger = logging.getLogger(__name__)

_HANGUL = re.compile(r"[ㄱ-ㆎ가-힣]")

MAX_TAGS = 6


def estimate_tokens(text: str) -> int:
    """Rough token count for mixed Korean/English text (rounded up)."""
    if not text:
        return 0
    hangul = len(_HANGUL.findall(text))
    other = len(text) - hangul
    return math.ceil(hangul / 4 + other / 3.5)


def parse_tags(response_text: str, limit: int = MAX_TAGS) -> List[str]:
    """Split a comma-separated model answer into at most `limit` clean tags."""
    tags = [tag.strip().lstrip("#").strip() for tag in response_text.split(",")]
    return [tag for tag in tags if tag][:limit]


class GeminiService(LLMService):
    """
    Google Gemini implementation for note summaries and tag suggestions.

    Args:
        api_key:           Defaults to settings.gemini_api_key.
        model_name:        Defaults to settings.gemini_model.
        max_prompt_tokens: Prompts estimated above this raise
                           TokenLimitExceededError without a call.
        max_output_tokens: Generation cap passed to the model.
    """

    SUMMARY_PROMPT = """Summarize the following note as 3 to 6 bullet points.
Each bullet should be short and capture one key point. Answer in the note's language.

{content}

Summary:"""

    TAGS_PROMPT = """Read the following note and suggest up to 6 highly relevant tags.
Return only the tags, separated by commas. Answer in the note's language.

{content}

Tags:"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        max_prompt_tokens: Optional[int] = None,
        max_output_tokens: Optional[int] = None,
    ):
        api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model_name = model_name or settings.gemini_model
        self.max_prompt_tokens = max_prompt_tokens or settings.gemini_max_prompt_tokens
        self.max_output_tokens = max_output_tokens or settings.gemini_max_output_tokens

        # The SDK keeps auth in module-level state
        if api_key and api_key != "your_gemini_api_key_here":
            genai.configure(api_key=api_key)

        self.model = genai.GenerativeModel(
            self.model_name,
            generation_config={"max_output_tokens": self.max_output_tokens},
        )

        logger.info(
            "GeminiService initialized with model=%s, max_prompt_tokens=%d, max_output_tokens=%d",
            self.model_name,
            self.max_prompt_tokens,
            self.max_output_tokens,
        )

    def estimate_tokens(self, text: str) -> int:
        return estimate_tokens(text)

    def validate_text_length(self, text: str) -> int:
        """
        Returns:
            The estimated token count.

        Raises:
            TokenLimitExceededError: estimate above max_prompt_tokens.
        """
        token_count = estimate_tokens(text)
        if token_count > self.max_prompt_tokens:
            raise TokenLimitExceededError(token_count, self.max_prompt_tokens)
        return token_count

    async def generate_content(self, prompt: str) -> GenerationResult:
        """
        Send one prompt to Gemini.

        Raises:
            TokenLimitExceededError: prompt too long (no call made).
            LLMServiceError: blocked (content_filtered) or empty response.
            google.api_core.exceptions.GoogleAPICallError and transport
            errors propagate unchanged for the classifier.
        """
        call_id = str(uuid.uuid4())[:8]
        estimated = self.validate_text_length(prompt)
        start_time = time.time()

        try:
            response = await self.model.generate_content_async(prompt)
        except Exception as e:
            logger.warning(
                "[%s] Gemini call failed after %.0fms: %s",
                call_id,
                (time.time() - start_time) * 1000,
                str(e),
            )
            raise

        try:
            text = response.text
        except ValueError as e:
            # .text raises when the candidate was blocked and has no parts
            raise LLMServiceError(
                "The response was blocked by the provider's safety filters",
                code="content_filtered",
                context={"call_id": call_id},
            ) from e

        if not text or not text.strip():
            raise LLMServiceError(
                "Empty response from AI provider",
                code="empty_response",
                context={"call_id": call_id},
            )

        usage = self._token_usage(response, estimated, text)
        logger.info(
            "[%s] Gemini call completed in %.0fms (%d tokens)",
            call_id,
            (time.time() - start_time) * 1000,
            usage.total_tokens,
        )
        return GenerationResult(text=text.strip(), token_usage=usage, model=self.model_name)

    def _token_usage(self, response, estimated_input: int, text: str) -> TokenCount:
        metadata = getattr(response, "usage_metadata", None)
        if metadata is None:
            output = estimate_tokens(text)
            return TokenCount(
                input_tokens=estimated_input,
                output_tokens=output,
                total_tokens=estimated_input + output,
            )
        input_tokens = int(getattr(metadata, "prompt_token_count", 0) or 0)
        output_tokens = int(getattr(metadata, "candidates_token_count", 0) or 0)
        total = int(getattr(metadata, "total_token_count", 0) or 0)
        return TokenCount(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total or input_tokens + output_tokens,
        )

    async def generate_summary(self, content: str) -> GenerationResult:
        return await self.generate_content(self.SUMMARY_PROMPT.format(content=content))

    async def generate_tags(self, content: str) -> GenerationResult:
        result = await self.generate_content(self.TAGS_PROMPT.format(content=content))
        return result.model_copy(update={"tags": parse_tags(result.text)})

    async def health_check(self) -> bool:
        """
        Check that the API key works and the model is listed.

        How:     Lists available models (no token cost).
        Returns: True if reachable and authenticated, False otherwise.
        """
        try:
            model_names = [m.name for m in genai.list_models()]
        except Exception as e:
            logger.warning("Gemini health check failed: %s", str(e))
            return False
        target = f"models/{self.model_name}"
        if target not in model_names:
            logger.warning("Configured model %s not found in available models", target)
        return True
