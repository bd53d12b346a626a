"""
NoteGuard — Abstract LLM Service Interface
===========================================

What:  The contract a text-generation provider implements for note features.
How:   Concrete implementations inherit from LLMService and implement
       generate_summary(), generate_tags() and health_check().
Who:   Called by NoteAIService through the RetryOrchestrator.

Result contract:
    Every generation returns a GenerationResult. When the provider reports
    token counts they go in `token_usage`; the orchestrator records them in
    the usage ledger after a successful call.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel, Field


class TokenCount(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class GenerationResult(BaseModel):
    text: str
    tags: List[str] = Field(default_factory=list)
    token_usage: Optional[TokenCount] = None
    model: Optional[str] = None


class LLMService(ABC):
    """
    Abstract interface for AI text generation.

    Contract:
        - Implementations make exactly one provider call per method call;
          retries belong to the RetryOrchestrator
        - Failures surface as LLMServiceError / TokenLimitExceededError or
          the provider SDK's own exceptions; the classifier handles all three
        - estimate_tokens() is a cheap local heuristic, never a provider call
    """

    @abstractmethod
    def estimate_tokens(self, text: str) -> int:
        ...

    @abstractmethod
    async def generate_summary(self, content: str) -> GenerationResult:
        """
        Summarize note content as a short bullet list.

        Raises:
            TokenLimitExceededError: content too long to send.
            LLMServiceError: empty or blocked response.
        """
        ...

    @abstractmethod
    async def generate_tags(self, content: str) -> GenerationResult:
        """Suggest up to six tags; returned in `GenerationResult.tags`."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """True if the provider is reachable with the configured credentials."""
        ...
