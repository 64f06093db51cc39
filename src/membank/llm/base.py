"""Base interfaces: raw LLM providers and the content service built on them."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

from pydantic import BaseModel, Field

from membank.exceptions import LLMError
from membank.hierarchy.models import SummaryLevel, SummaryType


class Message(BaseModel):
    """A message in the conversation."""

    role: str  # "system", "user", "assistant"
    content: str = ""


class LLMResponse(BaseModel):
    """Response from the LLM."""

    content: str = ""
    finish_reason: str = ""
    usage: dict[str, int] = Field(default_factory=dict)


class LLMProvider(ABC):
    """Abstract base for LLM providers."""

    def __init__(self, model: str, api_key: str | None = None, base_url: str | None = None) -> None:
        self.model = model
        self.api_key = api_key
        self.base_url = base_url

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        """Send a completion request to the LLM."""
        ...

    def supports_embedding(self) -> bool:
        return False

    async def embed(self, text: str) -> list[float]:
        raise LLMError(f"{type(self).__name__} does not provide embeddings")


class SummaryStyle(str, Enum):
    BULLET_POINTS = "bullet-points"
    PARAGRAPH = "paragraph"
    STRUCTURED = "structured"


class CompressionMethod(str, Enum):
    AGGRESSIVE = "aggressive"
    BALANCED = "balanced"
    CONSERVATIVE = "conservative"


class SummarizationOptions(BaseModel):
    level: SummaryLevel
    type: SummaryType = SummaryType.ABSTRACTIVE
    max_tokens: int | None = None
    style: SummaryStyle = SummaryStyle.STRUCTURED
    preserve_structure: bool = False
    focus_areas: list[str] = Field(default_factory=list)


class CompressionOptions(BaseModel):
    """Either `target_tokens` or `compression_ratio` drives the output size."""

    target_tokens: int | None = None
    compression_ratio: float | None = None
    preserve_keywords: list[str] = Field(default_factory=list)
    method: CompressionMethod = CompressionMethod.BALANCED
    maintain_coherence: bool = True


class CompressionResult(BaseModel):
    compressed_text: str
    tokens_before: int
    tokens_after: int
    method: CompressionMethod = CompressionMethod.BALANCED

    @property
    def compression_ratio(self) -> float:
        return self.tokens_after / max(self.tokens_before, 1)


class ContentService(ABC):
    """Summarization, compression and token counting capability.

    Embedding support is a queryable capability: check
    :meth:`supports_embedding` before calling :meth:`get_embedding`.
    """

    @abstractmethod
    async def summarize(self, content: str, options: SummarizationOptions) -> str:
        ...

    @abstractmethod
    async def compress(self, content: str, options: CompressionOptions) -> CompressionResult:
        ...

    @abstractmethod
    async def count_tokens(self, content: str) -> int:
        ...

    def supports_embedding(self) -> bool:
        return False

    async def get_embedding(self, text: str) -> list[float]:
        raise LLMError(f"{type(self).__name__} does not provide embeddings")

    async def is_available(self) -> bool:
        return True


def resolve_target_tokens(options: CompressionOptions, tokens_before: int) -> int:
    """Token target for a compression call: explicit target, else ratio, else half."""
    if options.target_tokens is not None:
        return max(1, options.target_tokens)
    if options.compression_ratio is not None:
        return max(1, int(tokens_before * options.compression_ratio))
    return max(1, tokens_before // 2)
