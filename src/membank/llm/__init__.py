"""LLM provider and content service abstraction layer."""

from membank.llm.base import (
    CompressionMethod,
    CompressionOptions,
    CompressionResult,
    ContentService,
    LLMProvider,
    LLMResponse,
    Message,
    SummarizationOptions,
    SummaryStyle,
)
from membank.llm.factory import create_content_service, create_provider
from membank.llm.mock import MockContentService

__all__ = [
    "CompressionMethod",
    "CompressionOptions",
    "CompressionResult",
    "ContentService",
    "LLMProvider",
    "LLMResponse",
    "Message",
    "MockContentService",
    "SummarizationOptions",
    "SummaryStyle",
    "create_content_service",
    "create_provider",
]
