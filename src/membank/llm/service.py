"""Content service backed by a chat-completion LLM provider."""

from __future__ import annotations

from membank.exceptions import LLMError
from membank.llm.base import (
    CompressionOptions,
    CompressionResult,
    ContentService,
    LLMProvider,
    Message,
    SummarizationOptions,
    resolve_target_tokens,
)
from membank.llm.prompts import get_compress_prompt, get_summarize_prompt
from membank.tokens import TokenEstimator


class ProviderContentService(ContentService):
    """Summarizes and compresses through an LLMProvider.

    Token counts use the character heuristic, so no request is spent on
    counting. Outputs longer than requested are cut to size, which keeps
    the token caps promised to callers.
    """

    def __init__(self, provider: LLMProvider, temperature: float = 0.0) -> None:
        self.provider = provider
        self.temperature = temperature

    async def summarize(self, content: str, options: SummarizationOptions) -> str:
        messages = [
            Message(role="system", content=get_summarize_prompt(options)),
            Message(role="user", content=content),
        ]
        response = await self.provider.complete(
            messages,
            temperature=self.temperature,
            max_tokens=options.max_tokens or 1024,
        )
        text = response.content.strip()
        if not text:
            raise LLMError(f"Provider returned an empty {options.level.value} summary")
        if options.max_tokens and await self.count_tokens(text) > options.max_tokens:
            text = TokenEstimator.truncate(text, options.max_tokens)
        return text

    async def compress(self, content: str, options: CompressionOptions) -> CompressionResult:
        before = await self.count_tokens(content)
        target = resolve_target_tokens(options, before)
        if before <= target:
            return CompressionResult(
                compressed_text=content,
                tokens_before=before,
                tokens_after=before,
                method=options.method,
            )

        messages = [
            Message(role="system", content=get_compress_prompt(options, target)),
            Message(role="user", content=content),
        ]
        response = await self.provider.complete(
            messages, temperature=self.temperature, max_tokens=target
        )
        text = response.content.strip()
        if not text:
            raise LLMError("Provider returned empty compressed text")

        after = await self.count_tokens(text)
        if after > target:
            text = TokenEstimator.truncate(text, target)
            after = await self.count_tokens(text)

        return CompressionResult(
            compressed_text=text,
            tokens_before=before,
            tokens_after=after,
            method=options.method,
        )

    async def count_tokens(self, content: str) -> int:
        if not content:
            return 0
        return TokenEstimator.estimate(content)

    def supports_embedding(self) -> bool:
        return self.provider.supports_embedding()

    async def get_embedding(self, text: str) -> list[float]:
        return await self.provider.embed(text)

    async def is_available(self) -> bool:
        return bool(self.provider.api_key or self.provider.base_url)
