"""Tests for content services and the provider factory."""

from __future__ import annotations

import pytest

from membank.config import LLMConfig
from membank.exceptions import LLMError
from membank.hierarchy.models import SummaryLevel
from membank.llm import (
    CompressionMethod,
    CompressionOptions,
    LLMProvider,
    LLMResponse,
    MockContentService,
    SummarizationOptions,
    create_content_service,
    create_provider,
)
from membank.llm.service import ProviderContentService
from membank.tokens import TokenEstimator


class FakeProvider(LLMProvider):
    """Returns a canned reply and records every request."""

    def __init__(self, reply: str = "", api_key: str | None = "key") -> None:
        super().__init__("fake-model", api_key=api_key)
        self.reply = reply
        self.requests: list[list] = []

    async def complete(self, messages, temperature=0.0, max_tokens=4096):
        self.requests.append(messages)
        return LLMResponse(content=self.reply, finish_reason="stop")


class TestMockSummarize:
    @pytest.mark.asyncio
    async def test_respects_max_tokens(self, make_text):
        service = MockContentService()
        text = await service.summarize(
            make_text(200), SummarizationOptions(level=SummaryLevel.NODE, max_tokens=50)
        )
        assert await service.count_tokens(text) <= 50

    @pytest.mark.asyncio
    async def test_level_header(self, make_text):
        service = MockContentService()
        text = await service.summarize(
            make_text(40), SummarizationOptions(level=SummaryLevel.PROJECT, max_tokens=20)
        )
        assert text.startswith("# Project Overview")

    @pytest.mark.asyncio
    async def test_focus_areas_first(self):
        service = MockContentService()
        text = await service.summarize(
            "Alpha one. Beta two. Gamma three.",
            SummarizationOptions(level=SummaryLevel.NODE, max_tokens=2, focus_areas=["gamma"]),
        )
        assert text == "Gamma three."


class TestMockCompress:
    @pytest.mark.asyncio
    async def test_hits_target(self, make_text):
        service = MockContentService()
        result = await service.compress(make_text(200), CompressionOptions(target_tokens=50))
        assert result.tokens_before == 200
        assert result.tokens_after <= 50
        assert await service.count_tokens(result.compressed_text) == result.tokens_after

    @pytest.mark.asyncio
    async def test_ratio_target(self, make_text):
        service = MockContentService()
        result = await service.compress(make_text(200), CompressionOptions(compression_ratio=0.25))
        assert result.tokens_after <= 50
        assert result.compression_ratio <= 0.25

    @pytest.mark.asyncio
    async def test_keeps_keyword_sentences(self, make_text):
        service = MockContentService()
        text = make_text(100, "sqlite") + " The queue moved off redis last week ok."
        result = await service.compress(
            text, CompressionOptions(target_tokens=10, preserve_keywords=["redis"])
        )
        assert "redis" in result.compressed_text

    @pytest.mark.asyncio
    async def test_aggressive_goes_further(self, make_text):
        service = MockContentService()
        balanced = await service.compress(make_text(200), CompressionOptions(target_tokens=50))
        aggressive = await service.compress(
            make_text(200),
            CompressionOptions(target_tokens=50, method=CompressionMethod.AGGRESSIVE),
        )
        assert aggressive.tokens_after < balanced.tokens_after

    @pytest.mark.asyncio
    async def test_small_input_unchanged(self):
        service = MockContentService()
        result = await service.compress("Short note.", CompressionOptions(target_tokens=50))
        assert result.compressed_text == "Short note."
        assert result.tokens_after == result.tokens_before == 2


class TestMockEmbedding:
    @pytest.mark.asyncio
    async def test_deterministic_unit_vectors(self):
        service = MockContentService()
        a = await service.get_embedding("sqlite storage decision")
        b = await service.get_embedding("sqlite storage decision")
        assert a == b
        assert sum(x * x for x in a) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_disabled(self):
        service = MockContentService(embeddings=False)
        assert not service.supports_embedding()
        with pytest.raises(LLMError):
            await service.get_embedding("x")


class TestProviderContentService:
    @pytest.mark.asyncio
    async def test_summarize_uses_level_prompt(self):
        provider = FakeProvider(reply="  A short summary.  ")
        service = ProviderContentService(provider)
        text = await service.summarize(
            "Some notes.", SummarizationOptions(level=SummaryLevel.NODE, max_tokens=100)
        )
        assert text == "A short summary."
        system = provider.requests[0][0]
        assert system.role == "system"
        assert "a single memory bank file" in system.content
        assert "Stay under 100 tokens" in system.content

    @pytest.mark.asyncio
    async def test_summarize_cuts_long_output(self):
        service = ProviderContentService(FakeProvider(reply="word " * 400))
        text = await service.summarize(
            "Some notes.", SummarizationOptions(level=SummaryLevel.SECTION, max_tokens=50)
        )
        assert TokenEstimator.estimate(text) <= 50

    @pytest.mark.asyncio
    async def test_empty_summary_is_an_error(self):
        service = ProviderContentService(FakeProvider(reply="   "))
        with pytest.raises(LLMError):
            await service.summarize("x", SummarizationOptions(level=SummaryLevel.NODE))

    @pytest.mark.asyncio
    async def test_compress(self):
        provider = FakeProvider(reply="The gist.")
        service = ProviderContentService(provider)
        result = await service.compress(
            "a" * 800, CompressionOptions(target_tokens=50, preserve_keywords=["sqlite"])
        )
        assert result.tokens_before == 200
        assert result.compressed_text == "The gist."
        assert "sqlite" in provider.requests[0][0].content

    @pytest.mark.asyncio
    async def test_compress_skips_call_when_small(self):
        provider = FakeProvider(reply="unused")
        service = ProviderContentService(provider)
        result = await service.compress("tiny", CompressionOptions(target_tokens=50))
        assert result.compressed_text == "tiny"
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_availability_and_embedding(self):
        assert await ProviderContentService(FakeProvider()).is_available()
        offline = ProviderContentService(FakeProvider(api_key=None))
        assert not await offline.is_available()
        assert not offline.supports_embedding()
        with pytest.raises(LLMError):
            await offline.get_embedding("x")


class TestFactory:
    def test_mock(self):
        assert isinstance(create_content_service(LLMConfig(provider="mock")), MockContentService)

    def test_openai_service(self):
        service = create_content_service(LLMConfig(provider="openai", model="gpt-4o"))
        assert isinstance(service, ProviderContentService)
        assert service.provider.model == "gpt-4o"

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            create_provider(LLMConfig(provider="nope"))
