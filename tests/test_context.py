"""Tests for budgeted context compilation."""

from __future__ import annotations

import pytest

from membank.config import HierarchyConfig
from membank.context.engine import ContextCompiler, query_terms, term_overlap
from membank.context.models import CompileContextOptions, ContextBudget
from membank.exceptions import BudgetExceededError, NotFoundError, ValidationError
from membank.hierarchy.compiler import HierarchyCompiler, root_id
from membank.hierarchy.models import SummaryLevel
from membank.llm.mock import MockContentService
from membank.search.ranker import Ranker
from membank.storage.memory import (
    InMemoryFileRepository,
    InMemorySummaryRepository,
    InMemoryVectorRepository,
)

FILES_ONLY = CompileContextOptions(project_name="alpha", include_summaries=False)


def _compiler_for(files, service=None) -> ContextCompiler:
    service = service or MockContentService()
    repo = InMemoryFileRepository(files)
    ranker = Ranker(repo, InMemoryVectorRepository(), service)
    hierarchy = HierarchyCompiler(
        repo, InMemorySummaryRepository(), service,
        config=HierarchyConfig(max_tokens_per_summary=100),
    )
    return ContextCompiler(ranker, hierarchy, service)


class TestBudgetInvariant:
    @pytest.mark.asyncio
    async def test_used_never_exceeds_budget(self, context_compiler, compiler):
        await compiler.compile_project("alpha")
        await compiler.compile_project("scenario")
        for max_tokens in (10, 40, 100, 250, 500, 1000, 5000):
            result = await context_compiler.compile_context(
                "sqlite storage decisions", ContextBudget(max_tokens=max_tokens)
            )
            assert result.used_tokens <= max_tokens
            assert result.used_tokens == sum(item.tokens for item in result.items)

    @pytest.mark.asyncio
    async def test_reserved_tokens_are_held_back(self, context_compiler):
        result = await context_compiler.compile_context(
            "sqlite", ContextBudget(max_tokens=300, reserved_tokens=250), FILES_ONLY
        )
        assert result.total_tokens == 50
        assert result.used_tokens <= 50

    @pytest.mark.asyncio
    async def test_zero_budget_rejected(self, context_compiler):
        with pytest.raises(ValidationError):
            await context_compiler.compile_context("q", ContextBudget(max_tokens=0))

    @pytest.mark.asyncio
    async def test_negative_budget_rejected(self, context_compiler):
        with pytest.raises(ValidationError):
            await context_compiler.compile_context("q", ContextBudget(max_tokens=-5))

    @pytest.mark.asyncio
    async def test_negative_reserve_rejected(self, context_compiler):
        with pytest.raises(ValidationError):
            await context_compiler.compile_context(
                "q", ContextBudget(max_tokens=100, reserved_tokens=-1)
            )

    @pytest.mark.asyncio
    async def test_budget_below_minimum_chunk(self, context_compiler):
        result = await context_compiler.compile_context("sqlite", ContextBudget(max_tokens=20))
        assert result.items == []
        assert result.used_tokens == 0
        assert result.incomplete

    @pytest.mark.asyncio
    async def test_require_non_empty(self, context_compiler):
        with pytest.raises(BudgetExceededError):
            await context_compiler.compile_context(
                "sqlite",
                ContextBudget(max_tokens=20),
                CompileContextOptions(require_non_empty=True),
            )

    @pytest.mark.asyncio
    async def test_unknown_project(self, context_compiler):
        with pytest.raises(NotFoundError):
            await context_compiler.compile_context(
                "q", ContextBudget(max_tokens=500), CompileContextOptions(project_name="nope")
            )


class TestSummaries:
    @pytest.mark.asyncio
    async def test_project_summary_alone_for_broad_query(self, context_compiler, compiler):
        await compiler.compile_project("scenario")
        result = await context_compiler.compile_context(
            "project overview",
            ContextBudget(max_tokens=250),
            CompileContextOptions(project_name="scenario"),
        )

        assert [item.id for item in result.items] == [root_id("scenario")]
        assert result.items[0].summary_level == SummaryLevel.PROJECT
        assert result.used_tokens == 75
        assert result.skipped == []
        assert not result.incomplete

    @pytest.mark.asyncio
    async def test_specific_query_keeps_matching_files(self, context_compiler, compiler):
        await compiler.compile_project("scenario")
        result = await context_compiler.compile_context(
            "charlie entry",
            ContextBudget(max_tokens=250),
            CompileContextOptions(project_name="scenario"),
        )

        assert any(item.kind == "file" for item in result.items)
        assert result.used_tokens <= 250

    @pytest.mark.asyncio
    async def test_projects_without_hierarchy_are_skipped(self, context_compiler):
        result = await context_compiler.compile_context(
            "sqlite",
            ContextBudget(max_tokens=500),
            CompileContextOptions(project_name="alpha", include_files=False),
        )
        assert result.items == []
        assert not result.degraded

    @pytest.mark.asyncio
    async def test_stale_warnings_are_passed_on(
        self, context_compiler, compiler, file_repo, make_file, make_text
    ):
        await compiler.compile_project("alpha")
        file_repo.add(make_file("readme.md", make_text(30, "changed")))
        await compiler.detect_stale("alpha")

        result = await context_compiler.compile_context(
            "overview",
            ContextBudget(max_tokens=500),
            CompileContextOptions(project_name="alpha", include_files=False),
        )
        assert result.warnings
        assert result.warnings[0].project_name == "alpha"


class TestDeduplication:
    @pytest.mark.asyncio
    async def test_file_wins_when_it_fits(self, context_compiler, compiler):
        await compiler.compile_project("alpha")
        result = await context_compiler.compile_context(
            "sqlite",
            ContextBudget(max_tokens=5000),
            CompileContextOptions(project_name="alpha", summary_levels=[SummaryLevel.NODE]),
        )
        assert len(result.items) == 4
        assert all(item.kind == "file" for item in result.items)

    @pytest.mark.asyncio
    async def test_summary_replaces_oversized_file(self, context_compiler, compiler):
        await compiler.compile_project("alpha")
        result = await context_compiler.compile_context(
            "sqlite",
            ContextBudget(max_tokens=5000, search_ratio=0.01),
            CompileContextOptions(project_name="alpha", summary_levels=[SummaryLevel.NODE]),
        )
        kinds = {item.source_files[0]: item.kind for item in result.items}
        assert kinds == {
            "decisions/storage.md": "summary",
            "decisions/api.md": "file",
            "notes/meeting.md": "summary",
            "readme.md": "file",
        }
        assert len(result.items) == 4


class TestGreedyFill:
    @pytest.mark.asyncio
    async def test_oversized_file_is_compressed(self, make_file, make_text):
        ctx = _compiler_for([make_file("big.md", make_text(200, "sqlite"))])
        result = await ctx.compile_context("sqlite", ContextBudget(max_tokens=100), FILES_ONLY)

        assert len(result.items) == 1
        item = result.items[0]
        assert item.compressed
        assert item.original_tokens == 200
        assert 0 < item.tokens <= 100
        assert result.used_tokens <= 100
        assert result.compression_ratio == pytest.approx(item.tokens / 200, abs=1e-4)

    @pytest.mark.asyncio
    async def test_compression_failure_skips_candidate(self, make_file, make_text, flaky_service):
        flaky_service.fail_compress = True
        ctx = _compiler_for([make_file("big.md", make_text(200, "sqlite"))], flaky_service)
        result = await ctx.compile_context("sqlite", ContextBudget(max_tokens=100), FILES_ONLY)

        assert result.items == []
        assert result.used_tokens == 0
        assert result.incomplete
        assert "compression failed" in result.skipped[0].reason

    @pytest.mark.asyncio
    async def test_too_large_to_compress_usefully(self, make_file, make_text):
        ctx = _compiler_for([make_file("huge.md", make_text(1000, "sqlite"))])
        result = await ctx.compile_context("sqlite", ContextBudget(max_tokens=100), FILES_ONLY)

        assert result.items == []
        assert result.incomplete
        assert result.skipped[0].reason.startswith("needs 1000 tokens")

    @pytest.mark.asyncio
    async def test_remaining_candidates_skipped_when_exhausted(self, make_file, make_text):
        ctx = _compiler_for([
            make_file("one.md", make_text(90, "sqlite"), days_old=1),
            make_file("two.md", make_text(90, "sqlite"), days_old=2),
        ])
        result = await ctx.compile_context("sqlite", ContextBudget(max_tokens=100), FILES_ONLY)

        assert [item.id for item in result.items] == ["alpha:one.md"]
        assert result.skipped[0].id == "alpha:two.md"
        assert result.skipped[0].reason == "budget exhausted"
        assert result.incomplete

    @pytest.mark.asyncio
    async def test_min_relevance_filter(self, context_compiler):
        result = await context_compiler.compile_context(
            "sqlite",
            ContextBudget(max_tokens=5000),
            CompileContextOptions(project_name="alpha", min_relevance=0.99),
        )
        assert result.items == []

    @pytest.mark.asyncio
    async def test_deterministic_order(self, context_compiler, compiler):
        await compiler.compile_project("alpha")
        budget = ContextBudget(max_tokens=400)
        first = await context_compiler.compile_context("sqlite decisions", budget)
        second = await context_compiler.compile_context("sqlite decisions", budget)
        assert [i.id for i in first.items] == [i.id for i in second.items]
        assert [s.id for s in first.skipped] == [s.id for s in second.skipped]

    @pytest.mark.asyncio
    async def test_items_in_relevance_order(self, context_compiler):
        result = await context_compiler.compile_context(
            "sqlite", ContextBudget(max_tokens=5000), FILES_ONLY
        )
        scores = [item.relevance_score for item in result.items]
        assert scores == sorted(scores, reverse=True)
        assert not result.incomplete


class TestDegraded:
    @pytest.mark.asyncio
    async def test_neutral_semantic_scores_flag_degraded(self, make_file, make_text):
        ctx = _compiler_for(
            [make_file("note.md", make_text(20, "sqlite"))], MockContentService(embeddings=False)
        )
        result = await ctx.compile_context("sqlite", ContextBudget(max_tokens=500), FILES_ONLY)
        assert result.degraded
        assert len(result.items) == 1


class TestRender:
    @pytest.mark.asyncio
    async def test_render_includes_items(self, context_compiler, compiler):
        await compiler.compile_project("scenario")
        result = await context_compiler.compile_context(
            "overview",
            ContextBudget(max_tokens=250),
            CompileContextOptions(project_name="scenario", include_files=False),
        )
        text = result.render()
        assert "# Context for: overview" in text
        assert f"[project summary] {root_id('scenario')}" in text
        assert result.items[0].content in text

    @pytest.mark.asyncio
    async def test_summary_text(self, context_compiler):
        result = await context_compiler.compile_context(
            "sqlite", ContextBudget(max_tokens=5000), FILES_ONLY
        )
        assert "Context Compilation for: sqlite" in result.summary()
        assert result.id.startswith("compilation-")


class TestQueryTerms:
    def test_drops_stop_words_and_short_words(self):
        assert query_terms("Why did we pick SQLite for the storage layer?") == [
            "pick", "sqlite", "storage", "layer",
        ]

    def test_deduplicates(self):
        assert query_terms("cache cache CACHE") == ["cache"]

    def test_overlap(self):
        assert term_overlap(["sqlite", "redis"], "We chose SQLite.") == 0.5
        assert term_overlap([], "anything") == 0.0
