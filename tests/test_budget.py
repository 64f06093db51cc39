"""Tests for budget recommendation."""

from __future__ import annotations

import pytest

from membank.context import ContextType, TokenEstimator, recommend_budget


class TestRecommendBudget:
    def test_search_defaults(self):
        budget = recommend_budget("", ContextType.SEARCH)
        assert budget.max_tokens == 4000
        assert budget.reserved_tokens == 500
        assert budget.search_ratio == 0.7
        assert budget.summarization_ratio == 0.3

    def test_qa_is_smallest(self):
        qa = recommend_budget("what is x?", "qa")
        search = recommend_budget("what is x?", "search")
        summarization = recommend_budget("what is x?", "summarization")
        assert qa.max_tokens < search.max_tokens < summarization.max_tokens

    def test_summarization_favors_summaries(self):
        budget = recommend_budget("summarize the project", "summarization")
        assert budget.summarization_ratio > budget.search_ratio

    def test_query_tokens_are_reserved(self):
        query = "why did we move the job queue off redis"
        budget = recommend_budget(query, "qa")
        assert budget.reserved_tokens == 300 + TokenEstimator.estimate(query)
        assert budget.available_tokens == budget.max_tokens - budget.reserved_tokens

    def test_long_query_scales_ceiling(self):
        long_query = "explain the storage decisions " * 30
        budget = recommend_budget(long_query, "search")
        assert budget.max_tokens == 6000
        assert budget.available_tokens > 0

    def test_unknown_type_falls_back_to_search(self):
        budget = recommend_budget("q", "poetry")
        assert budget == recommend_budget("q", ContextType.SEARCH)

    def test_ratios_sum_to_one(self):
        for ctype in ContextType:
            budget = recommend_budget("q", ctype)
            assert budget.search_ratio + budget.summarization_ratio == pytest.approx(1.0)
