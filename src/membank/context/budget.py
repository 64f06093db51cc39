"""Budget Recommender: default token budgets per context type.

Pure and table driven. The estimated query size is folded into the reserved
tokens, and long queries get a proportionally larger ceiling.
"""

from __future__ import annotations

import logging

from membank.context.models import ContextBudget, ContextType
from membank.tokens import TokenEstimator

logger = logging.getLogger("membank.context")

# Queries above this many estimated tokens scale the ceiling up
LONG_QUERY_TOKENS = 100
LONG_QUERY_FACTOR = 1.5

_BUDGET_TABLE: dict[ContextType, dict] = {
    # Ranked raw files, some coarse orientation
    ContextType.SEARCH: {
        "max_tokens": 4000,
        "reserved": 500,
        "search_ratio": 0.7,
        "summarization_ratio": 0.3,
    },
    # Large, weighted toward hierarchy summaries
    ContextType.SUMMARIZATION: {
        "max_tokens": 8000,
        "reserved": 1000,
        "search_ratio": 0.2,
        "summarization_ratio": 0.8,
    },
    # Small and precise
    ContextType.QA: {
        "max_tokens": 2000,
        "reserved": 300,
        "search_ratio": 0.8,
        "summarization_ratio": 0.2,
    },
}


def recommend_budget(query: str, context_type: ContextType | str = ContextType.SEARCH) -> ContextBudget:
    """Default budget for a query and what the context is for.

    Unknown context types fall back to the ``search`` defaults.
    """
    try:
        ctype = ContextType(context_type)
    except ValueError:
        logger.warning(f"Unknown context type '{context_type}', using search defaults")
        ctype = ContextType.SEARCH

    row = _BUDGET_TABLE[ctype]
    query_tokens = TokenEstimator.estimate(query) if query else 0

    max_tokens = row["max_tokens"]
    if query_tokens > LONG_QUERY_TOKENS:
        max_tokens = int(max_tokens * LONG_QUERY_FACTOR)

    return ContextBudget(
        max_tokens=max_tokens,
        reserved_tokens=row["reserved"] + query_tokens,
        search_ratio=row["search_ratio"],
        summarization_ratio=row["summarization_ratio"],
    )
