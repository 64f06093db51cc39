"""Budgeted context compilation."""

from membank.context.budget import recommend_budget
from membank.context.engine import ContextCompiler
from membank.context.models import (
    CompileContextOptions,
    ContextBudget,
    ContextCompilation,
    ContextItem,
    ContextType,
    SkippedCandidate,
)
from membank.tokens import TokenEstimator

__all__ = [
    "CompileContextOptions",
    "ContextBudget",
    "ContextCompilation",
    "ContextCompiler",
    "ContextItem",
    "ContextType",
    "SkippedCandidate",
    "TokenEstimator",
    "recommend_budget",
]
