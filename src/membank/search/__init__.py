"""Memory bank files and multi-factor ranked search.

The ranker lives in :mod:`membank.search.ranker`.
"""

from membank.search.models import (
    EnhancedFile,
    FileMetadata,
    ScoreBreakdown,
    SearchQuery,
    SearchResponse,
    SearchResult,
    content_hash,
)

__all__ = [
    "EnhancedFile",
    "FileMetadata",
    "ScoreBreakdown",
    "SearchQuery",
    "SearchResponse",
    "SearchResult",
    "content_hash",
]
