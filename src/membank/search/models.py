"""Data models for memory bank files and ranked search."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def content_hash(content: str) -> str:
    """Stable short hash used for staleness detection."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


class FileMetadata(BaseModel):
    """Front-matter style metadata kept alongside a file."""

    tags: list[str] = Field(default_factory=list)
    created: datetime = Field(default_factory=utcnow)
    updated: datetime = Field(default_factory=utcnow)
    task: str | None = None
    salience: float | None = None  # 0-1 stored importance
    frequency: int | None = None  # access count
    last_accessed: datetime | None = None


class EnhancedFile(BaseModel):
    """A file of a project's memory bank, as read from file storage."""

    name: str
    project_name: str
    content: str
    metadata: FileMetadata = Field(default_factory=FileMetadata)
    embedding: list[float] | None = None
    content_hash: str | None = None

    @property
    def key(self) -> str:
        return f"{self.project_name}:{self.name}"

    def effective_hash(self) -> str:
        """The stored content hash, or one computed from the content."""
        return self.content_hash or content_hash(self.content)


class SearchQuery(BaseModel):
    """Parameters of a ranked search.

    Weights left as None fall back to the ranker's configured defaults.
    """

    query: str
    project_name: str | None = None
    tags: list[str] = Field(default_factory=list)
    limit: int | None = None
    semantic_weight: float | None = None
    recency_weight: float | None = None
    frequency_weight: float | None = None
    salience_weight: float | None = None
    time_decay_weight: float | None = None
    time_decay_days: float | None = None


class ScoreBreakdown(BaseModel):
    """Per-file sub-scores, each normalized to [0, 1]."""

    semantic: float = 0.0
    recency: float = 0.0
    frequency: float = 0.0
    salience: float = 0.0
    time_decay: float = 0.0
    combined: float = 0.0


class SearchResult(BaseModel):
    file: EnhancedFile
    scores: ScoreBreakdown
    semantic_available: bool = True
    snippet: str = ""


class SearchResponse(BaseModel):
    results: list[SearchResult] = Field(default_factory=list)
    total_found: int = 0  # candidates scored before the limit was applied
    query_time_ms: float = 0.0
    degraded: bool = False  # at least one semantic score is the neutral fallback
