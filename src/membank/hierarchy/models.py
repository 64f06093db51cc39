"""Data models for the node -> section -> project summary tree."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from membank.search.models import utcnow


class SummaryLevel(str, Enum):
    """Granularity of a summary. Order matters: NODE < SECTION < PROJECT."""

    NODE = "node"  # A single file
    SECTION = "section"  # A cluster of related files
    PROJECT = "project"  # The whole project

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK = {SummaryLevel.NODE: 0, SummaryLevel.SECTION: 1, SummaryLevel.PROJECT: 2}


class SummaryType(str, Enum):
    EXTRACTIVE = "extractive"  # Source text kept or sentence-extracted
    ABSTRACTIVE = "abstractive"  # Generated text
    HIERARCHICAL = "hierarchical"  # Summary of summaries


class SummaryState(str, Enum):
    """Lifecycle of a stored summary (absent = not in the repository)."""

    PENDING = "pending"
    COMPILED = "compiled"
    STALE = "stale"


class SummaryMetadata(BaseModel):
    level: SummaryLevel
    type: SummaryType
    source_files: list[str] = Field(default_factory=list)
    tokens: int = 0
    source_tokens: int = 0  # tokens of the input that was summarized
    compression_ratio: float = 1.0  # tokens / source_tokens
    created: datetime = Field(default_factory=utcnow)
    updated: datetime = Field(default_factory=utcnow)
    parent_summary_id: str | None = None  # weak reference
    child_summary_ids: list[str] = Field(default_factory=list)  # weak references
    state: SummaryState = SummaryState.COMPILED
    source_hash: str = ""  # hash of the input, drives staleness
    tags: list[str] = Field(default_factory=list)  # node-level clustering keys
    task: str | None = None


class Summary(BaseModel):
    id: str
    project_name: str
    content: str
    metadata: SummaryMetadata
    embedding: list[float] | None = None

    @property
    def level(self) -> SummaryLevel:
        return self.metadata.level

    @property
    def tokens(self) -> int:
        return self.metadata.tokens


class StaleHierarchyWarning(BaseModel):
    """Informational: some summaries are older than their sources."""

    project_name: str
    summary_ids: list[str] = Field(default_factory=list)
    reason: str = ""


class SummaryHierarchy(BaseModel):
    """Per-project aggregate of the summary tree."""

    project_name: str
    root_summary: Summary
    sections: list[Summary] = Field(default_factory=list)
    nodes: list[Summary] = Field(default_factory=list)
    total_tokens: int = 0
    compression_ratio: float = 1.0  # root tokens / total source tokens
    last_updated: datetime = Field(default_factory=utcnow)
    stale: bool = False
    warnings: list[StaleHierarchyWarning] = Field(default_factory=list)

    def all_summaries(self) -> list[Summary]:
        return [self.root_summary, *self.sections, *self.nodes]

    def level_tokens(self, level: SummaryLevel) -> int:
        return sum(s.tokens for s in self.summaries_at(level))

    def summaries_at(self, level: SummaryLevel) -> list[Summary]:
        if level == SummaryLevel.PROJECT:
            return [self.root_summary]
        if level == SummaryLevel.SECTION:
            return list(self.sections)
        return list(self.nodes)

    def node_for_file(self, file_name: str) -> Summary | None:
        for node in self.nodes:
            if file_name in node.metadata.source_files:
                return node
        return None


class CompilationOptions(BaseModel):
    """Per-call overrides for compile_project.

    Unset fields fall back to the compiler's HierarchyConfig.
    """

    force_recompile: bool = False
    max_tokens_per_summary: int | None = None
    compression_ratio: float | None = None
    summary_type: SummaryType | None = None  # node summaries: extractive or abstractive
    style: str | None = None
    focus_areas: list[str] = Field(default_factory=list)
