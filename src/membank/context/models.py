"""Data models for budgeted context compilation."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from membank.hierarchy.models import StaleHierarchyWarning, SummaryLevel
from membank.search.models import ScoreBreakdown, utcnow


class ContextType(str, Enum):
    """What the compiled context will be used for."""

    SEARCH = "search"
    SUMMARIZATION = "summarization"
    QA = "qa"


class ContextBudget(BaseModel):
    """Token ceiling for a compiled context, plus allocation hints."""

    max_tokens: int
    reserved_tokens: int = 0  # system prompt, query, etc.
    search_ratio: float | None = None  # share of available tokens for raw files
    summarization_ratio: float | None = None  # share for hierarchy summaries
    compression_target: float = 0.3

    @property
    def available_tokens(self) -> int:
        return max(0, self.max_tokens - self.reserved_tokens)


class ContextItem(BaseModel):
    """A single selected item of the compiled context."""

    id: str
    kind: str  # "file" or "summary"
    project_name: str
    content: str
    tokens: int
    original_tokens: int = 0
    relevance_score: float = 0.0
    file_name: str | None = None
    summary_level: SummaryLevel | None = None
    source_files: list[str] = Field(default_factory=list)
    compressed: bool = False
    scores: ScoreBreakdown | None = None
    reason: str = ""  # Why this was included


class SkippedCandidate(BaseModel):
    id: str
    kind: str
    tokens: int
    relevance_score: float = 0.0
    reason: str


class CompileContextOptions(BaseModel):
    project_name: str | None = None
    include_files: bool = True
    include_summaries: bool = True
    summary_levels: list[SummaryLevel] | None = None  # None = optimal level for the budget
    tags: list[str] = Field(default_factory=list)
    compression_method: str | None = None
    min_relevance: float = 0.0
    require_non_empty: bool = False
    file_limit: int | None = None


class ContextCompilation(BaseModel):
    """The complete compiled context, ready for LLM consumption."""

    id: str
    query: str
    budget: ContextBudget
    items: list[ContextItem] = Field(default_factory=list)
    used_tokens: int = 0
    total_tokens: int = 0  # tokens available for content (max minus reserved)
    compression_ratio: float = 1.0  # used tokens / tokens of the selected originals
    skipped: list[SkippedCandidate] = Field(default_factory=list)
    incomplete: bool = False
    degraded: bool = False
    warnings: list[StaleHierarchyWarning] = Field(default_factory=list)
    compilation_time_ms: float = 0.0
    created: datetime = Field(default_factory=utcnow)

    @property
    def budget_used_pct(self) -> float:
        return round(self.used_tokens / max(self.total_tokens, 1) * 100, 1)

    def render(self, include_metadata: bool = True) -> str:
        """Render the compiled context as a string for LLM consumption."""
        sections: list[str] = []

        if include_metadata:
            sections.append(f"# Context for: {self.query}")
            sections.append(
                f"# {len(self.items)} items "
                f"(~{self.used_tokens:,} tokens, {self.budget_used_pct:.0f}% of budget)"
            )
            sections.append("")

        for item in self.items:
            if item.kind == "summary":
                level = item.summary_level.value if item.summary_level else "summary"
                sections.append(f"## [{level} summary] {item.id}")
            else:
                sections.append(f"## {item.project_name}/{item.file_name}")
            if include_metadata:
                note = f"# relevance: {item.relevance_score:.2f}"
                if item.compressed:
                    note += f", compressed from ~{item.original_tokens} tokens"
                sections.append(note)
            sections.append("")
            sections.append(item.content)
            sections.append("")

        return "\n".join(sections)

    def summary(self) -> str:
        """Human-readable summary of what's in the context."""
        lines = [
            f"Context Compilation for: {self.query}",
            f"Tokens: {self.used_tokens:,} / {self.total_tokens:,} ({self.budget_used_pct:.0f}%)",
            f"Items: {len(self.items)} included, {len(self.skipped)} skipped",
            f"Compression ratio: {self.compression_ratio:.2f}",
            f"Compilation time: {self.compilation_time_ms:.1f}ms",
        ]
        if self.incomplete:
            lines.append("Incomplete: not every relevant candidate fit the budget")
        if self.degraded:
            lines.append("Degraded: semantic scores fell back to a neutral value")
        lines.append("")
        lines.append("Included:")
        for item in self.items:
            marker = "~" if item.compressed else ">"
            lines.append(
                f"  {marker} {item.id} ({item.kind}) "
                f"score={item.relevance_score:.2f} ~{item.tokens}tok"
            )
        if self.skipped:
            lines.append("Skipped:")
            for s in self.skipped:
                lines.append(f"    {s.id} ~{s.tokens}tok: {s.reason}")

        return "\n".join(lines)

