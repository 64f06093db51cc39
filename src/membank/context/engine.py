"""Context Compiler: budgeted assembly of ranked files and summaries.

Algorithm:
  1. Rank files for the query (Ranker) and fetch hierarchy summaries at the
     coarsest level that fits the summary share of the budget, concurrently
  2. Merge, dropping a file or its own node summary when both are present;
     for a broad query (no query term in any ranked file) the summaries
     replace the files they cover
  3. Sort by relevance descending; ties by most recent update, then name
  4. Greedy fill while at least one useful chunk of budget remains; a
     candidate that does not fit is compressed to the remaining budget, or
     skipped with a reason when compression fails or would have to cut it
     below a useful fraction of its size

Invariant: ``used_tokens <= available_tokens <= budget.max_tokens``.

Upstream failures never fail the call: a failed source or compression
shows up as skipped candidates and an ``incomplete`` result.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from membank.concurrency import gather_bounded, with_deadline
from membank.config import ConcurrencyConfig, ContextConfig
from membank.context.budget import recommend_budget
from membank.context.models import (
    CompileContextOptions,
    ContextBudget,
    ContextCompilation,
    ContextItem,
    ContextType,
    SkippedCandidate,
)
from membank.exceptions import (
    BudgetExceededError,
    NotFoundError,
    UpstreamServiceError,
    ValidationError,
)
from membank.hierarchy.compiler import HierarchyCompiler
from membank.hierarchy.models import StaleHierarchyWarning, Summary, SummaryLevel
from membank.llm.base import CompressionMethod, CompressionOptions, ContentService
from membank.search.models import ScoreBreakdown, SearchQuery, SearchResult
from membank.search.ranker import Ranker
from membank.tokens import TokenEstimator
from membank.validation import validate_max_tokens, validate_project_name

logger = logging.getLogger("membank.context")

_STOP_WORDS = {
    "the", "and", "for", "that", "this", "with", "from", "have", "been",
    "will", "can", "should", "would", "could", "into", "when", "where",
    "how", "what", "why", "which", "there", "their", "about", "also",
    "just", "more", "some", "than", "them", "then", "these", "very",
    "are", "was", "were", "does", "did", "all", "any", "our", "your",
}


def query_terms(query: str) -> list[str]:
    """Significant lowercase terms of a query, in order of appearance."""
    seen: dict[str, None] = {}
    for word in re.findall(r"[a-z0-9][a-z0-9_-]{2,}", query.lower()):
        if word not in _STOP_WORDS:
            seen.setdefault(word, None)
    return list(seen)


def term_overlap(terms: list[str], content: str) -> float:
    """Fraction of `terms` that appear in `content`."""
    if not terms:
        return 0.0
    lowered = content.lower()
    return round(sum(1 for t in terms if t in lowered) / len(terms), 4)


@dataclass
class _Candidate:
    id: str
    kind: str
    project_name: str
    content: str
    tokens: int
    relevance: float
    updated: datetime
    name: str
    file_name: str | None = None
    summary_level: SummaryLevel | None = None
    source_files: list[str] = field(default_factory=list)
    scores: ScoreBreakdown | None = None
    reason: str = ""

    def sort_key(self) -> tuple:
        updated = self.updated if self.updated.tzinfo else self.updated.replace(tzinfo=timezone.utc)
        return (-self.relevance, -updated.timestamp(), self.name, self.project_name)


class ContextCompiler:
    """Compiles a token-bounded context for a query.

    Usage:
        compiler = ContextCompiler(ranker, hierarchy_compiler, content_service)
        budget = compiler.recommend_budget("why did we pick sqlite?", "qa")
        result = await compiler.compile_context("why did we pick sqlite?", budget)
        llm_context = result.render()
    """

    def __init__(
        self,
        ranker: Ranker,
        hierarchy: HierarchyCompiler,
        content_service: ContentService,
        config: ContextConfig | None = None,
        concurrency: ConcurrencyConfig | None = None,
    ) -> None:
        self.ranker = ranker
        self.hierarchy = hierarchy
        self.content_service = content_service
        self.config = config or ContextConfig()
        self.concurrency = concurrency or ConcurrencyConfig()

    def recommend_budget(
        self, query: str, context_type: ContextType | str = ContextType.SEARCH
    ) -> ContextBudget:
        return recommend_budget(query, context_type)

    # -------------------------------------------------------------------
    # Main entry point
    # -------------------------------------------------------------------

    async def compile_context(
        self,
        query: str,
        budget: ContextBudget,
        options: CompileContextOptions | None = None,
    ) -> ContextCompilation:
        """Compile a context for `query` that fits `budget`.

        Raises:
            ValidationError: On a non-positive budget, a negative reserve or
                a malformed project name.
            NotFoundError: If ``options.project_name`` is unknown.
            BudgetExceededError: If the budget cannot hold a single useful
                chunk and ``options.require_non_empty`` is set.
        """
        start_time = time.time()
        options = options or CompileContextOptions()
        validate_max_tokens(budget.max_tokens)
        if budget.reserved_tokens < 0:
            raise ValidationError(f"Reserved tokens must not be negative, got {budget.reserved_tokens}")
        if options.project_name is not None:
            validate_project_name(options.project_name)

        available = budget.available_tokens
        result = ContextCompilation(
            id=self._compilation_id(query, budget),
            query=query,
            budget=budget,
            total_tokens=available,
        )

        if available < self.config.min_chunk_tokens:
            if options.require_non_empty:
                raise BudgetExceededError(
                    f"{available} available tokens cannot hold a chunk of "
                    f"{self.config.min_chunk_tokens} tokens"
                )
            logger.info(f"Budget of {available} tokens is below the minimum chunk size")
            result.incomplete = True
            result.compilation_time_ms = round((time.time() - start_time) * 1000, 1)
            return result

        # Phase 1: gather candidates from both sources concurrently
        summary_budget = (
            int(available * budget.summarization_ratio)
            if budget.summarization_ratio is not None
            else available
        )
        files_result, summaries_result = await asyncio.gather(
            self._ranked_files(query, options),
            self._summaries(options, summary_budget),
            return_exceptions=True,
        )

        source_failed = False
        search_results: list[SearchResult] = []
        summaries: list[Summary] = []
        for outcome in (files_result, summaries_result):
            if isinstance(outcome, UpstreamServiceError):
                logger.warning(f"Context source failed: {outcome}")
                source_failed = True
            elif isinstance(outcome, BaseException):
                raise outcome

        if not isinstance(files_result, BaseException):
            search_results, result.degraded = files_result
        if not isinstance(summaries_result, BaseException):
            summaries, result.warnings = summaries_result

        # Phase 2: candidates, deduplicated
        file_budget = (
            int(available * budget.search_ratio) if budget.search_ratio is not None else available
        )
        file_candidates = await self._file_candidates(search_results)
        summary_candidates = self._summary_candidates(query, summaries)
        terms = query_terms(query)
        if summary_candidates and not any(term_overlap(terms, f.content) for f in file_candidates):
            # Broad query: the coarsest fitting summaries stand in for their files
            file_candidates = self._uncovered(file_candidates, summary_candidates)
        candidates = self._merge(file_candidates, summary_candidates, file_budget)

        # Phase 3: deterministic order, relevance floor
        candidates = [c for c in candidates if c.relevance >= options.min_relevance]
        candidates.sort(key=lambda c: c.sort_key())

        # Phase 4: greedy fill
        method = CompressionMethod(options.compression_method or self.config.compression_method)
        await self._fill(result, candidates, available, method, terms)

        result.incomplete = bool(result.skipped) or source_failed
        if source_failed:
            result.degraded = True
        original = sum(item.original_tokens for item in result.items)
        result.compression_ratio = round(result.used_tokens / original, 4) if original else 1.0
        result.compilation_time_ms = round((time.time() - start_time) * 1000, 1)

        logger.info(
            f"Compiled context {result.id}: {len(result.items)} items, "
            f"{result.used_tokens}/{available} tokens, {len(result.skipped)} skipped"
        )
        return result

    # -------------------------------------------------------------------
    # Phase 1: sources
    # -------------------------------------------------------------------

    async def _ranked_files(
        self, query: str, options: CompileContextOptions
    ) -> tuple[list[SearchResult], bool]:
        if not options.include_files:
            return [], False
        response = await self.ranker.search(
            SearchQuery(
                query=query,
                project_name=options.project_name,
                tags=list(options.tags),
                limit=options.file_limit or self.config.file_limit,
            )
        )
        return response.results, response.degraded

    async def _summaries(
        self, options: CompileContextOptions, summary_budget: int
    ) -> tuple[list[Summary], list[StaleHierarchyWarning]]:
        if not options.include_summaries:
            return [], []
        if options.project_name is not None:
            projects = [options.project_name]
        else:
            projects = await self.hierarchy.file_repository.list_projects()

        summaries: list[Summary] = []
        warnings: list[StaleHierarchyWarning] = []
        for project in projects:
            try:
                hierarchy = await self.hierarchy.get_hierarchy(project)
            except NotFoundError:
                logger.debug(f"No hierarchy for '{project}', skipping its summaries")
                continue
            warnings.extend(hierarchy.warnings)

            if options.summary_levels:
                for level in options.summary_levels:
                    summaries.extend(hierarchy.summaries_at(level))
            elif summary_budget > 0:
                summaries.extend(
                    await self.hierarchy.get_optimal_summary_level(project, summary_budget)
                )
        return summaries, warnings

    # -------------------------------------------------------------------
    # Phase 2: candidates
    # -------------------------------------------------------------------

    async def _file_candidates(self, results: list[SearchResult]) -> list[_Candidate]:
        counts = await gather_bounded(
            [lambda r=r: self._count(r.file.content, r.file.key) for r in results],
            self.concurrency.max_concurrency,
        )
        candidates = []
        for r, tokens in zip(results, counts):
            if isinstance(tokens, BaseException):
                raise tokens
            candidates.append(
                _Candidate(
                    id=r.file.key,
                    kind="file",
                    project_name=r.file.project_name,
                    content=r.file.content,
                    tokens=tokens,
                    relevance=r.scores.combined,
                    updated=r.file.metadata.updated,
                    name=r.file.name,
                    file_name=r.file.name,
                    source_files=[r.file.name],
                    scores=r.scores,
                    reason=f"ranked file (combined {r.scores.combined:.2f})",
                )
            )
        return candidates

    @staticmethod
    def _summary_candidates(query: str, summaries: list[Summary]) -> list[_Candidate]:
        terms = query_terms(query)
        return [
            _Candidate(
                id=s.id,
                kind="summary",
                project_name=s.project_name,
                content=s.content,
                tokens=s.tokens,
                relevance=term_overlap(terms, s.content),
                updated=s.metadata.updated,
                name=s.id,
                summary_level=s.level,
                source_files=list(s.metadata.source_files),
                reason=f"{s.level.value} summary of {len(s.metadata.source_files)} files",
            )
            for s in summaries
            if s.content
        ]

    @staticmethod
    def _uncovered(files: list[_Candidate], summaries: list[_Candidate]) -> list[_Candidate]:
        """Files no summary candidate already covers."""
        covered = {(s.project_name, name) for s in summaries for name in s.source_files}
        kept = [f for f in files if (f.project_name, f.file_name) not in covered]
        if len(kept) < len(files):
            logger.debug(f"Broad query, {len(files) - len(kept)} files covered by summaries")
        return kept

    @staticmethod
    def _merge(
        files: list[_Candidate],
        summaries: list[_Candidate],
        file_budget: int,
    ) -> list[_Candidate]:
        """Keep only one of a file and its own node summary.

        The raw file wins when it fits the file share of the budget; the
        summary then inherits the file's relevance if it wins instead.
        """
        node_for = {
            (s.project_name, s.source_files[0]): s
            for s in summaries
            if s.summary_level == SummaryLevel.NODE and len(s.source_files) == 1
        }
        dropped: set[str] = set()
        kept_files: list[_Candidate] = []

        for f in files:
            node = node_for.get((f.project_name, f.file_name))
            if node is None:
                kept_files.append(f)
            elif f.tokens <= file_budget:
                dropped.add(node.id)
                kept_files.append(f)
            else:
                node.relevance = max(node.relevance, f.relevance)
                node.reason = f"node summary in place of {f.file_name} ({f.tokens} tokens)"

        return kept_files + [s for s in summaries if s.id not in dropped]

    # -------------------------------------------------------------------
    # Phase 4: greedy fill
    # -------------------------------------------------------------------

    async def _fill(
        self,
        result: ContextCompilation,
        candidates: list[_Candidate],
        available: int,
        method: CompressionMethod,
        keywords: list[str],
    ) -> None:
        min_chunk = self.config.min_chunk_tokens
        remaining = available

        for cand in candidates:
            if remaining < min_chunk:
                self._skip(result, cand, "budget exhausted")
                continue

            if cand.tokens <= remaining:
                result.items.append(self._item(cand, cand.content, cand.tokens, compressed=False))
                remaining -= cand.tokens
                continue

            if remaining < cand.tokens * self.config.min_compression_fraction:
                self._skip(
                    result, cand,
                    f"needs {cand.tokens} tokens, only {remaining} left",
                )
                continue

            try:
                compression = await with_deadline(
                    self.content_service.compress(
                        cand.content,
                        CompressionOptions(
                            target_tokens=remaining,
                            preserve_keywords=keywords,
                            method=method,
                        ),
                    ),
                    self.concurrency.call_timeout_seconds,
                    f"compress {cand.id}",
                )
            except UpstreamServiceError as e:
                logger.warning(f"Skipping {cand.id}: {e}")
                self._skip(result, cand, f"compression failed: {e}")
                continue

            text = compression.compressed_text
            tokens = await self._count(text, cand.id)
            if not text.strip() or tokens > remaining:
                self._skip(
                    result, cand,
                    f"compressed to {tokens} tokens, {remaining} left",
                )
                continue

            logger.debug(f"Compressed {cand.id} from {cand.tokens} to {tokens} tokens")
            result.items.append(self._item(cand, text, tokens, compressed=True))
            remaining -= tokens

        result.used_tokens = available - remaining

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    async def _count(self, text: str, label: str) -> int:
        if not text:
            return 0
        try:
            return await with_deadline(
                self.content_service.count_tokens(text),
                self.concurrency.call_timeout_seconds,
                f"count tokens {label}",
            )
        except UpstreamServiceError as e:
            logger.warning(f"Estimating tokens for {label}: {e}")
            return TokenEstimator.estimate(text)

    @staticmethod
    def _item(cand: _Candidate, content: str, tokens: int, compressed: bool) -> ContextItem:
        return ContextItem(
            id=cand.id,
            kind=cand.kind,
            project_name=cand.project_name,
            content=content,
            tokens=tokens,
            original_tokens=cand.tokens,
            relevance_score=round(cand.relevance, 4),
            file_name=cand.file_name,
            summary_level=cand.summary_level,
            source_files=cand.source_files,
            compressed=compressed,
            scores=cand.scores,
            reason=cand.reason,
        )

    @staticmethod
    def _skip(result: ContextCompilation, cand: _Candidate, reason: str) -> None:
        logger.debug(f"Skipped {cand.id}: {reason}")
        result.skipped.append(
            SkippedCandidate(
                id=cand.id,
                kind=cand.kind,
                tokens=cand.tokens,
                relevance_score=round(cand.relevance, 4),
                reason=reason,
            )
        )

    @staticmethod
    def _compilation_id(query: str, budget: ContextBudget) -> str:
        digest = hashlib.sha1(f"{query}:{budget.max_tokens}".encode("utf-8")).hexdigest()[:12]
        return f"compilation-{digest}-{int(time.time() * 1000)}"
