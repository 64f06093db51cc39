"""Multi-factor ranking of memory bank files.

Each candidate gets five sub-scores in [0, 1]:

  semantic    cosine(query embedding, file embedding), clamped at 0
  recency     1 - age / recency_window, from the file's `updated` time
  frequency   access count / highest access count among the candidates
  salience    stored importance, neutral when absent
  time_decay  0.5 ** (age / half_life), from last access (else `updated`)

    combined = Σ weight_i · score_i

When no embedding is available for a candidate (service without embedding
support, service down, vector search failed, file never indexed) its
semantic score is a fixed neutral value and the response is flagged
degraded. Every candidate is scored before the limit is applied.
"""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timezone

import numpy as np

from membank.concurrency import gather_bounded, with_deadline
from membank.config import ConcurrencyConfig, RankingConfig
from membank.exceptions import UpstreamServiceError, ValidationError
from membank.llm.base import ContentService
from membank.search.models import (
    EnhancedFile,
    ScoreBreakdown,
    SearchQuery,
    SearchResponse,
    SearchResult,
    utcnow,
)
from membank.storage.base import FileRepository, VectorRepository
from membank.validation import validate_project_name

logger = logging.getLogger("membank.search")

_SECONDS_PER_DAY = 86400.0
_SNIPPET_CHARS = 200


def _as_utc(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def _age_days(now: datetime, ts: datetime) -> float:
    return max(0.0, (_as_utc(now) - _as_utc(ts)).total_seconds() / _SECONDS_PER_DAY)


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def _cosine(a: list[float], b: list[float]) -> float | None:
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        return None
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def _snippet(content: str, query: str) -> str:
    """First line mentioning a query term, else the first non-empty line."""
    terms = re.findall(r"\w{3,}", query.lower())
    lines = [line.strip() for line in content.splitlines() if line.strip()]
    for line in lines:
        lowered = line.lower()
        if any(t in lowered for t in terms):
            return line[:_SNIPPET_CHARS]
    return lines[0][:_SNIPPET_CHARS] if lines else ""


def sort_key(result: SearchResult) -> tuple:
    """Combined score descending, then most recent update, then file name."""
    return (
        -result.scores.combined,
        -_as_utc(result.file.metadata.updated).timestamp(),
        result.file.name,
        result.file.project_name,
    )


class Ranker:
    """Scores and retrieves memory bank files for a query."""

    def __init__(
        self,
        file_repository: FileRepository,
        vector_repository: VectorRepository,
        content_service: ContentService,
        config: RankingConfig | None = None,
        concurrency: ConcurrencyConfig | None = None,
    ) -> None:
        self.file_repository = file_repository
        self.vector_repository = vector_repository
        self.content_service = content_service
        self.config = config or RankingConfig()
        self.concurrency = concurrency or ConcurrencyConfig()

    async def search(self, query: SearchQuery, now: datetime | None = None) -> SearchResponse:
        """Rank every candidate file and return the top ``query.limit``.

        Raises:
            ValidationError: On a malformed project name, a limit below one
                or a negative weight.
            NotFoundError: If ``query.project_name`` is unknown.
        """
        start = time.time()
        if query.project_name is not None:
            validate_project_name(query.project_name)
        if query.limit is not None and query.limit < 1:
            raise ValidationError(f"Search limit must be at least 1, got {query.limit}")
        weights = self._weights(query)
        now = now or utcnow()

        candidates = await self._candidates(query)
        if not candidates:
            return SearchResponse(query_time_ms=round((time.time() - start) * 1000, 1))

        semantic = await self._semantic_scores(query, candidates)
        half_life = query.time_decay_days or self.config.time_decay_days
        max_freq = max(f.metadata.frequency or 0 for f in candidates)

        results: list[SearchResult] = []
        for file in candidates:
            meta = file.metadata
            sem = semantic.get(file.key)
            age = _age_days(now, meta.updated)
            accessed_age = _age_days(now, meta.last_accessed or meta.updated)

            scores = ScoreBreakdown(
                semantic=sem if sem is not None else self.config.neutral_semantic,
                recency=_clamp(1.0 - age / self.config.recency_window_days),
                frequency=(meta.frequency or 0) / max_freq if max_freq > 0 else 0.0,
                salience=_clamp(
                    meta.salience if meta.salience is not None else self.config.default_salience
                ),
                time_decay=_clamp(0.5 ** (accessed_age / half_life)),
            )
            scores.combined = round(
                sum(weights[name] * getattr(scores, name) for name in weights), 6
            )
            results.append(
                SearchResult(
                    file=file,
                    scores=scores,
                    semantic_available=sem is not None,
                    snippet=_snippet(file.content, query.query),
                )
            )

        results.sort(key=sort_key)
        degraded = any(not r.semantic_available for r in results)
        if degraded:
            logger.debug(
                f"Neutral semantic score used for "
                f"{sum(not r.semantic_available for r in results)}/{len(results)} files"
            )

        limit = query.limit or self.config.default_limit
        return SearchResponse(
            results=results[:limit],
            total_found=len(results),
            query_time_ms=round((time.time() - start) * 1000, 1),
            degraded=degraded,
        )

    async def index_project(self, project_name: str) -> int:
        """Embed files whose stored vector is missing or out of date.

        Returns the number of files (re)indexed. Files that fail to embed
        are logged and left for the next run.
        """
        validate_project_name(project_name)
        if not self.content_service.supports_embedding():
            logger.info("Content service has no embedding support, nothing to index")
            return 0

        files = await self.file_repository.list_files(project_name)
        todo: list[EnhancedFile] = []
        for file in files:
            stored_hash = await self.vector_repository.indexed_hash(project_name, file.name)
            if stored_hash != file.effective_hash():
                todo.append(file)

        results = await gather_bounded(
            [lambda f=f: self._index_file(f) for f in todo],
            self.concurrency.max_concurrency,
        )
        indexed = 0
        for file, result in zip(todo, results):
            if isinstance(result, UpstreamServiceError):
                logger.warning(f"Could not index {file.key}: {result}")
            elif isinstance(result, BaseException):
                raise result
            else:
                indexed += 1

        logger.info(f"Indexed {indexed}/{len(todo)} changed files in '{project_name}'")
        return indexed

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    def _weights(self, query: SearchQuery) -> dict[str, float]:
        cfg = self.config
        weights = {
            "semantic": query.semantic_weight,
            "recency": query.recency_weight,
            "frequency": query.frequency_weight,
            "salience": query.salience_weight,
            "time_decay": query.time_decay_weight,
        }
        defaults = {
            "semantic": cfg.semantic_weight,
            "recency": cfg.recency_weight,
            "frequency": cfg.frequency_weight,
            "salience": cfg.salience_weight,
            "time_decay": cfg.time_decay_weight,
        }
        resolved = {k: v if v is not None else defaults[k] for k, v in weights.items()}
        negative = sorted(k for k, v in resolved.items() if v < 0)
        if negative:
            raise ValidationError(f"Ranking weights must be non-negative: {', '.join(negative)}")
        return resolved

    async def _candidates(self, query: SearchQuery) -> list[EnhancedFile]:
        if query.project_name is not None:
            files = await self.file_repository.list_files(query.project_name)
        else:
            files = []
            for project in await self.file_repository.list_projects():
                files.extend(await self.file_repository.list_files(project))

        if query.tags:
            wanted = set(query.tags)
            files = [f for f in files if wanted & set(f.metadata.tags)]
        return files

    async def _semantic_scores(
        self, query: SearchQuery, candidates: list[EnhancedFile]
    ) -> dict[str, float]:
        """Semantic score per file key; files without one are left out."""
        if not query.query.strip() or not self.content_service.supports_embedding():
            return {}

        timeout = self.concurrency.call_timeout_seconds
        try:
            if not await with_deadline(
                self.content_service.is_available(), timeout, "content service check"
            ):
                logger.warning("Content service unavailable, using neutral semantic scores")
                return {}
            vector = await with_deadline(
                self.content_service.get_embedding(query.query), timeout, "embed query"
            )
        except UpstreamServiceError as e:
            logger.warning(f"Semantic scoring degraded: {e}")
            return {}

        scores: dict[str, float] = {}
        filters: dict = {}
        if query.project_name:
            filters["project_name"] = query.project_name
        if query.tags:
            filters["tags"] = list(query.tags)
        try:
            matches = await with_deadline(
                self.vector_repository.search(vector, filters=filters), timeout, "vector search"
            )
            for match in matches:
                scores[f"{match.project_name}:{match.file_name}"] = _clamp(match.similarity)
        except UpstreamServiceError as e:
            logger.warning(f"Vector search failed, falling back to stored embeddings: {e}")

        for file in candidates:
            if file.key in scores or not file.embedding:
                continue
            sim = _cosine(vector, file.embedding)
            if sim is not None:
                scores[file.key] = _clamp(sim)
        return scores

    async def _index_file(self, file: EnhancedFile) -> None:
        timeout = self.concurrency.call_timeout_seconds
        embedding = await with_deadline(
            self.content_service.get_embedding(file.content), timeout, f"embed {file.key}"
        )
        await with_deadline(
            self.vector_repository.upsert(file, embedding), timeout, f"index {file.key}"
        )
