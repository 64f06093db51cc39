"""Repository interfaces consumed by the ranker and the hierarchy compiler."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from membank.hierarchy.models import (
    Summary,
    SummaryHierarchy,
    SummaryLevel,
    SummaryState,
)
from membank.search.models import EnhancedFile


class FileRepository(ABC):
    """Raw project file storage."""

    @abstractmethod
    async def list_projects(self) -> list[str]:
        ...

    @abstractmethod
    async def list_files(self, project_name: str) -> list[EnhancedFile]:
        """All files of a project. Raises NotFoundError for unknown projects."""
        ...

    @abstractmethod
    async def get_file(self, project_name: str, file_name: str) -> EnhancedFile:
        """Raises NotFoundError when the project or file does not exist."""
        ...

    @abstractmethod
    async def write_file(self, file: EnhancedFile) -> None:
        ...

    @abstractmethod
    async def delete_file(self, project_name: str, file_name: str) -> None:
        ...


class VectorMatch(BaseModel):
    project_name: str
    file_name: str
    similarity: float


class VectorRepository(ABC):
    """Similarity search over file embeddings."""

    @abstractmethod
    async def search(
        self,
        query_vector: list[float],
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[VectorMatch]:
        """Matches ranked by cosine similarity, highest first.

        Supported filters: ``project_name`` (str) and ``tags`` (any-of).
        """
        ...

    @abstractmethod
    async def upsert(self, file: EnhancedFile, embedding: list[float]) -> None:
        ...

    @abstractmethod
    async def delete(self, project_name: str, file_name: str) -> None:
        ...

    @abstractmethod
    async def indexed_hash(self, project_name: str, file_name: str) -> str | None:
        """Content hash the stored vector was computed from, if any."""
        ...


class SummaryRepository(ABC):
    """Id-indexed store of summaries, the sole owner of every summary.

    Parent/child links inside summaries are plain ids. The per-project
    hierarchy is derived from the stored summaries rather than kept as a
    separate record, so it can never disagree with them.
    """

    @abstractmethod
    async def put(self, summary: Summary) -> None:
        ...

    @abstractmethod
    async def get(self, project_name: str, summary_id: str) -> Summary | None:
        ...

    @abstractmethod
    async def delete(self, project_name: str, summary_id: str) -> None:
        ...

    @abstractmethod
    async def list_level(self, project_name: str, level: SummaryLevel) -> list[Summary]:
        """Summaries of one level, sorted by id."""
        ...

    @abstractmethod
    async def list_children(self, project_name: str, parent_id: str) -> list[Summary]:
        ...

    @abstractmethod
    async def delete_project(self, project_name: str) -> int:
        """Delete every summary of a project, returning how many were removed."""
        ...

    @abstractmethod
    async def replace_tree(
        self, project_name: str, summaries: list[Summary], delete_ids: list[str]
    ) -> None:
        """Write `summaries` and delete `delete_ids` as a single step.

        Either every write and delete lands or none does, so a failure can
        never leave a child whose parent no longer lists it.
        """
        ...

    async def put_many(self, summaries: list[Summary]) -> None:
        for summary in summaries:
            await self.put(summary)

    async def get_hierarchy(self, project_name: str) -> SummaryHierarchy | None:
        """Assemble the project's hierarchy, or None if it has no root."""
        roots = await self.list_level(project_name, SummaryLevel.PROJECT)
        if not roots:
            return None
        root = roots[0]
        sections = await self.list_level(project_name, SummaryLevel.SECTION)
        nodes = await self.list_level(project_name, SummaryLevel.NODE)

        everything = [root, *sections, *nodes]
        source_tokens = sum(n.metadata.source_tokens for n in nodes)
        return SummaryHierarchy(
            project_name=project_name,
            root_summary=root,
            sections=sections,
            nodes=nodes,
            total_tokens=sum(s.tokens for s in everything),
            compression_ratio=round(root.tokens / source_tokens, 4) if source_tokens else 1.0,
            last_updated=max(s.metadata.updated for s in everything),
            stale=any(s.metadata.state != SummaryState.COMPILED for s in everything),
        )

    async def project_stats(self, project_name: str) -> dict:
        """Summary statistics for a project."""
        summaries: list[Summary] = []
        for level in SummaryLevel:
            summaries.extend(await self.list_level(project_name, level))
        if not summaries:
            return {
                "total_summaries": 0,
                "total_tokens": 0,
                "average_compression_ratio": 0.0,
                "last_updated": None,
            }
        return {
            "total_summaries": len(summaries),
            "total_tokens": sum(s.tokens for s in summaries),
            "average_compression_ratio": round(
                sum(s.metadata.compression_ratio for s in summaries) / len(summaries), 4
            ),
            "last_updated": max(s.metadata.updated for s in summaries),
        }
