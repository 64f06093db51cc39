"""In-memory repositories for tests, demos and single-process use."""

from __future__ import annotations

from typing import Any

import numpy as np

from membank.exceptions import NotFoundError
from membank.hierarchy.models import Summary, SummaryLevel
from membank.search.models import EnhancedFile, content_hash
from membank.storage.base import (
    FileRepository,
    SummaryRepository,
    VectorMatch,
    VectorRepository,
)


class InMemoryFileRepository(FileRepository):
    """Project files kept in a dict of dicts."""

    def __init__(self, files: list[EnhancedFile] | None = None) -> None:
        self._projects: dict[str, dict[str, EnhancedFile]] = {}
        for f in files or []:
            self.add(f)

    def add(self, file: EnhancedFile) -> EnhancedFile:
        """Store a file synchronously, filling in its content hash."""
        stored = file.model_copy(deep=True)
        stored.content_hash = content_hash(stored.content)
        self._projects.setdefault(stored.project_name, {})[stored.name] = stored
        return stored

    async def list_projects(self) -> list[str]:
        return sorted(self._projects)

    async def list_files(self, project_name: str) -> list[EnhancedFile]:
        if project_name not in self._projects:
            raise NotFoundError(f"Project '{project_name}' not found")
        files = self._projects[project_name]
        return [files[name].model_copy(deep=True) for name in sorted(files)]

    async def get_file(self, project_name: str, file_name: str) -> EnhancedFile:
        files = self._projects.get(project_name)
        if files is None:
            raise NotFoundError(f"Project '{project_name}' not found")
        if file_name not in files:
            raise NotFoundError(f"File '{file_name}' not found in project '{project_name}'")
        return files[file_name].model_copy(deep=True)

    async def write_file(self, file: EnhancedFile) -> None:
        self.add(file)

    async def delete_file(self, project_name: str, file_name: str) -> None:
        files = self._projects.get(project_name, {})
        if file_name not in files:
            raise NotFoundError(f"File '{file_name}' not found in project '{project_name}'")
        del files[file_name]


class InMemoryVectorRepository(VectorRepository):
    """Brute-force cosine similarity over numpy vectors."""

    def __init__(self) -> None:
        self._vectors: dict[tuple[str, str], np.ndarray] = {}
        self._hashes: dict[tuple[str, str], str] = {}
        self._tags: dict[tuple[str, str], set[str]] = {}

    async def search(
        self,
        query_vector: list[float],
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[VectorMatch]:
        filters = filters or {}
        project = filters.get("project_name")
        tags = set(filters.get("tags") or [])

        query = np.asarray(query_vector, dtype=float)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return []

        matches: list[VectorMatch] = []
        for (proj, name), vec in self._vectors.items():
            if project and proj != project:
                continue
            if tags and not tags & self._tags.get((proj, name), set()):
                continue
            sim = float(np.dot(query, vec) / (query_norm * np.linalg.norm(vec) + 1e-8))
            matches.append(VectorMatch(project_name=proj, file_name=name, similarity=sim))

        matches.sort(key=lambda m: (-m.similarity, m.project_name, m.file_name))
        return matches[:limit] if limit is not None else matches

    async def upsert(self, file: EnhancedFile, embedding: list[float]) -> None:
        key = (file.project_name, file.name)
        self._vectors[key] = np.asarray(embedding, dtype=float)
        self._hashes[key] = file.effective_hash()
        self._tags[key] = set(file.metadata.tags)

    async def delete(self, project_name: str, file_name: str) -> None:
        key = (project_name, file_name)
        self._vectors.pop(key, None)
        self._hashes.pop(key, None)
        self._tags.pop(key, None)

    async def indexed_hash(self, project_name: str, file_name: str) -> str | None:
        return self._hashes.get((project_name, file_name))


class InMemorySummaryRepository(SummaryRepository):
    """Arena of summaries keyed by project, then id.

    Copies go in and out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._summaries: dict[str, dict[str, Summary]] = {}

    async def put(self, summary: Summary) -> None:
        self._summaries.setdefault(summary.project_name, {})[summary.id] = summary.model_copy(deep=True)

    async def get(self, project_name: str, summary_id: str) -> Summary | None:
        summary = self._summaries.get(project_name, {}).get(summary_id)
        return summary.model_copy(deep=True) if summary else None

    async def delete(self, project_name: str, summary_id: str) -> None:
        self._summaries.get(project_name, {}).pop(summary_id, None)

    async def replace_tree(
        self, project_name: str, summaries: list[Summary], delete_ids: list[str]
    ) -> None:
        # Staged on a copy and swapped in, so a failure leaves the old tree
        staged = dict(self._summaries.get(project_name, {}))
        for summary in summaries:
            staged[summary.id] = summary.model_copy(deep=True)
        for summary_id in delete_ids:
            staged.pop(summary_id, None)
        self._summaries[project_name] = staged

    async def list_level(self, project_name: str, level: SummaryLevel) -> list[Summary]:
        summaries = self._summaries.get(project_name, {})
        return [
            summaries[sid].model_copy(deep=True)
            for sid in sorted(summaries)
            if summaries[sid].metadata.level == level
        ]

    async def list_children(self, project_name: str, parent_id: str) -> list[Summary]:
        summaries = self._summaries.get(project_name, {})
        return [
            summaries[sid].model_copy(deep=True)
            for sid in sorted(summaries)
            if summaries[sid].metadata.parent_summary_id == parent_id
        ]

    async def delete_project(self, project_name: str) -> int:
        return len(self._summaries.pop(project_name, {}))
