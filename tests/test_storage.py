"""Tests for file, vector and summary repositories."""

from __future__ import annotations

from pathlib import Path

import pytest

from membank.exceptions import NotFoundError, ValidationError
from membank.hierarchy.models import Summary, SummaryLevel, SummaryMetadata, SummaryState, SummaryType
from membank.search.models import EnhancedFile, content_hash
from membank.storage import (
    DirectoryFileRepository,
    InMemoryFileRepository,
    InMemorySummaryRepository,
    InMemoryVectorRepository,
    SQLiteSummaryRepository,
)


def _summary(sid: str, level: SummaryLevel, tokens: int = 10, parent: str | None = None) -> Summary:
    return Summary(
        id=sid,
        project_name="alpha",
        content=f"content of {sid}",
        metadata=SummaryMetadata(
            level=level,
            type=SummaryType.EXTRACTIVE,
            tokens=tokens,
            source_tokens=tokens * 2,
            compression_ratio=0.5,
            parent_summary_id=parent,
            source_files=["notes.md"],
            tags=["decisions"],
        ),
    )


@pytest.fixture(params=["memory", "sqlite"])
def summaries(request, tmp_path: Path):
    if request.param == "memory":
        yield InMemorySummaryRepository()
    else:
        repo = SQLiteSummaryRepository(tmp_path / ".membank" / "summaries.db")
        yield repo
        repo.close()


class TestSummaryRepository:
    @pytest.mark.asyncio
    async def test_put_and_get(self, summaries):
        summary = _summary("alpha:node:notes.md", SummaryLevel.NODE)
        summary.embedding = [0.1, 0.2]
        await summaries.put(summary)

        loaded = await summaries.get("alpha", summary.id)
        assert loaded == summary
        assert await summaries.get("alpha", "missing") is None
        assert await summaries.get("beta", summary.id) is None

    @pytest.mark.asyncio
    async def test_list_level_sorted(self, summaries):
        await summaries.put_many([
            _summary("n2", SummaryLevel.NODE),
            _summary("n1", SummaryLevel.NODE),
            _summary("s1", SummaryLevel.SECTION),
        ])
        nodes = await summaries.list_level("alpha", SummaryLevel.NODE)
        assert [n.id for n in nodes] == ["n1", "n2"]

    @pytest.mark.asyncio
    async def test_list_children(self, summaries):
        await summaries.put_many([
            _summary("s1", SummaryLevel.SECTION),
            _summary("n1", SummaryLevel.NODE, parent="s1"),
            _summary("n2", SummaryLevel.NODE, parent="s1"),
            _summary("n3", SummaryLevel.NODE, parent="s2"),
        ])
        children = await summaries.list_children("alpha", "s1")
        assert [c.id for c in children] == ["n1", "n2"]

    @pytest.mark.asyncio
    async def test_put_replaces(self, summaries):
        summary = _summary("n1", SummaryLevel.NODE)
        await summaries.put(summary)
        summary.metadata.state = SummaryState.STALE
        await summaries.put(summary)
        loaded = await summaries.get("alpha", "n1")
        assert loaded.metadata.state == SummaryState.STALE

    @pytest.mark.asyncio
    async def test_delete(self, summaries):
        await summaries.put(_summary("n1", SummaryLevel.NODE))
        await summaries.delete("alpha", "n1")
        assert await summaries.get("alpha", "n1") is None

    @pytest.mark.asyncio
    async def test_delete_project(self, summaries):
        await summaries.put_many([_summary("n1", SummaryLevel.NODE), _summary("n2", SummaryLevel.NODE)])
        assert await summaries.delete_project("alpha") == 2
        assert await summaries.list_level("alpha", SummaryLevel.NODE) == []

    @pytest.mark.asyncio
    async def test_get_hierarchy(self, summaries):
        assert await summaries.get_hierarchy("alpha") is None
        await summaries.put_many([
            _summary("root", SummaryLevel.PROJECT, tokens=5),
            _summary("s1", SummaryLevel.SECTION, parent="root"),
            _summary("n1", SummaryLevel.NODE, parent="s1"),
        ])
        h = await summaries.get_hierarchy("alpha")
        assert h.root_summary.id == "root"
        assert [s.id for s in h.sections] == ["s1"]
        assert h.total_tokens == 25
        assert h.compression_ratio == 0.25
        assert not h.stale

    @pytest.mark.asyncio
    async def test_replace_tree_writes_and_deletes(self, summaries):
        await summaries.put_many([_summary("n1", SummaryLevel.NODE), _summary("n2", SummaryLevel.NODE)])

        await summaries.replace_tree("alpha", [_summary("n3", SummaryLevel.NODE)], ["n1", "ghost"])

        ids = [s.id for s in await summaries.list_level("alpha", SummaryLevel.NODE)]
        assert ids == ["n2", "n3"]

    @pytest.mark.asyncio
    async def test_project_stats(self, summaries):
        stats = await summaries.project_stats("alpha")
        assert stats["total_summaries"] == 0
        assert stats["last_updated"] is None

        await summaries.put_many([_summary("n1", SummaryLevel.NODE), _summary("n2", SummaryLevel.NODE)])
        stats = await summaries.project_stats("alpha")
        assert stats["total_summaries"] == 2
        assert stats["total_tokens"] == 20
        assert stats["average_compression_ratio"] == 0.5


class TestSQLitePersistence:
    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path: Path):
        path = tmp_path / "summaries.db"
        repo = SQLiteSummaryRepository(path)
        await repo.put(_summary("n1", SummaryLevel.NODE))
        repo.close()

        reopened = SQLiteSummaryRepository(path)
        assert (await reopened.get("alpha", "n1")).content == "content of n1"
        reopened.close()


class TestInMemoryFileRepository:
    @pytest.mark.asyncio
    async def test_files_sorted_with_hashes(self, file_repo):
        files = await file_repo.list_files("alpha")
        assert [f.name for f in files] == [
            "decisions/api.md", "decisions/storage.md", "notes/meeting.md", "readme.md",
        ]
        assert all(f.content_hash == content_hash(f.content) for f in files)

    @pytest.mark.asyncio
    async def test_returns_copies(self, file_repo):
        file = await file_repo.get_file("alpha", "readme.md")
        file.content = "mutated"
        assert (await file_repo.get_file("alpha", "readme.md")).content != "mutated"

    @pytest.mark.asyncio
    async def test_not_found(self, file_repo):
        with pytest.raises(NotFoundError):
            await file_repo.list_files("nope")
        with pytest.raises(NotFoundError):
            await file_repo.get_file("alpha", "missing.md")
        with pytest.raises(NotFoundError):
            await file_repo.delete_file("alpha", "missing.md")


class TestInMemoryVectorRepository:
    @pytest.mark.asyncio
    async def test_search_ranks_and_filters(self, make_file):
        repo = InMemoryVectorRepository()
        await repo.upsert(make_file("a.md", "a", tags=["x"]), [1.0, 0.0])
        await repo.upsert(make_file("b.md", "b"), [0.6, 0.8])
        await repo.upsert(make_file("c.md", "c", project="beta"), [1.0, 0.0])

        matches = await repo.search([1.0, 0.0], filters={"project_name": "alpha"})
        assert [m.file_name for m in matches] == ["a.md", "b.md"]
        assert matches[0].similarity == pytest.approx(1.0, abs=1e-6)

        tagged = await repo.search([1.0, 0.0], filters={"tags": ["x"]})
        assert [m.file_name for m in tagged] == ["a.md"]

        assert len(await repo.search([1.0, 0.0], limit=1)) == 1

    @pytest.mark.asyncio
    async def test_indexed_hash_and_delete(self, make_file):
        repo = InMemoryVectorRepository()
        file = make_file("a.md", "content")
        await repo.upsert(file, [1.0])
        assert await repo.indexed_hash("alpha", "a.md") == file.effective_hash()

        await repo.delete("alpha", "a.md")
        assert await repo.indexed_hash("alpha", "a.md") is None
        assert await repo.search([1.0]) == []


class TestDirectoryFileRepository:
    @pytest.mark.asyncio
    async def test_lists_projects(self, tmp_workspace: Path):
        (tmp_workspace / ".membank").mkdir()
        repo = DirectoryFileRepository(tmp_workspace)
        assert await repo.list_projects() == ["alpha"]

    @pytest.mark.asyncio
    async def test_lists_text_files_with_directory_tags(self, tmp_workspace: Path):
        repo = DirectoryFileRepository(tmp_workspace)
        files = await repo.list_files("alpha")

        assert [f.name for f in files] == [
            "decisions/api.md", "decisions/storage.md", "notes/meeting.md", "readme.md",
        ]
        by_name = {f.name: f for f in files}
        assert by_name["decisions/storage.md"].metadata.tags == ["decisions"]
        assert by_name["readme.md"].metadata.tags == []
        assert by_name["readme.md"].content_hash == content_hash(by_name["readme.md"].content)

    @pytest.mark.asyncio
    async def test_excludes_patterns(self, tmp_workspace: Path):
        (tmp_workspace / "alpha" / "node_modules").mkdir()
        (tmp_workspace / "alpha" / "node_modules" / "pkg.md").write_text("vendored")
        repo = DirectoryFileRepository(tmp_workspace)
        names = [f.name for f in await repo.list_files("alpha")]
        assert "node_modules/pkg.md" not in names

    @pytest.mark.asyncio
    async def test_skips_large_files(self, tmp_workspace: Path):
        (tmp_workspace / "alpha" / "big.md").write_text("x" * 4096)
        repo = DirectoryFileRepository(tmp_workspace, max_file_size_kb=1)
        names = [f.name for f in await repo.list_files("alpha")]
        assert "big.md" not in names

    @pytest.mark.asyncio
    async def test_write_get_delete(self, tmp_workspace: Path):
        repo = DirectoryFileRepository(tmp_workspace)
        await repo.write_file(
            EnhancedFile(name="notes/new.md", project_name="alpha", content="Fresh note.")
        )
        assert (tmp_workspace / "alpha" / "notes" / "new.md").read_text() == "Fresh note."

        loaded = await repo.get_file("alpha", "notes/new.md")
        assert loaded.content == "Fresh note."
        assert loaded.metadata.tags == ["notes"]

        await repo.delete_file("alpha", "notes/new.md")
        with pytest.raises(NotFoundError):
            await repo.get_file("alpha", "notes/new.md")

    @pytest.mark.asyncio
    async def test_unknown_project_and_traversal(self, tmp_workspace: Path):
        repo = DirectoryFileRepository(tmp_workspace)
        with pytest.raises(NotFoundError):
            await repo.list_files("beta")
        with pytest.raises(ValidationError):
            await repo.get_file("alpha", "../outside.md")
        with pytest.raises(ValidationError):
            await repo.write_file(
                EnhancedFile(name="/etc/passwd", project_name="alpha", content="x")
            )
