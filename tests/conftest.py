"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from membank.config import HierarchyConfig
from membank.context.engine import ContextCompiler
from membank.hierarchy.compiler import HierarchyCompiler
from membank.llm.base import CompressionOptions, CompressionResult, SummarizationOptions
from membank.llm.mock import MockContentService
from membank.search.models import EnhancedFile, FileMetadata
from membank.search.ranker import Ranker
from membank.storage.memory import (
    InMemoryFileRepository,
    InMemorySummaryRepository,
    InMemoryVectorRepository,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


class FlakyContentService(MockContentService):
    """MockContentService that fails on demand.

    - ``fail_marker``: summarize raises when the content contains it
    - ``fail_compress``: every compress call raises
    - ``delay``: seconds every summarize call sleeps first
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.fail_marker: str | None = None
        self.fail_compress = False
        self.delay = 0.0

    async def summarize(self, content: str, options: SummarizationOptions) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_marker and self.fail_marker in content:
            raise RuntimeError("summarizer crashed")
        return await super().summarize(content, options)

    async def compress(self, content: str, options: CompressionOptions) -> CompressionResult:
        if self.fail_compress:
            raise RuntimeError("compressor crashed")
        return await super().compress(content, options)


def _make_text(n_words: int, topic: str = "note") -> str:
    # Ten words per sentence, one token per word under the mock service
    assert n_words % 10 == 0
    return " ".join(
        f"The {topic} entry {i} records detail {i} about {topic} work."
        for i in range(n_words // 10)
    )


def _make_file(
    name: str,
    content: str,
    project: str = "alpha",
    tags: list[str] | None = None,
    days_old: float = 0.0,
    **metadata,
) -> EnhancedFile:
    updated = NOW - timedelta(days=days_old)
    return EnhancedFile(
        name=name,
        project_name=project,
        content=content,
        metadata=FileMetadata(tags=tags or [], created=updated, updated=updated, **metadata),
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_text():
    """Text of exactly n words, in ten-word sentences about `topic`."""
    return _make_text


@pytest.fixture
def make_file():
    """Build an EnhancedFile updated `days_old` days before NOW."""
    return _make_file


@pytest.fixture
def sample_files() -> list[EnhancedFile]:
    """A small project with two tagged sections and one untagged file."""
    return [
        _make_file(
            "decisions/storage.md", _make_text(60, "sqlite"),
            tags=["decisions"], days_old=2, salience=0.9, frequency=10,
        ),
        _make_file(
            "decisions/api.md", _make_text(40, "endpoints"),
            tags=["decisions"], days_old=10, frequency=4,
        ),
        _make_file(
            "notes/meeting.md", _make_text(80, "meeting"),
            tags=["notes"], days_old=30, frequency=1,
        ),
        _make_file("readme.md", _make_text(30, "overview"), days_old=60),
    ]


@pytest.fixture
def scenario_files() -> list[EnhancedFile]:
    """Three untagged files of 500, 300 and 200 tokens."""
    return [
        _make_file("a.md", _make_text(500, "alpha"), project="scenario"),
        _make_file("b.md", _make_text(300, "bravo"), project="scenario"),
        _make_file("c.md", _make_text(200, "charlie"), project="scenario"),
    ]


@pytest.fixture
def file_repo(sample_files, scenario_files) -> InMemoryFileRepository:
    return InMemoryFileRepository(sample_files + scenario_files)


@pytest.fixture
def service() -> MockContentService:
    return MockContentService()


@pytest.fixture
def flaky_service() -> FlakyContentService:
    return FlakyContentService()


@pytest.fixture
def summary_repo() -> InMemorySummaryRepository:
    return InMemorySummaryRepository()


@pytest.fixture
def vector_repo() -> InMemoryVectorRepository:
    return InMemoryVectorRepository()


@pytest.fixture
def hierarchy_config() -> HierarchyConfig:
    return HierarchyConfig(max_tokens_per_summary=100)


@pytest.fixture
def compiler(file_repo, summary_repo, service, hierarchy_config) -> HierarchyCompiler:
    return HierarchyCompiler(file_repo, summary_repo, service, config=hierarchy_config)


@pytest.fixture
def ranker(file_repo, vector_repo, service) -> Ranker:
    return Ranker(file_repo, vector_repo, service)


@pytest.fixture
def context_compiler(ranker, compiler, service) -> ContextCompiler:
    return ContextCompiler(ranker, compiler, service)


@pytest.fixture
def tmp_workspace(tmp_path):
    """A workspace directory with one project of markdown files."""
    project = tmp_path / "alpha"
    (project / "decisions").mkdir(parents=True)
    (project / "notes").mkdir()
    (project / "decisions" / "storage.md").write_text(_make_text(60, "sqlite"))
    (project / "decisions" / "api.md").write_text(_make_text(40, "endpoints"))
    (project / "notes" / "meeting.md").write_text(_make_text(80, "meeting"))
    (project / "readme.md").write_text(_make_text(30, "overview"))
    (project / "diagram.png").write_bytes(b"\x89PNG\r\n")
    return tmp_path
