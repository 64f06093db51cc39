"""Repositories for project files, file vectors and summaries."""

from membank.storage.base import (
    FileRepository,
    SummaryRepository,
    VectorMatch,
    VectorRepository,
)
from membank.storage.files import DirectoryFileRepository
from membank.storage.memory import (
    InMemoryFileRepository,
    InMemorySummaryRepository,
    InMemoryVectorRepository,
)
from membank.storage.sqlite import SQLiteSummaryRepository

__all__ = [
    "DirectoryFileRepository",
    "FileRepository",
    "InMemoryFileRepository",
    "InMemorySummaryRepository",
    "InMemoryVectorRepository",
    "SQLiteSummaryRepository",
    "SummaryRepository",
    "VectorMatch",
    "VectorRepository",
]
