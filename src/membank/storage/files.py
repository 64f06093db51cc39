"""Directory-backed project file storage.

Layout: ``<root>/<project>/<file>``. Each sub-directory of the workspace root
is a project; every text file under it (recursively) is a memory bank file
named by its POSIX path relative to the project directory. Directory names
along that path become the file's tags.
"""

from __future__ import annotations

import fnmatch
import os
from datetime import datetime, timezone
from pathlib import Path

from membank.exceptions import NotFoundError
from membank.search.models import EnhancedFile, FileMetadata, content_hash
from membank.storage.base import FileRepository
from membank.validation import validate_file_name, validate_project_name

TEXT_EXTENSIONS = {".md", ".markdown", ".txt", ".rst", ".json", ".yaml", ".yml"}

DEFAULT_EXCLUDE = [
    ".membank",
    ".git",
    "__pycache__",
    "node_modules",
    ".venv",
    "venv",
    "*.lock",
]


def _should_exclude(path: str, patterns: list[str]) -> bool:
    """Check if a path matches any exclusion pattern."""
    for pattern in patterns:
        if fnmatch.fnmatch(path, pattern):
            return True
        for part in Path(path).parts:
            if fnmatch.fnmatch(part, pattern):
                return True
    return False


class DirectoryFileRepository(FileRepository):
    """FileRepository over a directory tree (see module docstring)."""

    def __init__(
        self,
        root: str | Path,
        exclude: list[str] | None = None,
        max_file_size_kb: int = 500,
    ) -> None:
        self.root = Path(root).resolve()
        self.exclude = exclude if exclude is not None else list(DEFAULT_EXCLUDE)
        self.max_file_size_kb = max_file_size_kb

    def _project_dir(self, project_name: str) -> Path:
        validate_project_name(project_name)
        path = self.root / project_name
        if not path.is_dir() or _should_exclude(project_name, self.exclude):
            raise NotFoundError(f"Project '{project_name}' not found in {self.root}")
        return path

    def _load(self, project_name: str, project_dir: Path, rel_path: str) -> EnhancedFile:
        full_path = project_dir / rel_path
        raw = full_path.read_bytes()
        text = raw.decode("utf-8", errors="replace")
        stat = full_path.stat()
        mtime = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        ctime = datetime.fromtimestamp(stat.st_ctime, tz=timezone.utc)
        return EnhancedFile(
            name=rel_path,
            project_name=project_name,
            content=text,
            metadata=FileMetadata(
                tags=list(Path(rel_path).parent.parts),
                created=min(ctime, mtime),
                updated=mtime,
            ),
            content_hash=content_hash(text),
        )

    async def list_projects(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(
            p.name
            for p in self.root.iterdir()
            if p.is_dir() and not _should_exclude(p.name, self.exclude)
        )

    async def list_files(self, project_name: str) -> list[EnhancedFile]:
        project_dir = self._project_dir(project_name)
        max_size = self.max_file_size_kb * 1024
        files: list[EnhancedFile] = []

        for dirpath, dirnames, filenames in os.walk(project_dir):
            rel_dir = os.path.relpath(dirpath, project_dir)
            dirnames[:] = [
                d for d in dirnames
                if not _should_exclude(d if rel_dir == "." else os.path.join(rel_dir, d), self.exclude)
            ]
            for filename in filenames:
                rel_path = filename if rel_dir == "." else os.path.join(rel_dir, filename)
                rel_path = Path(rel_path).as_posix()
                if _should_exclude(rel_path, self.exclude):
                    continue
                if Path(filename).suffix.lower() not in TEXT_EXTENSIONS:
                    continue
                try:
                    if (Path(dirpath) / filename).stat().st_size > max_size:
                        continue
                    files.append(self._load(project_name, project_dir, rel_path))
                except OSError:
                    continue

        return sorted(files, key=lambda f: f.name)

    async def get_file(self, project_name: str, file_name: str) -> EnhancedFile:
        project_dir = self._project_dir(project_name)
        validate_file_name(file_name)
        if not (project_dir / file_name).is_file():
            raise NotFoundError(f"File '{file_name}' not found in project '{project_name}'")
        return self._load(project_name, project_dir, file_name)

    async def write_file(self, file: EnhancedFile) -> None:
        validate_project_name(file.project_name)
        validate_file_name(file.name)
        full_path = self.root / file.project_name / file.name
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_text(file.content, encoding="utf-8")

    async def delete_file(self, project_name: str, file_name: str) -> None:
        project_dir = self._project_dir(project_name)
        validate_file_name(file_name)
        full_path = project_dir / file_name
        if not full_path.is_file():
            raise NotFoundError(f"File '{file_name}' not found in project '{project_name}'")
        full_path.unlink()
