"""Input validation applied before any I/O."""

from __future__ import annotations

import re

from membank.exceptions import ValidationError

_PROJECT_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def validate_project_name(name: str) -> str:
    """Reject empty names and anything that could escape the project directory."""
    if not name or not isinstance(name, str):
        raise ValidationError("Project name must be a non-empty string")
    if ".." in name or not _PROJECT_NAME_RE.match(name):
        raise ValidationError(f"Invalid project name: '{name}'")
    return name


def validate_file_name(name: str) -> str:
    """File names may contain sub-directories but no traversal or absolute paths."""
    if not name or not isinstance(name, str):
        raise ValidationError("File name must be a non-empty string")
    if name.startswith("/") or "\\" in name or "\x00" in name:
        raise ValidationError(f"Invalid file name: '{name}'")
    if any(part in ("", ".", "..") for part in name.split("/")):
        raise ValidationError(f"Invalid file name: '{name}'")
    return name


def validate_max_tokens(max_tokens: int) -> int:
    if max_tokens <= 0:
        raise ValidationError(f"Token budget must be positive, got {max_tokens}")
    return max_tokens
