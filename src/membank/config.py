"""Configuration management for membank."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

MEMBANK_DIR = ".membank"
CONFIG_FILE = "config.json"
SUMMARY_DB_FILE = "summaries.db"


class LLMConfig(BaseModel):
    """LLM provider configuration."""

    provider: str = "anthropic"
    model: str = "claude-sonnet-4-5-20250929"
    api_key_env: str = ""
    max_tokens: int = 4096
    temperature: float = 0.0
    base_url: str | None = None
    embedding_model: str = "text-embedding-3-small"

    @property
    def api_key(self) -> str | None:
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        # Try common env vars
        env_map = {
            "openai": "OPENAI_API_KEY",
            "anthropic": "ANTHROPIC_API_KEY",
        }
        env_var = env_map.get(self.provider, "")
        return os.environ.get(env_var)


class RankingConfig(BaseModel):
    """Default weights and windows for multi-factor ranking."""

    semantic_weight: float = 0.4
    recency_weight: float = 0.15
    frequency_weight: float = 0.15
    salience_weight: float = 0.15
    time_decay_weight: float = 0.15
    time_decay_days: float = 30.0  # half-life
    recency_window_days: float = 90.0
    neutral_semantic: float = 0.5  # used when no embedding is available
    default_salience: float = 0.5
    default_limit: int = 20


class HierarchyConfig(BaseModel):
    """Summary hierarchy compilation settings."""

    max_tokens_per_summary: int = 1000
    compression_ratio: float = 0.3
    ratio_tolerance: float = 0.05
    cluster_by: Literal["tag", "directory"] = "tag"
    churn_threshold: float = 0.2
    summary_type: str = "abstractive"
    style: str = "structured"


class ContextConfig(BaseModel):
    """Context compilation settings."""

    min_chunk_tokens: int = 32
    min_compression_fraction: float = 0.2
    compression_method: str = "balanced"
    file_limit: int = 20


class ConcurrencyConfig(BaseModel):
    """Upstream call limits."""

    max_concurrency: int = 4
    call_timeout_seconds: float = 30.0


class ProjectConfig(BaseModel):
    """Full workspace configuration."""

    name: str = ""
    root_path: str = "."
    llm: LLMConfig = Field(default_factory=LLMConfig)
    ranking: RankingConfig = Field(default_factory=RankingConfig)
    hierarchy: HierarchyConfig = Field(default_factory=HierarchyConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .membank directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / MEMBANK_DIR).is_dir():
            return current
        current = current.parent
    if (current / MEMBANK_DIR).is_dir():
        return current
    return None


def get_membank_dir(root: Path) -> Path:
    """Get the .membank directory for a workspace root."""
    return root / MEMBANK_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .membank/config.json."""
    config_path = get_membank_dir(root) / CONFIG_FILE
    if config_path.exists():
        data = json.loads(config_path.read_text())
        return ProjectConfig(**data)
    return ProjectConfig(name=root.name, root_path=str(root))


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .membank/config.json."""
    mb_dir = get_membank_dir(root)
    mb_dir.mkdir(parents=True, exist_ok=True)
    config_path = mb_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(), indent=2))


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'ranking.semantic_weight')."""
    parts = key.split(".")
    data = config.model_dump()
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    return ProjectConfig(**data)
