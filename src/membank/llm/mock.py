"""Deterministic offline content service for development and testing.

Counts one token per whitespace-separated word, summarizes and compresses
by sentence extraction, and embeds text as hashed bags of words. Output
sizes always respect the requested caps.
"""

from __future__ import annotations

import hashlib
import re
from collections import Counter

import numpy as np

from membank.exceptions import LLMError
from membank.hierarchy.models import SummaryLevel
from membank.llm.base import (
    CompressionMethod,
    CompressionOptions,
    CompressionResult,
    ContentService,
    SummarizationOptions,
    SummaryStyle,
    resolve_target_tokens,
)
from membank.tokens import truncate_words

EMBEDDING_DIM = 256

_LEVEL_HEADERS = {
    SummaryLevel.PROJECT: "# Project Overview",
    SummaryLevel.SECTION: "## Section Summary",
}


def _split_sentences(text: str) -> list[str]:
    parts = re.split(r"(?<=[.!?])\s+|\n+", text)
    return [p.strip() for p in parts if len(p.strip()) > 1]


def _tokenize(text: str) -> list[str]:
    return re.findall(r"[a-z0-9]{2,}", text.lower())


class MockContentService(ContentService):
    """Extractive stand-in for an LLM content service."""

    def __init__(self, embeddings: bool = True, available: bool = True) -> None:
        self.embeddings = embeddings
        self.available = available
        self.calls: Counter[str] = Counter()

    async def summarize(self, content: str, options: SummarizationOptions) -> str:
        self.calls["summarize"] += 1
        limit = options.max_tokens or max(1, self._count(content) // 3)

        sentences = _split_sentences(content)
        if options.focus_areas:
            focus = [f.lower() for f in options.focus_areas]
            # Stable: focus sentences first, original order otherwise
            sentences.sort(key=lambda s: not any(f in s.lower() for f in focus))

        if options.style == SummaryStyle.BULLET_POINTS:
            body = "\n".join(f"- {s}" for s in sentences)
        elif options.style == SummaryStyle.PARAGRAPH:
            body = " ".join(sentences)
        else:
            body = "\n".join(sentences)

        header = _LEVEL_HEADERS.get(options.level)
        text = f"{header}\n\n{body}" if header else body
        return truncate_words(text, limit)

    async def compress(self, content: str, options: CompressionOptions) -> CompressionResult:
        self.calls["compress"] += 1
        before = self._count(content)
        target = resolve_target_tokens(options, before)
        if options.method == CompressionMethod.AGGRESSIVE:
            target = max(1, int(target * 0.9))

        if before <= target:
            return CompressionResult(
                compressed_text=content, tokens_before=before,
                tokens_after=before, method=options.method,
            )

        sentences = _split_sentences(content)
        if options.preserve_keywords:
            keys = [k.lower() for k in options.preserve_keywords]
            sentences.sort(key=lambda s: not any(k in s.lower() for k in keys))

        picked: list[str] = []
        used = 0
        for sentence in sentences:
            cost = self._count(sentence)
            if used + cost > target:
                continue
            picked.append(sentence)
            used += cost
        text = " ".join(picked) if picked else truncate_words(content, target)
        text = truncate_words(text, target)

        return CompressionResult(
            compressed_text=text,
            tokens_before=before,
            tokens_after=self._count(text),
            method=options.method,
        )

    async def count_tokens(self, content: str) -> int:
        return self._count(content)

    def supports_embedding(self) -> bool:
        return self.embeddings

    async def get_embedding(self, text: str) -> list[float]:
        if not self.embeddings:
            raise LLMError("Embeddings are disabled for this MockContentService")
        self.calls["embed"] += 1
        vec = np.zeros(EMBEDDING_DIM)
        for token in _tokenize(text):
            idx = int(hashlib.sha1(token.encode("utf-8")).hexdigest()[:8], 16) % EMBEDDING_DIM
            vec[idx] += 1.0
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec.tolist()

    async def is_available(self) -> bool:
        return self.available

    @staticmethod
    def _count(content: str) -> int:
        return len(content.split())
