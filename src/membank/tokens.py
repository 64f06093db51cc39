"""Token estimation used when the content service cannot be asked."""

from __future__ import annotations

import re

_WORD_RE = re.compile(r"\S+")


class TokenEstimator:
    """Estimate token counts for memory bank text."""

    # Rough heuristic: 1 token ≈ 4 characters
    CHARS_PER_TOKEN = 4.0

    @classmethod
    def estimate(cls, text: str) -> int:
        """Estimate token count for a string."""
        return max(1, int(len(text) / cls.CHARS_PER_TOKEN))

    @classmethod
    def truncate(cls, text: str, max_tokens: int) -> str:
        """Cut text to roughly `max_tokens` estimated tokens on a word boundary."""
        limit = int(max_tokens * cls.CHARS_PER_TOKEN)
        if len(text) <= limit:
            return text
        cut = text[:limit]
        space = cut.rfind(" ")
        if space > limit // 2:
            cut = cut[:space]
        return cut.rstrip()


def truncate_words(text: str, limit: int) -> str:
    """Keep the first `limit` whitespace-separated words, preserving layout."""
    if limit <= 0:
        return ""
    for i, match in enumerate(_WORD_RE.finditer(text)):
        if i == limit:
            return text[: match.start()].rstrip()
    return text
