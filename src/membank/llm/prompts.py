"""System prompts for LLM-backed summarization and compression."""

from __future__ import annotations

from membank.hierarchy.models import SummaryLevel
from membank.llm.base import CompressionMethod, CompressionOptions, SummarizationOptions, SummaryStyle

_LEVEL_SCOPE = {
    SummaryLevel.NODE: "a single memory bank file",
    SummaryLevel.SECTION: "a group of related file summaries",
    SummaryLevel.PROJECT: "the section summaries of an entire project",
}

_STYLE_RULES = {
    SummaryStyle.BULLET_POINTS: "Write the summary as a flat list of bullet points.",
    SummaryStyle.PARAGRAPH: "Write the summary as one or two plain paragraphs.",
    SummaryStyle.STRUCTURED: "Use short markdown headings with a few bullet points under each.",
}

_METHOD_RULES = {
    CompressionMethod.AGGRESSIVE: "Drop everything except the core facts; fragments are fine.",
    CompressionMethod.BALANCED: "Remove redundancy and filler while keeping full sentences.",
    CompressionMethod.CONSERVATIVE: "Only remove obvious repetition; keep wording where possible.",
}


def get_summarize_prompt(options: SummarizationOptions) -> str:
    """Get the system prompt for a summarization call."""
    scope = _LEVEL_SCOPE[options.level]
    limit = f" Stay under {options.max_tokens} tokens." if options.max_tokens else ""

    prompt = f"""You summarize {scope} for a project knowledge base.

## Rules
- {_STYLE_RULES[options.style]}
- Keep names, decisions, open tasks and numbers exactly as written.
- Do not invent facts that are not in the input.{limit}
- Output only the summary, no preamble.
"""
    if options.preserve_structure:
        prompt += "- Mirror the heading structure of the input.\n"
    if options.focus_areas:
        prompt += f"- Emphasize: {', '.join(options.focus_areas)}\n"
    return prompt


def get_compress_prompt(options: CompressionOptions, target_tokens: int) -> str:
    """Get the system prompt for a compression call."""
    prompt = f"""You shorten text for inclusion in a limited context window.

## Rules
- Rewrite the input in at most {target_tokens} tokens.
- {_METHOD_RULES[options.method]}
- Output only the shortened text.
"""
    if options.preserve_keywords:
        prompt += f"- These terms must survive verbatim: {', '.join(options.preserve_keywords)}\n"
    if options.maintain_coherence:
        prompt += "- The result must read coherently on its own.\n"
    return prompt
