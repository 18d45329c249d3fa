"""Helpers for JSON returned by LLMs."""

from __future__ import annotations

import re

_LEADING_FENCE = re.compile(r"^```(?:json)?[ \t]*\n?", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\n?```\s*$")


def strip_code_fences(content: str) -> str:
    """Extract JSON from a markdown code block.

    Some models wrap JSON responses in ```json...``` or ```...``` blocks.
    Text without a leading fence is returned stripped but otherwise unchanged.

    Args:
        content: Raw LLM response text

    Returns:
        Cleaned JSON string
    """
    content = content.strip()
    if not content.startswith("```"):
        return content
    content = _LEADING_FENCE.sub("", content, count=1)
    content = _TRAILING_FENCE.sub("", content, count=1)
    return content.strip()
