"""Keyword-overlap excerpt extraction.

Scores paragraphs of a source against a query and returns the best matches.
Pure functions, no I/O.
"""

from __future__ import annotations

import re

STOPWORDS = frozenset(
    {
        "the", "and", "for", "that", "are", "was", "with", "from", "this", "has",
        "have", "had", "its", "not", "but", "can", "all", "one", "more", "also",
        "about", "into", "such", "than", "then", "when", "which", "will", "been",
    }
)

MIN_TOKEN_LENGTH = 3
MIN_PARAGRAPH_LENGTH = 40

_TOKEN_SPLIT = re.compile(r"\W+")
_PARAGRAPH_SPLIT = re.compile(r"\n\n+")
_WHITESPACE = re.compile(r"\s+")


def tokenize_query(query: str) -> list[str]:
    """Lowercase the query and keep tokens of 3+ chars that are not stopwords."""
    return [
        token
        for token in _TOKEN_SPLIT.split(query.lower())
        if len(token) >= MIN_TOKEN_LENGTH and token not in STOPWORDS
    ]


def _score_paragraph(paragraph: str, tokens: list[str]) -> float:
    lower = paragraph.lower()
    hits = sum(1 for token in tokens if token in lower)
    return hits / len(tokens)


def extract_relevant_excerpts(content: str, query: str, max_excerpts: int = 5) -> list[str]:
    """Return the paragraphs of ``content`` most relevant to ``query``.

    Paragraphs are blank-line separated blocks with whitespace collapsed;
    blocks of 40 characters or fewer are ignored. Each paragraph is scored as
    the fraction of query tokens it contains. Ties keep document order.

    Args:
        content: Source text
        query: Free-text query (usually a claim)
        max_excerpts: Maximum number of paragraphs returned

    Returns:
        Up to ``max_excerpts`` paragraphs with a positive score, best first.
        Empty when the query has no usable tokens.
    """
    if not query or not query.strip():
        return []

    tokens = tokenize_query(query)
    if not tokens:
        return []

    paragraphs = [_WHITESPACE.sub(" ", block).strip() for block in _PARAGRAPH_SPLIT.split(content)]
    scored = [
        (paragraph, _score_paragraph(paragraph, tokens))
        for paragraph in paragraphs
        if len(paragraph) > MIN_PARAGRAPH_LENGTH
    ]
    ranked = sorted((item for item in scored if item[1] > 0), key=lambda item: item[1], reverse=True)
    return [paragraph for paragraph, _ in ranked[:max_excerpts]]
