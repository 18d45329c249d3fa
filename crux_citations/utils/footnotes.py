"""Footnote citation extraction from markdown/MDX documents.

Recognized definitions:

    [^3]: [Title](https://example.com/a) optional description
    [^4]: https://example.com/b
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_TITLED_DEFINITION = re.compile(r"^\[\^(\d+)\]:\s*\[([^\]]*)\]\((https?://[^)]+)\)(?:\s+(.+))?")
_BARE_DEFINITION = re.compile(r"^\[\^(\d+)\]:\s*(https?://[^\s]+)")
_ANY_MARKER = re.compile(r"\[\^\d+\]")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_WHITESPACE = re.compile(r"\s+")
_FRONTMATTER = re.compile(r"\A---[ \t]*\r?\n.*?\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)

MAX_CLAIM_CONTEXT_CHARS = 300
NO_REFERENCE_CONTEXT = "(footnote definition only, no inline reference found)"
_PARAGRAPH_BREAKS = ("#", "|", "---", "```")


@dataclass
class ExtractedCitation:
    """A footnote definition with the text around its first inline reference."""

    footnote: int
    url: str
    link_text: str
    claim_context: str
    ref_line: int = 0


def strip_frontmatter(content: str) -> str:
    """Remove a leading YAML frontmatter block, if any."""
    return _FRONTMATTER.sub("", content, count=1)


def _reference_pattern(footnote: int) -> re.Pattern[str]:
    return re.compile(rf"\[\^{footnote}\](?!:)")


def _is_definition_line(line: str, footnote: int) -> bool:
    return line.strip().startswith(f"[^{footnote}]:")


def extract_citations(body: str) -> list[ExtractedCitation]:
    """Extract footnote citations from a document body.

    For each definition, the first inline ``[^N]`` reference supplies the
    claim context: the reference line plus its neighbours, whitespace
    collapsed and capped at 300 characters.

    Returns:
        Citations sorted by footnote number
    """
    lines = body.split("\n")
    definitions: dict[int, tuple[str, str]] = {}

    for line in lines:
        titled = _TITLED_DEFINITION.match(line)
        if titled:
            description = (titled.group(4) or "").strip()
            link_text = titled.group(2) + (f" - {description}" if description else "")
            definitions[int(titled.group(1))] = (titled.group(3), link_text)
            continue
        bare = _BARE_DEFINITION.match(line)
        if bare:
            definitions[int(bare.group(1))] = (bare.group(2), "")

    citations: list[ExtractedCitation] = []
    for footnote, (url, link_text) in definitions.items():
        pattern = _reference_pattern(footnote)
        claim_context = ""
        ref_line = 0

        for i, line in enumerate(lines):
            if _is_definition_line(line, footnote) or not pattern.search(line):
                continue
            ref_line = i + 1
            window = [lines[j].strip() for j in range(max(i - 1, 0), min(i + 2, len(lines)))]
            joined = " ".join(part for part in window if part)
            claim_context = _WHITESPACE.sub(" ", joined)[:MAX_CLAIM_CONTEXT_CHARS]
            break

        citations.append(
            ExtractedCitation(
                footnote=footnote,
                url=url,
                link_text=link_text,
                claim_context=claim_context or NO_REFERENCE_CONTEXT,
                ref_line=ref_line,
            )
        )

    citations.sort(key=lambda c: c.footnote)
    return citations


def _breaks_paragraph(line: str) -> bool:
    return line == "" or line.startswith(_PARAGRAPH_BREAKS)


def _clean_claim(text: str) -> str:
    return _WHITESPACE.sub(" ", _ANY_MARKER.sub("", text)).strip()


def extract_claim_sentence(body: str, footnote: int) -> str | None:
    """Return the sentence(s) carrying the ``[^footnote]`` marker.

    More precise than the claim context: the paragraph around the first
    reference is split into sentences and only those containing the marker
    are kept, with footnote markers removed. Falls back to the whole
    reference line when sentence splitting loses the marker.

    Returns:
        Claim text, or None if the footnote is never referenced
    """
    lines = body.split("\n")
    pattern = _reference_pattern(footnote)
    marker = re.compile(rf"\[\^{footnote}\]")

    for i, line in enumerate(lines):
        if _is_definition_line(line, footnote) or not pattern.search(line):
            continue

        paragraph: list[str] = []
        for j in range(i, -1, -1):
            current = lines[j].strip()
            if _breaks_paragraph(current):
                break
            paragraph.insert(0, current)
        for j in range(i + 1, len(lines)):
            current = lines[j].strip()
            if _breaks_paragraph(current):
                break
            paragraph.append(current)

        text = _WHITESPACE.sub(" ", " ".join(paragraph))
        sentences = [s for s in _SENTENCE_SPLIT.split(text) if marker.search(s)]
        if sentences:
            return _clean_claim(" ".join(sentences)) or None
        return _clean_claim(line) or None

    return None
