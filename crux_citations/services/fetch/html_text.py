"""HTML to plain text conversion for the built-in fetch strategy."""

from __future__ import annotations

import re

from bs4 import BeautifulSoup

NOISE_TAGS = ["script", "style", "noscript", "nav", "header", "footer", "svg"]
PARAGRAPH_TAGS = ["p", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "pre", "tr"]
LINE_TAGS = ["li", "dt", "dd"]

_INLINE_SPACE = re.compile(r"[ \t\r\f\v]+")
_SPACE_AROUND_NEWLINE = re.compile(r" *\n *")
_EXTRA_NEWLINES = re.compile(r"\n{3,}")


def extract_title(html: str) -> str:
    """Return the document <title>, whitespace-collapsed, or '' if absent."""
    soup = BeautifulSoup(html, "html.parser")
    if soup.title is None:
        return ""
    return " ".join(soup.title.get_text().split())


def html_to_text(html: str, max_chars: int | None = None) -> str:
    """Convert an HTML page to readable text.

    Scripts, styles and page chrome (nav, header, footer) are dropped.
    Paragraph-level elements end with a blank line so downstream excerpt
    extraction can split on paragraph boundaries.

    Args:
        html: Raw HTML
        max_chars: Optional cap on the returned text length

    Returns:
        Cleaned text
    """
    soup = BeautifulSoup(html, "html.parser")

    for tag in soup(NOISE_TAGS):
        tag.decompose()

    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(PARAGRAPH_TAGS):
        tag.append("\n\n")
    for tag in soup.find_all(LINE_TAGS):
        tag.append("\n")

    text = soup.get_text()
    text = _INLINE_SPACE.sub(" ", text.replace("\xa0", " "))
    text = _SPACE_AROUND_NEWLINE.sub("\n", text)
    text = _EXTRA_NEWLINES.sub("\n\n", text).strip()

    if max_chars is not None:
        text = text[:max_chars]
    return text
