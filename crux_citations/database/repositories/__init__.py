"""Database repositories."""

from .citation_content_repository import CitationContentRepository

__all__ = ["CitationContentRepository"]
