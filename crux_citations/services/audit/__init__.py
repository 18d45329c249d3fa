"""Citation auditing."""

from .citation_auditor import (
    MIN_SOURCE_CONTENT_LENGTH,
    CitationAuditor,
    audit_citations,
    get_citation_auditor,
    passes_gate,
    summarize_audits,
)
from .verifier import parse_batch_verifier_response, parse_verifier_response, truncate_source

__all__ = [
    "MIN_SOURCE_CONTENT_LENGTH",
    "CitationAuditor",
    "audit_citations",
    "get_citation_auditor",
    "parse_batch_verifier_response",
    "parse_verifier_response",
    "passes_gate",
    "summarize_audits",
    "truncate_source",
]
