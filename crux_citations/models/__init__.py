"""Shared models for sources and citation audits."""

from .audit import AuditRequest, AuditResult, AuditSummary, CitationAudit, Verdict
from .source import (
    CitationContentRecord,
    FetchedSource,
    FetchRequest,
    FetchStatus,
    ResourceInfo,
)

__all__ = [
    "AuditRequest",
    "AuditResult",
    "AuditSummary",
    "CitationAudit",
    "CitationContentRecord",
    "FetchRequest",
    "FetchStatus",
    "FetchedSource",
    "ResourceInfo",
    "Verdict",
]
