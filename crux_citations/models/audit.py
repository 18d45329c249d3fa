"""Citation audit models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..core.config import settings
from .source import FetchedSource


class Verdict(str, Enum):
    """Closed set of per-citation verdicts.

    UNCHECKED is the fallback for anything that could not be determined and
    never counts as a negative finding.
    """

    VERIFIED = "verified"
    UNSUPPORTED = "unsupported"
    MISATTRIBUTED = "misattributed"
    URL_DEAD = "url-dead"
    UNCHECKED = "unchecked"

    @classmethod
    def from_llm(cls, value: object) -> Verdict:
        """Map a verdict string returned by the LLM onto the closed set.

        Only the three substantive verdicts are accepted; anything else
        (including 'url-dead', None and non-strings) becomes UNCHECKED.
        """
        if isinstance(value, str) and value in LLM_VERDICTS:
            return cls(value)
        return cls.UNCHECKED


LLM_VERDICTS = frozenset(
    {Verdict.VERIFIED.value, Verdict.UNSUPPORTED.value, Verdict.MISATTRIBUTED.value}
)


class CitationAudit(BaseModel):
    """Verdict for one footnote citation."""

    footnote_ref: str = Field(..., description="Footnote reference, e.g. '3' for [^3]")
    claim: str = Field(..., description="Claim text checked against the source")
    source_url: str = Field(..., description="URL cited by the footnote")
    verdict: Verdict
    relevant_quote: str | None = Field(
        default=None, description="Passage from the source most relevant to the claim"
    )
    explanation: str = Field(..., description="Human-readable reason for the verdict")


class AuditSummary(BaseModel):
    """Verdict counts for an audit.

    ``failed`` counts unsupported plus misattributed; ``unchecked`` counts
    unchecked plus url-dead.
    """

    total: int = 0
    verified: int = 0
    failed: int = 0
    misattributed: int = 0
    unchecked: int = 0


class AuditResult(BaseModel):
    """Aggregate audit report for a document."""

    citations: list[CitationAudit] = Field(default_factory=list)
    summary: AuditSummary = Field(default_factory=AuditSummary)
    new_ungrounded_claims: list[str] = Field(
        default_factory=list, description="Uncited factual claims (not detected yet)"
    )
    passed: bool = Field(..., alias="pass", description="Pass/fail gate outcome")

    model_config = ConfigDict(populate_by_name=True)


class AuditRequest(BaseModel):
    """Input to a citation audit."""

    content: str = Field(..., description="Document text, with or without frontmatter")
    source_cache: dict[str, FetchedSource] | None = Field(
        default=None, description="Pre-fetched sources keyed by URL"
    )
    claim_map: dict[str, str] | None = Field(
        default=None, description="Known claim sentences keyed by footnote ref"
    )
    fetch_missing: bool = Field(
        default=True, description="Fetch URLs missing from source_cache over the network"
    )
    pass_threshold: float = Field(
        default=settings.AUDIT_PASS_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Verified fraction of checkable citations",
    )
    model: str | None = Field(default=None, description="LLM model for verification")
    delay_ms: int = Field(
        default=settings.AUDIT_DELAY_MS, ge=0, description="Delay after each LLM call"
    )
    concurrency: int = Field(
        default=settings.AUDIT_CONCURRENCY, ge=1, description="Maximum concurrent LLM calls"
    )
