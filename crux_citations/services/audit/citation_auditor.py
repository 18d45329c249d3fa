"""Citation auditor: verify every footnote citation in a document.

Pipeline:
    1. strip frontmatter, extract footnote citations
    2. resolve claim text (claim_map, then claim sentence, then context)
    3. resolve each cited URL (source_cache, then fetch when fetch_missing)
    4. settle citations without usable sources without calling the LLM
    5. batch remaining claims by source URL, verify batches under a
       concurrency limit
    6. restore footnote order, count verdicts, apply the pass/fail gate
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator, Protocol, Sequence

import structlog

from ...core.concurrency import ConcurrencyLimiter
from ...core.config import settings
from ...models.audit import AuditRequest, AuditResult, AuditSummary, CitationAudit, Verdict
from ...models.source import FetchedSource, FetchRequest, FetchStatus
from ...utils.footnotes import extract_citations, extract_claim_sentence, strip_frontmatter
from ..fetch.source_fetcher import get_source_fetcher
from ..llm.openrouter_client import get_llm_client
from ..llm.schemas import LLMCaller
from .verifier import ClaimToVerify, verify_claim_batch

logger = structlog.get_logger(__name__)

MIN_SOURCE_CONTENT_LENGTH = 50
EXCERPT_SEPARATOR = "\n\n---\n\n"
MAX_ERROR_CHARS = 200


class SourceProvider(Protocol):
    async def fetch_source(self, request: FetchRequest) -> FetchedSource: ...


@dataclass
class _VerificationGroup:
    """Claims citing one source URL, verified together."""

    source_url: str
    source_text: str
    claims: list[ClaimToVerify] = field(default_factory=list)


def _classify_source(source: FetchedSource | None) -> tuple[Verdict, str] | None:
    """Verdict for citations that cannot reach the LLM, or None if verifiable."""
    if source is None:
        return Verdict.UNCHECKED, "Source not in cache and fetchMissing=false."
    if source.status == FetchStatus.DEAD:
        return Verdict.URL_DEAD, "URL returned an error status and could not be fetched."
    if source.status == FetchStatus.ERROR:
        return (
            Verdict.UNCHECKED,
            "Source could not be fetched (network error, timeout, or unverifiable domain).",
        )
    if source.status == FetchStatus.PAYWALL:
        return Verdict.UNCHECKED, "Source is behind a paywall; content not available for verification."
    if len(source.content) < MIN_SOURCE_CONTENT_LENGTH:
        return Verdict.UNCHECKED, "Source returned no usable text content."
    return None


def _source_text(source: FetchedSource) -> str:
    """Excerpts when present (smaller prompts), otherwise the full content."""
    if source.relevant_excerpts:
        return EXCERPT_SEPARATOR.join(source.relevant_excerpts)
    return source.content


def _chunks(items: Sequence[ClaimToVerify], size: int) -> Iterator[list[ClaimToVerify]]:
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def summarize_audits(audits: Sequence[CitationAudit]) -> AuditSummary:
    """Count verdicts. failed = unsupported + misattributed; unchecked includes url-dead."""
    verdicts = [a.verdict for a in audits]
    return AuditSummary(
        total=len(verdicts),
        verified=verdicts.count(Verdict.VERIFIED),
        failed=verdicts.count(Verdict.UNSUPPORTED) + verdicts.count(Verdict.MISATTRIBUTED),
        misattributed=verdicts.count(Verdict.MISATTRIBUTED),
        unchecked=verdicts.count(Verdict.UNCHECKED) + verdicts.count(Verdict.URL_DEAD),
    )


def passes_gate(summary: AuditSummary, pass_threshold: float) -> bool:
    """Apply the pass/fail gate.

    Any misattributed citation fails outright, whatever the threshold.
    Otherwise a threshold <= 0 or nothing checkable passes, else the verified
    fraction of checkable citations must reach the threshold.
    """
    if summary.misattributed > 0:
        return False
    if pass_threshold <= 0:
        return True
    checkable = summary.verified + summary.failed
    if checkable == 0:
        return True
    return summary.verified / checkable >= pass_threshold


class CitationAuditor:
    """Audit footnote citations against their sources.

    Example:
        >>> auditor = CitationAuditor(fetcher=get_source_fetcher(), llm=client.complete)
        >>> result = await auditor.audit(AuditRequest(content=page, fetch_missing=True))
        >>> if not result.passed:
        ...     print(result.summary)
    """

    def __init__(
        self,
        fetcher: SourceProvider | None = None,
        llm: LLMCaller | None = None,
        max_claims_per_batch: int | None = None,
        fetch_concurrency: int | None = None,
    ) -> None:
        """Initialize the auditor.

        Args:
            fetcher: Source provider for cache misses (default fetcher if omitted)
            llm: LLM call used for verification (shared OpenRouter client if omitted)
            max_claims_per_batch: Maximum claims per LLM call
            fetch_concurrency: Maximum concurrent source fetches
        """
        self._fetcher = fetcher
        self._llm = llm
        self.max_claims_per_batch = max_claims_per_batch or settings.AUDIT_MAX_CLAIMS_PER_BATCH
        self.fetch_concurrency = fetch_concurrency or settings.FETCH_CONCURRENCY

    @property
    def fetcher(self) -> SourceProvider:
        if self._fetcher is None:
            self._fetcher = get_source_fetcher()
        return self._fetcher

    @property
    def llm(self) -> LLMCaller:
        if self._llm is None:
            self._llm = get_llm_client().complete
        return self._llm

    async def audit(self, request: AuditRequest) -> AuditResult:
        """Audit every citation in ``request.content``.

        Never raises for fetch or LLM failures; those become 'unchecked'
        verdicts.
        """
        body = strip_frontmatter(request.content)
        extracted = extract_citations(body)
        claim_map = request.claim_map or {}

        urls = list(dict.fromkeys(c.url for c in extracted))
        sources = await self._resolve_sources(urls, request)

        settled: list[CitationAudit] = []
        groups: dict[str, _VerificationGroup] = {}

        for citation in extracted:
            ref = str(citation.footnote)
            claim = (
                claim_map.get(ref)
                or extract_claim_sentence(body, citation.footnote)
                or citation.claim_context
            )
            source = sources.get(citation.url)

            outcome = _classify_source(source)
            if outcome is not None:
                verdict, explanation = outcome
                settled.append(
                    CitationAudit(
                        footnote_ref=ref,
                        claim=claim,
                        source_url=citation.url,
                        verdict=verdict,
                        explanation=explanation,
                    )
                )
                continue

            assert source is not None
            group = groups.get(citation.url)
            if group is None:
                group = _VerificationGroup(citation.url, _source_text(source))
                groups[citation.url] = group
            group.claims.append(ClaimToVerify(footnote_ref=ref, claim=claim))

        limiter = ConcurrencyLimiter(request.concurrency)
        tasks = [
            limiter.run(self._verify_chunk, group, chunk, request.model, request.delay_ms)
            for group in groups.values()
            for chunk in _chunks(group.claims, self.max_claims_per_batch)
        ]
        verified_batches = await asyncio.gather(*tasks)

        audits = settled + [audit for batch in verified_batches for audit in batch]
        audits.sort(key=lambda a: int(a.footnote_ref))

        summary = summarize_audits(audits)
        passed = passes_gate(summary, request.pass_threshold)

        logger.info(
            "Citation audit complete",
            total=summary.total,
            verified=summary.verified,
            failed=summary.failed,
            misattributed=summary.misattributed,
            unchecked=summary.unchecked,
            llm_calls=len(tasks),
            passed=passed,
        )

        return AuditResult(
            citations=audits,
            summary=summary,
            new_ungrounded_claims=[],
            passed=passed,
        )

    async def _resolve_sources(
        self, urls: Sequence[str], request: AuditRequest
    ) -> dict[str, FetchedSource | None]:
        limiter = ConcurrencyLimiter(self.fetch_concurrency)
        resolved = await asyncio.gather(
            *(limiter.run(self._resolve_source, url, request) for url in urls)
        )
        return dict(zip(urls, resolved))

    async def _resolve_source(self, url: str, request: AuditRequest) -> FetchedSource | None:
        if request.source_cache and url in request.source_cache:
            return request.source_cache[url]
        if not request.fetch_missing:
            return None

        try:
            return await self.fetcher.fetch_source(FetchRequest(url=url, extract_mode="full"))
        except Exception as e:
            logger.warning("Source fetch failed during audit", url=url, error=str(e))
            return FetchedSource(
                url=url,
                fetched_at=datetime.now(timezone.utc).isoformat(),
                status=FetchStatus.ERROR,
            )

    async def _verify_chunk(
        self,
        group: _VerificationGroup,
        chunk: list[ClaimToVerify],
        model: str | None,
        delay_ms: int,
    ) -> list[CitationAudit]:
        try:
            responses = await verify_claim_batch(chunk, group.source_text, self.llm, model)
            audits = [
                CitationAudit(
                    footnote_ref=claim.footnote_ref,
                    claim=claim.claim,
                    source_url=group.source_url,
                    verdict=response.verdict,
                    relevant_quote=response.relevant_quote or None,
                    explanation=response.explanation,
                )
                for claim, response in zip(chunk, responses)
            ]
        except Exception as e:
            logger.warning(
                "Verification call failed", url=group.source_url, claims=len(chunk), error=str(e)
            )
            audits = [
                CitationAudit(
                    footnote_ref=claim.footnote_ref,
                    claim=claim.claim,
                    source_url=group.source_url,
                    verdict=Verdict.UNCHECKED,
                    explanation=f"Verification error: {str(e)[:MAX_ERROR_CHARS]}",
                )
                for claim in chunk
            ]

        # Rate limit applies after each LLM call, never before the first
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)
        return audits


_citation_auditor: CitationAuditor | None = None


def get_citation_auditor() -> CitationAuditor:
    """Get or create the shared auditor backed by the default fetcher and LLM client."""
    global _citation_auditor
    if _citation_auditor is None:
        _citation_auditor = CitationAuditor()
    return _citation_auditor


async def audit_citations(
    request: AuditRequest,
    fetcher: SourceProvider | None = None,
    llm: LLMCaller | None = None,
) -> AuditResult:
    """Audit citations with the given collaborators (defaults when omitted)."""
    if fetcher is None and llm is None:
        return await get_citation_auditor().audit(request)
    return await CitationAuditor(fetcher=fetcher, llm=llm).audit(request)
