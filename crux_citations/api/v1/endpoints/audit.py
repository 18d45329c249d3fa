"""Citation audit endpoint."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from ....models.audit import AuditRequest, AuditResult
from ....services.audit.citation_auditor import CitationAuditor, get_citation_auditor

router = APIRouter(prefix="/citations", tags=["citations"])


@router.post("/audit", response_model=AuditResult)
async def audit_citations(
    request: AuditRequest,
    auditor: Annotated[CitationAuditor, Depends(get_citation_auditor)],
) -> AuditResult:
    """Audit every footnote citation in a document.

    **Verdicts:** verified, unsupported, misattributed, url-dead, unchecked.
    The response ``pass`` field is the gate outcome: any misattributed
    citation fails; otherwise the verified share of checkable citations must
    reach ``pass_threshold``.
    """
    return await auditor.audit(request)
