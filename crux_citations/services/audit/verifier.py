"""LLM verification of claims against source text.

A lone claim is checked with a single-object prompt; several claims citing the
same source share one batched call. Every parse problem degrades to an
'unchecked' verdict, never to 'unsupported'.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Sequence

from ...core.config import settings
from ...models.audit import Verdict
from ...utils.json_response import strip_code_fences
from ..llm.schemas import LLMCaller

MAX_SOURCE_CHARS = 50_000
TRUNCATION_MARKER = "\n\n[... truncated ...]"
AUDIT_TITLE = "LongtermWiki Citation Audit"
BATCH_AUDIT_TITLE = "LongtermWiki Citation Audit (batch)"

_VERDICT_RULES = """Use exactly one of these verdicts{per_claim}:
- "verified": the source clearly and directly supports the claim
- "unsupported": the source does not contain information relevant to this claim
- "misattributed": the source has related content but the claim misrepresents it (wrong numbers, wrong attribution, overclaim, misleading paraphrase)

Rules:
- Search the ENTIRE source for relevant passages before deciding
- Only return "unsupported" if you have checked the full source and it truly contains no relevant information
- Be strict about numbers, dates, and names; even small discrepancies count as "misattributed"
- For "relevantQuote", copy the exact passage from the source most relevant to the claim (1-3 sentences). Return "" if no relevant passage exists.
- For "explanation", give a concise (1-2 sentence) reason for your verdict"""

VERIFIER_SYSTEM_PROMPT = (
    "You are a citation verification assistant. Given a claim from a wiki article and "
    "the text of the cited source, determine whether the source supports the claim.\n\n"
    + _VERDICT_RULES.format(per_claim="")
    + "\n\nRespond in exactly this JSON format:\n"
    '{"verdict": "verified", "relevantQuote": "exact text from source", '
    '"explanation": "why this verdict"}'
)

BATCH_VERIFIER_SYSTEM_PROMPT = (
    "You are a citation verification assistant. Given MULTIPLE claims from a wiki article "
    "and the text of a single cited source, determine whether the source supports each claim.\n\n"
    + _VERDICT_RULES.format(per_claim=" per claim")
    + "\n\nRespond in exactly this JSON format (one object per claim, in order):\n"
    '{"results": [{"verdict": "verified", "relevantQuote": "exact text", "explanation": "why"}, ...]}'
)


@dataclass
class VerifierResponse:
    """Parsed verdict for one claim."""

    verdict: Verdict
    relevant_quote: str
    explanation: str


@dataclass
class ClaimToVerify:
    """A claim queued for verification, tagged with its footnote."""

    footnote_ref: str
    claim: str


def truncate_source(text: str, max_chars: int = MAX_SOURCE_CHARS) -> str:
    """Cap source text for the prompt, appending a marker when cut."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_MARKER


def _unchecked(explanation: str, relevant_quote: str = "") -> VerifierResponse:
    return VerifierResponse(
        verdict=Verdict.UNCHECKED, relevant_quote=relevant_quote, explanation=explanation
    )


def _parse_entry(entry: Any) -> VerifierResponse:
    if not isinstance(entry, dict):
        return _unchecked(f'Unknown verdict "{entry}", treated as unchecked.')

    quote = entry.get("relevantQuote")
    quote = quote if isinstance(quote, str) else ""
    verdict = Verdict.from_llm(entry.get("verdict"))
    if verdict == Verdict.UNCHECKED:
        return _unchecked(f'Unknown verdict "{entry.get("verdict")}", treated as unchecked.', quote)

    explanation = entry.get("explanation")
    if not isinstance(explanation, str) or not explanation:
        explanation = "No explanation provided."
    return VerifierResponse(verdict=verdict, relevant_quote=quote, explanation=explanation)


def parse_verifier_response(raw: str) -> VerifierResponse:
    """Parse a single-claim verifier response."""
    try:
        parsed = json.loads(strip_code_fences(raw))
    except (json.JSONDecodeError, TypeError):
        return _unchecked("Failed to parse verification response.")
    return _parse_entry(parsed)


def parse_batch_verifier_response(raw: str, expected_count: int) -> list[VerifierResponse]:
    """Parse a batch verifier response into exactly ``expected_count`` results.

    Accepts ``{"results": [...]}`` or a bare JSON array. A single verdict
    object is applied to every claim. Missing entries become unchecked.
    """
    try:
        parsed = json.loads(strip_code_fences(raw))
    except (json.JSONDecodeError, TypeError):
        return [
            _unchecked("Failed to parse batch verification response.")
            for _ in range(expected_count)
        ]

    if isinstance(parsed, dict) and isinstance(parsed.get("results"), list):
        entries = parsed["results"]
    elif isinstance(parsed, list):
        entries = parsed
    else:
        single = _parse_entry(parsed)
        return [
            VerifierResponse(single.verdict, single.relevant_quote, single.explanation)
            for _ in range(expected_count)
        ]

    results: list[VerifierResponse] = []
    for i in range(expected_count):
        if i >= len(entries) or entries[i] is None:
            results.append(_unchecked("Missing result entry in batch response."))
        else:
            results.append(_parse_entry(entries[i]))
    return results


async def verify_claim_batch(
    claims: Sequence[ClaimToVerify],
    source_text: str,
    llm: LLMCaller,
    model: str | None = None,
) -> list[VerifierResponse]:
    """Verify claims citing the same source with one LLM call.

    Returns one response per claim, in input order. LLM exceptions propagate
    to the caller.
    """
    if not claims:
        return []

    model = model or settings.CITATION_LLM_MODEL
    per_claim_tokens = settings.CITATION_LLM_MAX_TOKENS
    truncated = truncate_source(source_text)

    if len(claims) == 1:
        user_prompt = (
            f"WIKI CLAIM:\n{claims[0].claim}\n\n"
            f"SOURCE TEXT:\n{truncated}\n\n"
            "Determine whether the source supports this claim. Return JSON only."
        )
        raw = await llm(
            VERIFIER_SYSTEM_PROMPT,
            user_prompt,
            model=model,
            max_tokens=per_claim_tokens,
            title=AUDIT_TITLE,
        )
        return [parse_verifier_response(raw)]

    claim_list = "\n".join(
        f"[{i}] (footnote ^{c.footnote_ref}): {c.claim}" for i, c in enumerate(claims, start=1)
    )
    user_prompt = (
        f"WIKI CLAIMS (against the same source):\n{claim_list}\n\n"
        f"SOURCE TEXT:\n{truncated}\n\n"
        "Determine whether the source supports each claim. "
        "Return JSON with one result per claim, in order."
    )
    raw = await llm(
        BATCH_VERIFIER_SYSTEM_PROMPT,
        user_prompt,
        model=model,
        max_tokens=per_claim_tokens * len(claims),
        title=BATCH_AUDIT_TITLE,
    )
    return parse_batch_verifier_response(raw, len(claims))
