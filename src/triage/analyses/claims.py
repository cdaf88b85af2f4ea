"""Claim detection: contributors announcing in comments that they took an issue.

Runs on the cached comments only, without the engine. The latest claiming
comment wins.

facet value: login of the claimant, or None when nobody claimed the issue.
facet reason: snippet of the claiming comment.
"""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from ..enrichment.runner import BatchResult, BatchSpec
from ..errors import TriageError
from ..metrics import record_chunk
from ..store.models import FacetName, IssueComment
from ..store.store import IssueStore
from .base import AnalysisContext, AnalysisKind, Phase, Preparation, RunOptions

logger = logging.getLogger("issue_triage.analyses.claims")

__all__ = [
    "CLAIM_PATTERNS",
    "NEGATIVE_PATTERNS",
    "Claim",
    "ClaimKind",
    "detect_claim",
    "latest_claim",
]

# Straight apostrophe plus the typographic single quotes
_A = "['‘’]"

CLAIM_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        rf"\bi{_A}ll take (?:it|this)\b",
        rf"\bi{_A}ll work on (?:this|it)\b",
        rf"\bi{_A}d like to (?:work on|take|fix|tackle|handle) (?:this|it)\b",
        r"\bi want to work on (?:this|it)\b",
        r"\bi can take (?:this|it)\b",
        rf"\bi{_A}ll fix (?:this|it)\b",
        rf"\bi{_A}ll handle (?:this|it)\b",
        rf"\bi{_A}ll tackle (?:this|it)\b",
        rf"\bi{_A}ll submit (?:a )?(?:pr|pull request|fix|patch)(?: for this)?\b",
        rf"\bi{_A}ll implement (?:this|it)\b",
        r"\bworking on (?:it|this)\b",
        r"\bcan i work on (?:this|it)\b",
        r"\blet me take (?:this|it)\b",
        rf"\bi{_A}m on (?:it|this)\b",
        rf"\bi{_A}ll pick this up\b",
    )
]

# "I'll take a look" is interest, not a claim
NEGATIVE_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\btake a look\b",
        r"\btook a look\b",
        r"\btake a peek\b",
        r"\blooking into (?:it|this)\b",
    )
]

SNIPPET_BEFORE = 20
SNIPPET_AFTER = 60


@dataclass(frozen=True)
class Claim:
    author: str
    snippet: str
    created_at: datetime


def detect_claim(comment: IssueComment) -> Claim | None:
    """Return the claim made by a comment, or None."""
    body = comment.body
    if any(p.search(body) for p in NEGATIVE_PATTERNS):
        return None

    for pattern in CLAIM_PATTERNS:
        match = pattern.search(body)
        if match is None:
            continue
        start = max(0, match.start() - SNIPPET_BEFORE)
        end = min(len(body), match.end() + SNIPPET_AFTER)
        snippet = (
            ("..." if start > 0 else "")
            + body[start:end].strip()
            + ("..." if end < len(body) else "")
        )
        return Claim(author=comment.author, snippet=snippet, created_at=comment.created_at)
    return None


def latest_claim(comments: Iterable[IssueComment]) -> Claim | None:
    """Latest claim among comments in chronological order."""
    claim = None
    for comment in comments:
        claim = detect_claim(comment) or claim
    return claim


class ClaimKind(AnalysisKind):
    """Find open issues claimed by a contributor in the comments.

    Claims by a login already assigned to the issue are recorded but not
    reported. A comment refresh makes the issue due again.
    """

    id = "claim"
    label = "Claim Detector"
    facet = FacetName.CLAIM
    phase = Phase.ENRICHMENT
    requires_digest = False

    def batch_spec(self, store: IssueStore, preparation: Preparation) -> BatchSpec:
        raise TriageError("Claim detection matches comments locally and has no engine batch")

    async def run(
        self, store: IssueStore, context: AnalysisContext, options: RunOptions
    ) -> BatchResult:
        candidates = self.select(store, options)
        if not candidates:
            return BatchResult.empty(
                f"All eligible issues already analyzed for {self.label}. Use recheck to re-run."
            )

        result: BatchResult = BatchResult(chunks=0)
        for record in candidates:
            claim = latest_claim(record.comments)
            if claim is None:
                update = {"value": None, "reason": None, "details": {}}
                result.fallbacks += 1
            else:
                assigned = claim.author in record.assignees
                update = {
                    "value": claim.author,
                    "reason": claim.snippet,
                    "details": {
                        "claimed_at": claim.created_at.isoformat(),
                        "already_assigned": assigned,
                    },
                }
                result.merged += 1
                if not assigned:
                    result.items.append((record.number, claim))
            store.set_facet(
                record.number, {self.facet: {**update, "analyzed_at": context.clock()}}
            )

        record_chunk(self.id, "local", merged=result.merged, fallbacks=result.fallbacks)
        if not options.dry_run:
            store.save()

        logger.info(
            "claims_detected",
            extra={"kind": self.id, "scanned": len(candidates), "claimed": len(result.items)},
        )
        return result
