"""Enrichment kinds: per-issue analyses run on issues not flagged for closing."""

import logging
from collections.abc import Callable
from datetime import datetime

from ..enrichment.runner import BatchSpec
from ..errors import TriageError
from ..store.models import FacetName, IssueRecord, utc_now
from ..store.store import IssueStore
from .base import NO_SUGGESTION, AnalysisContext, AnalysisKind, Phase, Preparation, RunOptions
from .prompts import (
    build_good_first_issue_prompt,
    build_labels_prompt,
    build_missing_info_prompt,
    build_needs_response_prompt,
    build_priority_prompt,
    build_quality_prompt,
    build_recurring_prompt,
    build_security_prompt,
    build_stale_prompt,
    days_since,
)
from .responses import (
    GoodFirstIssueResponse,
    GoodFirstIssueVerdict,
    LabelResponse,
    LabelSuggestion,
    MissingInfoItem,
    MissingInfoResponse,
    NeedsResponseItem,
    NeedsResponseResponse,
    PriorityItem,
    PriorityResponse,
    QualityResponse,
    QualityVerdict,
    RecurringResponse,
    RecurringVerdict,
    SecurityFinding,
    SecurityResponse,
    StaleResponse,
    StaleVerdict,
)

logger = logging.getLogger("issue_triage.analyses.enrichment")

__all__ = [
    "GOOD_FIRST_ISSUE_LABEL",
    "SECURITY_CONFIDENCE_THRESHOLD",
    "GoodFirstIssueKind",
    "LabelsKind",
    "MissingInfoKind",
    "NeedsResponseKind",
    "PriorityKind",
    "QualityKind",
    "RecurringKind",
    "SecurityKind",
    "StaleKind",
]

SECURITY_CONFIDENCE_THRESHOLD = 0.70
GOOD_FIRST_ISSUE_LABEL = "good first issue"

# Closed issues offered to the stale prompt for cross-referencing
STALE_CLOSED_CONTEXT = 50


def _no_result(record: IssueRecord) -> dict:
    return {"value": None, "reason": None, "details": {}}


class PriorityKind(AnalysisKind):
    """facet value: critical, high, medium or low."""

    id = "priority"
    label = "Priority Scoring"
    facet = FacetName.PRIORITY
    phase = Phase.ENRICHMENT

    def batch_spec(self, store: IssueStore, preparation: Preparation) -> BatchSpec:
        def merge(item: PriorityItem, record: IssueRecord) -> dict:
            return {
                "value": item.priority,
                "reason": item.reason,
                "details": {"signals": item.signals},
            }

        return BatchSpec(
            facet=self.facet,
            build_prompt=lambda chunk, s: build_priority_prompt(chunk),
            response_model=PriorityResponse,
            extract=lambda parsed: ((p.number, p) for p in parsed.priorities),
            merge=merge,
            fallback=_no_result,
        )


class SecurityKind(AnalysisKind):
    """facet value: True when security related with enough confidence, else False.

    Findings below the confidence threshold are stored as not security related.
    """

    id = "security"
    label = "Security Triage"
    facet = FacetName.SECURITY
    phase = Phase.ENRICHMENT

    @staticmethod
    def _flagged(item: SecurityFinding) -> bool:
        return item.is_security_related and item.confidence >= SECURITY_CONFIDENCE_THRESHOLD

    def batch_spec(self, store: IssueStore, preparation: Preparation) -> BatchSpec:
        def merge(item: SecurityFinding, record: IssueRecord) -> dict:
            if not self._flagged(item):
                return {"value": False, "reason": None, "details": {}}
            return {
                "value": True,
                "reason": item.explanation,
                "details": {
                    "confidence": item.confidence,
                    "category": item.category,
                    "severity": item.severity,
                },
            }

        return BatchSpec(
            facet=self.facet,
            build_prompt=lambda chunk, s: build_security_prompt(chunk),
            response_model=SecurityResponse,
            extract=lambda parsed: ((f.number, f) for f in parsed.findings),
            merge=merge,
            fallback=_no_result,
            produces=self._flagged,
        )


class StaleKind(AnalysisKind):
    """Suggest what to do with issues inactive for stale_days_threshold days.

    facet value: close-resolved, close-wontfix, label-stale or keep-open.
    """

    id = "stale"
    label = "Stale Issue Triage"
    facet = FacetName.STALE
    phase = Phase.ENRICHMENT

    def __init__(
        self,
        chunk_size: int = 20,
        days_threshold: int = 90,
        close_days: int = 14,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(chunk_size)
        self.days_threshold = days_threshold
        self.close_days = close_days
        self.clock = clock

    def precondition(self, record: IssueRecord) -> bool:
        return days_since(record.updated_at, self.clock()) >= self.days_threshold

    def is_available(self, store: IssueStore) -> bool | str:
        available = super().is_available(store)
        if available is not True:
            return available
        if not self.eligible(store):
            return f"no issues inactive for {self.days_threshold}+ days"
        return True

    def batch_spec(self, store: IssueStore, preparation: Preparation) -> BatchSpec:
        closed = sorted(
            store.query(state="closed", has_digest=True),
            key=lambda r: r.updated_at,
            reverse=True,
        )[:STALE_CLOSED_CONTEXT]

        def merge(item: StaleVerdict, record: IssueRecord) -> dict:
            return {
                "value": item.action,
                "reason": item.reason,
                "details": {"draft_comment": item.draft_comment or None},
            }

        return BatchSpec(
            facet=self.facet,
            build_prompt=lambda chunk, s: build_stale_prompt(
                chunk, closed, self.close_days, self.clock()
            ),
            response_model=StaleResponse,
            extract=lambda parsed: ((r.number, r) for r in parsed.results),
            merge=merge,
            fallback=lambda record: {
                "value": "keep-open",
                "reason": NO_SUGGESTION,
                "details": {},
            },
        )


class QualityKind(AnalysisKind):
    """Flag low-quality submissions. Runs on open issues with or without digest.

    facet value: spam, vague, test, wrong-language or ok.
    """

    id = "quality"
    label = "Quality Check"
    facet = FacetName.QUALITY
    phase = Phase.ENRICHMENT
    requires_digest = False

    def batch_spec(self, store: IssueStore, preparation: Preparation) -> BatchSpec:
        def merge(item: QualityVerdict, record: IssueRecord) -> dict:
            return {
                "value": item.quality,
                "reason": item.reason or None,
                "details": {"suggested_label": item.suggested_label},
            }

        return BatchSpec(
            facet=self.facet,
            build_prompt=lambda chunk, s: build_quality_prompt(chunk),
            response_model=QualityResponse,
            extract=lambda parsed: ((r.number, r) for r in parsed.results),
            merge=merge,
            fallback=lambda record: {"value": "ok", "reason": None, "details": {}},
            produces=lambda item: item.quality != "ok",
        )


class MissingInfoKind(AnalysisKind):
    """Check bug reports for missing reproduction details.

    facet value: True when information is missing, else False.
    """

    id = "missing_info"
    label = "Missing Info Check"
    facet = FacetName.MISSING_INFO
    phase = Phase.ENRICHMENT

    def precondition(self, record: IssueRecord) -> bool:
        return record.digest is not None and record.digest.category == "bug"

    def batch_spec(self, store: IssueStore, preparation: Preparation) -> BatchSpec:
        def merge(item: MissingInfoItem, record: IssueRecord) -> dict:
            if not item.has_missing_info:
                return {"value": False, "reason": None, "details": {}}
            return {
                "value": True,
                "reason": ", ".join(item.missing_fields) or None,
                "details": {
                    "missing_fields": item.missing_fields,
                    "suggested_comment": item.suggested_comment,
                },
            }

        return BatchSpec(
            facet=self.facet,
            build_prompt=lambda chunk, s: build_missing_info_prompt(chunk),
            response_model=MissingInfoResponse,
            extract=lambda parsed: ((r.number, r) for r in parsed.results),
            merge=merge,
            fallback=_no_result,
            produces=lambda item: item.has_missing_info,
        )


class NeedsResponseKind(AnalysisKind):
    """facet value: needs-response, responded or new-issue."""

    id = "needs_response"
    label = "Needs Response"
    facet = FacetName.NEEDS_RESPONSE
    phase = Phase.ENRICHMENT

    def batch_spec(self, store: IssueStore, preparation: Preparation) -> BatchSpec:
        org_members = list(store.meta.org_members)

        def merge(item: NeedsResponseItem, record: IssueRecord) -> dict:
            return {"value": item.status, "reason": item.reason, "details": {}}

        return BatchSpec(
            facet=self.facet,
            build_prompt=lambda chunk, s: build_needs_response_prompt(chunk, org_members),
            response_model=NeedsResponseResponse,
            extract=lambda parsed: ((r.number, r) for r in parsed.results),
            merge=merge,
            fallback=_no_result,
        )


class LabelsKind(AnalysisKind):
    """Suggest repository labels missing from an issue.

    facet value: list of new label names, or None when nothing to add.
    Suggestions outside the repository label set are discarded.
    """

    id = "labels"
    label = "Auto Label"
    facet = FacetName.LABELS
    phase = Phase.ENRICHMENT

    async def prepare(
        self,
        store: IssueStore,
        context: AnalysisContext,
        candidates: list[IssueRecord],
        options: RunOptions,
    ) -> Preparation:
        if context.tracker is None:
            raise TriageError("Label suggestions require a tracker client")
        repo_labels = await context.tracker.fetch_labels()
        if not repo_labels:
            return Preparation([], message="No labels defined in the repository")
        return Preparation(candidates, extras={"repo_labels": repo_labels})

    def batch_spec(self, store: IssueStore, preparation: Preparation) -> BatchSpec:
        repo_labels: list[str] = preparation.extras["repo_labels"]
        allowed = set(repo_labels)

        def new_labels(item: LabelSuggestion, record: IssueRecord) -> list[str]:
            return [
                label
                for label in dict.fromkeys(item.suggested)
                if label in allowed and label not in record.labels
            ]

        def merge(item: LabelSuggestion, record: IssueRecord) -> dict:
            labels = new_labels(item, record)
            if not labels:
                return {"value": None, "reason": None, "details": {}}
            return {"value": labels, "reason": item.reason, "details": {}}

        def produces(item: LabelSuggestion) -> bool:
            record = store.get(item.number)
            return record is not None and bool(new_labels(item, record))

        return BatchSpec(
            facet=self.facet,
            build_prompt=lambda chunk, s: build_labels_prompt(chunk, repo_labels),
            response_model=LabelResponse,
            extract=lambda parsed: ((s.number, s) for s in parsed.labels),
            merge=merge,
            fallback=_no_result,
            produces=produces,
        )


class GoodFirstIssueKind(AnalysisKind):
    """facet value: True when suitable for a newcomer, else False."""

    id = "good_first_issue"
    label = "Good First Issue"
    facet = FacetName.GOOD_FIRST_ISSUE
    phase = Phase.ENRICHMENT

    def precondition(self, record: IssueRecord) -> bool:
        return GOOD_FIRST_ISSUE_LABEL not in (label.lower() for label in record.labels)

    def batch_spec(self, store: IssueStore, preparation: Preparation) -> BatchSpec:
        def merge(item: GoodFirstIssueVerdict, record: IssueRecord) -> dict:
            if not item.is_good_first_issue:
                return {"value": False, "reason": None, "details": {}}
            return {
                "value": True,
                "reason": item.reason,
                "details": {
                    "code_hint": item.code_hint,
                    "estimated_complexity": item.estimated_complexity,
                },
            }

        return BatchSpec(
            facet=self.facet,
            build_prompt=lambda chunk, s: build_good_first_issue_prompt(chunk),
            response_model=GoodFirstIssueResponse,
            extract=lambda parsed: ((r.number, r) for r in parsed.results),
            merge=merge,
            fallback=_no_result,
            produces=lambda item: item.is_good_first_issue,
        )


class RecurringKind(AnalysisKind):
    """Match open questions against answered closed issues.

    facet value: True when already answered elsewhere, else False.
    """

    id = "recurring"
    label = "Recurring Questions"
    facet = FacetName.RECURRING
    phase = Phase.ENRICHMENT

    def precondition(self, record: IssueRecord) -> bool:
        return record.digest is not None and record.digest.category == "question"

    async def prepare(
        self,
        store: IssueStore,
        context: AnalysisContext,
        candidates: list[IssueRecord],
        options: RunOptions,
    ) -> Preparation:
        closed = store.query(state="closed", has_digest=True)
        if not closed:
            return Preparation([], message="No closed issues with digest to compare against")
        return Preparation(candidates, extras={"closed": closed})

    @staticmethod
    def _recurring(item: RecurringVerdict) -> bool:
        return item.is_recurring and bool(item.similar_closed_issues)

    def batch_spec(self, store: IssueStore, preparation: Preparation) -> BatchSpec:
        closed: list[IssueRecord] = preparation.extras["closed"]

        def merge(item: RecurringVerdict, record: IssueRecord) -> dict:
            if not self._recurring(item):
                return {"value": False, "reason": None, "details": {}}
            return {
                "value": True,
                "reason": item.suggested_response,
                "details": {
                    "similar_closed_issues": item.similar_closed_issues,
                    "confidence": item.confidence,
                },
            }

        return BatchSpec(
            facet=self.facet,
            build_prompt=lambda chunk, s: build_recurring_prompt(chunk, closed),
            response_model=RecurringResponse,
            extract=lambda parsed: ((q.number, q) for q in parsed.questions),
            merge=merge,
            fallback=_no_result,
            produces=self._recurring,
        )
