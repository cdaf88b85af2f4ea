"""Detection kinds: analyses that can recommend closing an issue.

Duplicate detection compares candidates against every open digested issue;
done detection asks whether merged pull requests resolved an issue. Their
verdicts form the exclusion set for the enrichment phase.
"""

import logging

from ..enrichment.runner import BatchSpec
from ..errors import TriageError
from ..store.models import Facet, FacetName, IssueRecord
from ..store.store import IssueStore
from ..tracker.client import GitHubClientError
from .base import NO_SUGGESTION, AnalysisContext, AnalysisKind, Phase, Preparation, RunOptions
from .prompts import build_done_prompt, build_duplicates_prompt
from .responses import DoneResponse, DoneVerdict, DuplicateMatch, DuplicateResponse

logger = logging.getLogger("issue_triage.analyses.detection")

__all__ = ["DONE_CONFIDENCE_THRESHOLD", "DoneKind", "DuplicatesKind"]

DONE_CONFIDENCE_THRESHOLD = 0.70


class DuplicatesKind(AnalysisKind):
    """Link open issues to the earlier open issue they duplicate.

    facet value: number of the original issue, or None.
    """

    id = "duplicates"
    label = "Duplicate Detection"
    facet = FacetName.DUPLICATES
    phase = Phase.DETECTION

    def __init__(self, chunk_size: int = 30, min_confidence: float = 0.80):
        super().__init__(chunk_size)
        self.min_confidence = min_confidence

    def recommends_close(self, facet: Facet) -> bool:
        return facet.value is not None

    def batch_spec(self, store: IssueStore, preparation: Preparation) -> BatchSpec:
        known = {r.number for r in store.query(state="open", has_digest=True)}

        def is_match(item: DuplicateMatch) -> bool:
            return (
                item.confidence >= self.min_confidence
                and item.duplicate_of != item.number
                and item.duplicate_of in known
            )

        def merge(item: DuplicateMatch, record: IssueRecord) -> dict:
            if not is_match(item):
                return {"value": None, "reason": None, "details": {}}
            return {
                "value": item.duplicate_of,
                "reason": item.reason,
                "details": {"confidence": item.confidence},
            }

        return BatchSpec(
            facet=self.facet,
            build_prompt=lambda chunk, s: build_duplicates_prompt(
                chunk, s.query(state="open", has_digest=True), self.min_confidence
            ),
            response_model=DuplicateResponse,
            extract=lambda parsed: ((d.number, d) for d in parsed.duplicates),
            merge=merge,
            fallback=lambda record: {"value": None, "reason": None, "details": {}},
            produces=is_match,
        )


class DoneKind(AnalysisKind):
    """Detect open issues already resolved by merged pull requests.

    Each candidate's timeline is fetched first. Issues without merged PR
    references are decided without the engine (value False); issues whose
    timeline cannot be fetched are left undecided for the next run.

    facet value: True when resolved, otherwise False.
    """

    id = "done"
    label = "Done Detector"
    facet = FacetName.DONE
    phase = Phase.DETECTION

    def __init__(self, chunk_size: int = 10):
        super().__init__(chunk_size)

    def recommends_close(self, facet: Facet) -> bool:
        return facet.value is True

    async def prepare(
        self,
        store: IssueStore,
        context: AnalysisContext,
        candidates: list[IssueRecord],
        options: RunOptions,
    ) -> Preparation:
        if context.tracker is None:
            raise TriageError("Done detection requires a tracker client")

        merged_prs: dict[int, list[dict]] = {}
        with_prs: list[IssueRecord] = []
        decided = 0
        skipped = 0

        for record in candidates:
            try:
                refs = await context.tracker.fetch_timeline(record.number)
            except GitHubClientError as e:
                skipped += 1
                logger.warning(
                    "timeline_fetch_failed",
                    extra={"number": record.number, "error": str(e)},
                )
                continue

            if not refs:
                store.set_facet(
                    record.number,
                    {
                        self.facet: {
                            "value": False,
                            "reason": None,
                            "details": {},
                            "analyzed_at": context.clock(),
                        }
                    },
                )
                decided += 1
                continue

            merged_prs[record.number] = [ref.model_dump() for ref in refs]
            with_prs.append(record)

        if decided and not options.dry_run:
            store.save()

        logger.info(
            "timelines_fetched",
            extra={
                "candidates": len(candidates),
                "with_merged_prs": len(with_prs),
                "without_prs": decided,
                "skipped": skipped,
            },
        )
        return Preparation(
            with_prs,
            extras={"merged_prs": merged_prs},
            message="No issues with merged PR references found",
        )

    def batch_spec(self, store: IssueStore, preparation: Preparation) -> BatchSpec:
        merged_prs: dict[int, list[dict]] = preparation.extras["merged_prs"]

        def merge(item: DoneVerdict, record: IssueRecord) -> dict:
            return {
                "value": item.is_done and item.confidence >= DONE_CONFIDENCE_THRESHOLD,
                "reason": item.reason or None,
                "details": {
                    "confidence": item.confidence,
                    "draft_comment": item.draft_comment or None,
                    "merged_prs": merged_prs.get(record.number, []),
                },
            }

        def fallback(record: IssueRecord) -> dict:
            return {
                "value": False,
                "reason": NO_SUGGESTION,
                "details": {"merged_prs": merged_prs.get(record.number, [])},
            }

        return BatchSpec(
            facet=self.facet,
            build_prompt=lambda chunk, s: build_done_prompt(chunk, merged_prs),
            response_model=DoneResponse,
            extract=lambda parsed: ((r.number, r) for r in parsed.results),
            merge=merge,
            fallback=fallback,
        )
