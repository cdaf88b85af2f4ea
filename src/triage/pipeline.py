"""Two-phase analysis pipeline.

Phase 1 runs detection kinds (duplicates, done). Every open record that a
detection facet recommends closing is collected into an exclusion set, which
is frozen for the rest of the run. Phase 2 runs enrichment kinds with those
records withheld, so no effort is spent enriching issues about to be closed.

Kinds are isolated from each other: an exception in one is recorded and the
pipeline moves on. A run always reaches COMPLETE.
"""

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .analyses.base import AnalysisContext, AnalysisKind, Phase, RunOptions
from .enrichment.runner import BatchResult
from .metrics import record_kind_run
from .store.store import IssueStore

logger = logging.getLogger("issue_triage.pipeline")

__all__ = [
    "PipelineOptions",
    "PipelineResult",
    "PipelineState",
    "close_flagged_ids",
    "run_pipeline",
]


class PipelineState(str, Enum):
    NOT_STARTED = "not_started"
    PHASE1_RUNNING = "phase1_running"
    EXCLUSION_COMPUTED = "exclusion_computed"
    PHASE2_RUNNING = "phase2_running"
    COMPLETE = "complete"


@dataclass(frozen=True)
class PipelineOptions:
    """Switches for one pipeline run.

    Attributes:
        recheck: Treat every eligible record as due
        dry_run: Mutate in memory only, never save
    """

    recheck: bool = False
    dry_run: bool = False


@dataclass
class PipelineResult:
    """Summary of a pipeline run.

    Attributes:
        phase1_kinds: Detection kinds that ran to completion
        phase2_kinds: Enrichment kinds that ran to completion
        excluded_ids: Open records flagged for closing after phase 1
        skipped: (kind_id, reason) for kinds that were not available
        errors: (kind_id, message) for kinds that raised
        results: Per-kind BatchResult for kinds that completed
        states: Every state the run passed through, in order
        duration_seconds: Wall time of the run
    """

    phase1_kinds: list[str] = field(default_factory=list)
    phase2_kinds: list[str] = field(default_factory=list)
    excluded_ids: frozenset[int] = field(default_factory=frozenset)
    skipped: list[tuple[str, str]] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)
    results: dict[str, BatchResult] = field(default_factory=dict)
    states: list[PipelineState] = field(default_factory=lambda: [PipelineState.NOT_STARTED])
    duration_seconds: float = 0.0

    @property
    def state(self) -> PipelineState:
        """Current (last reached) state."""
        return self.states[-1]

    @property
    def close_flagged_count(self) -> int:
        return len(self.excluded_ids)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for logging."""
        return {
            "phase1_kinds": self.phase1_kinds,
            "phase2_kinds": self.phase2_kinds,
            "close_flagged": self.close_flagged_count,
            "skipped": [kind_id for kind_id, _ in self.skipped],
            "errors": len(self.errors),
            "state": self.state.value,
            "duration_seconds": round(self.duration_seconds, 2),
        }


def close_flagged_ids(store: IssueStore, kinds: Sequence[AnalysisKind]) -> frozenset[int]:
    """Open record ids that any detection kind recommends closing."""
    detectors = [k for k in kinds if k.phase is Phase.DETECTION]
    return frozenset(
        record.number
        for record in store.query(state="open")
        if any(k.recommends_close(record.facet(k.facet)) for k in detectors)
    )


async def _run_phase(
    phase: Phase,
    kinds: Sequence[AnalysisKind],
    store: IssueStore,
    context: AnalysisContext,
    options: RunOptions,
    result: PipelineResult,
    completed: list[str],
) -> None:
    for kind in kinds:
        availability = kind.is_available(store)
        if availability is not True:
            reason = availability if isinstance(availability, str) else "not available"
            logger.info("kind_skipped", extra={"kind": kind.id, "reason": reason})
            result.skipped.append((kind.id, reason))
            record_kind_run(kind.id, phase.value, "skipped")
            continue

        logger.info("kind_started", extra={"kind": kind.id, "phase": phase.value})
        try:
            batch = await kind.run(store, context, options)
        except Exception as e:
            logger.error(
                "kind_failed",
                extra={"kind": kind.id, "phase": phase.value, "error": str(e)},
                exc_info=True,
            )
            result.errors.append((kind.id, str(e) or type(e).__name__))
            record_kind_run(kind.id, phase.value, "failed")
            continue

        completed.append(kind.id)
        result.results[kind.id] = batch
        record_kind_run(kind.id, phase.value, "success")
        logger.info("kind_completed", extra={"kind": kind.id, **batch.to_dict()})


async def run_pipeline(
    store: IssueStore,
    kinds: Sequence[AnalysisKind],
    context: AnalysisContext,
    options: PipelineOptions | None = None,
) -> PipelineResult:
    """Run detection kinds, derive the exclusion set, then run enrichment kinds.

    Args:
        store: Issue store (mutated; saved per chunk unless dry-run)
        kinds: Explicit list of kinds; phase membership comes from kind.phase
        context: Engine, tracker and clock shared by every kind
        options: recheck/dry_run switches

    Returns:
        PipelineResult; errors are reported there, never raised
    """
    options = options or PipelineOptions()
    result = PipelineResult()
    start = time.monotonic()

    detection = [k for k in kinds if k.phase is Phase.DETECTION]
    enrichment = [k for k in kinds if k.phase is Phase.ENRICHMENT]

    result.states.append(PipelineState.PHASE1_RUNNING)
    await _run_phase(
        Phase.DETECTION,
        detection,
        store,
        context,
        RunOptions(recheck=options.recheck, dry_run=options.dry_run),
        result,
        result.phase1_kinds,
    )

    result.excluded_ids = close_flagged_ids(store, detection)
    result.states.append(PipelineState.EXCLUSION_COMPUTED)
    if result.excluded_ids:
        logger.info("close_flagged", extra={"count": len(result.excluded_ids)})

    result.states.append(PipelineState.PHASE2_RUNNING)
    await _run_phase(
        Phase.ENRICHMENT,
        enrichment,
        store,
        context,
        RunOptions(
            recheck=options.recheck,
            dry_run=options.dry_run,
            exclude_ids=result.excluded_ids,
        ),
        result,
        result.phase2_kinds,
    )

    result.states.append(PipelineState.COMPLETE)
    result.duration_seconds = time.monotonic() - start
    logger.info("pipeline_completed", extra=result.to_dict())
    return result
