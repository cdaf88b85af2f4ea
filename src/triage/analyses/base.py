"""Base class and shared types for analysis kinds.

An analysis kind is a declarative descriptor over one facet: which records
are eligible, how a chunk is rendered into a prompt, how engine output maps
onto the facet, and what a silent candidate is stamped with. The generic
BatchRunner does the rest.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..enrichment.engine import EnrichmentEngine
from ..enrichment.runner import BatchResult, BatchRunner, BatchSpec
from ..enrichment.selector import select_candidates
from ..store.models import Facet, FacetName, IssueRecord, utc_now
from ..store.store import IssueStore
from ..tracker.client import TrackerClient

logger = logging.getLogger("issue_triage.analyses")

__all__ = [
    "NO_SUGGESTION",
    "AnalysisContext",
    "AnalysisKind",
    "Phase",
    "Preparation",
    "RunOptions",
]

NO_SUGGESTION = "No suggestion from analysis"


class Phase(str, Enum):
    """Pipeline phase a kind belongs to.

    DETECTION kinds can recommend closing a record; their verdicts feed the
    exclusion set used by ENRICHMENT kinds.
    """

    DETECTION = "detection"
    ENRICHMENT = "enrichment"


@dataclass(frozen=True)
class RunOptions:
    """Per-run switches passed to every kind.

    Attributes:
        recheck: Treat every eligible record as due
        dry_run: Mutate in memory only, never save
        exclude_ids: Issue numbers withheld from candidate lists
    """

    recheck: bool = False
    dry_run: bool = False
    exclude_ids: frozenset[int] = field(default_factory=frozenset)


@dataclass
class AnalysisContext:
    """Collaborators a kind may need at run time.

    Attributes:
        engine: Enrichment engine used for every chunk
        tracker: Remote tracker (timeline, labels); None when offline
        clock: Source of analyzed_at timestamps
    """

    engine: EnrichmentEngine
    tracker: TrackerClient | None = None
    clock: Callable[[], datetime] = utc_now


@dataclass
class Preparation:
    """Outcome of a kind's pre-run step.

    Attributes:
        candidates: Records to submit to the engine
        extras: Data fetched for prompt/merge (e.g. repository labels)
        message: Why nothing will be submitted, when candidates is empty
    """

    candidates: list[IssueRecord]
    extras: dict[str, Any] = field(default_factory=dict)
    message: str | None = None


class AnalysisKind(ABC):
    """Descriptor for one facet analysis.

    Subclasses set the class attributes and implement batch_spec(); most
    also narrow precondition(). Kinds that need data from the tracker before
    invoking the engine override prepare().
    """

    id: str
    label: str
    facet: FacetName
    phase: Phase
    requires_digest: bool = True

    DEFAULT_CHUNK_SIZE = 20

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        self.chunk_size = chunk_size

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, phase={self.phase.value})"

    # -- Eligibility ----------------------------------------------------

    def eligible(self, store: IssueStore) -> list[IssueRecord]:
        """Open records this kind could ever run on, before the due rule."""
        records = store.query(
            state="open", has_digest=True if self.requires_digest else None
        )
        return [r for r in records if self.precondition(r)]

    def precondition(self, record: IssueRecord) -> bool:
        """Kind-specific eligibility beyond open (and digested)."""
        return True

    def is_available(self, store: IssueStore) -> bool | str:
        """True if the kind can run, otherwise a short reason string."""
        if self.requires_digest:
            if not store.query(state="open", has_digest=True):
                return "no open issues with digest"
        elif not store.query(state="open"):
            return "no open issues"
        return True

    def select(self, store: IssueStore, options: RunOptions) -> list[IssueRecord]:
        """Candidates due for this run, in store order."""
        return select_candidates(
            self.eligible(store),
            self.facet,
            recheck=options.recheck,
            exclude_ids=options.exclude_ids,
        )

    def recommends_close(self, facet: Facet) -> bool:
        """Whether a computed facet of this kind recommends closing the record."""
        return False

    # -- Execution ------------------------------------------------------

    async def prepare(
        self,
        store: IssueStore,
        context: AnalysisContext,
        candidates: list[IssueRecord],
        options: RunOptions,
    ) -> Preparation:
        """Hook run between selection and the engine; default passes through."""
        return Preparation(candidates)

    @abstractmethod
    def batch_spec(self, store: IssueStore, preparation: Preparation) -> BatchSpec:
        """Build the runner parameterization for this run."""

    async def run(
        self, store: IssueStore, context: AnalysisContext, options: RunOptions
    ) -> BatchResult:
        """Select, prepare and process candidates through the BatchRunner."""
        candidates = self.select(store, options)
        if not candidates:
            logger.info("kind_up_to_date", extra={"kind": self.id})
            return BatchResult.empty(
                f"All eligible issues already analyzed for {self.label}. Use recheck to re-run."
            )

        preparation = await self.prepare(store, context, candidates, options)
        if not preparation.candidates:
            return BatchResult.empty(preparation.message or f"Nothing to submit for {self.label}")

        runner = BatchRunner(
            store, context.engine, dry_run=options.dry_run, clock=context.clock
        )
        return await runner.run(
            self.batch_spec(store, preparation),
            preparation.candidates,
            self.chunk_size,
        )
