"""Stop-early support for interactive review of enrichment results."""

import logging
from collections.abc import Iterable

from ..metrics import facet_writes_total
from ..store.models import FacetName
from ..store.store import IssueStore

logger = logging.getLogger("issue_triage.enrichment.session")

__all__ = ["ReviewSession"]


class ReviewSession:
    """Tracks which candidates of a run reached a terminal outcome.

    A reviewer walks through the candidates of one facet run. Candidates
    resolved (accepted, rejected, acted upon) keep their stamp. When the
    reviewer stops early, every unresolved candidate has its analyzed_at
    reset so the next run offers it again.

    Example:
        >>> session = ReviewSession(store, FacetName.STALE, [1, 2, 3])
        >>> session.resolve(1)
        >>> session.stop()
        [2, 3]
    """

    def __init__(
        self,
        store: IssueStore,
        facet: FacetName,
        candidate_ids: Iterable[int],
        dry_run: bool = False,
    ):
        self.store = store
        self.facet = FacetName(facet)
        self.candidate_ids = list(dict.fromkeys(candidate_ids))
        self.dry_run = dry_run
        self._resolved: set[int] = set()
        self._stopped = False

    @property
    def pending(self) -> list[int]:
        """Candidates without a terminal outcome, in offer order."""
        return [n for n in self.candidate_ids if n not in self._resolved]

    def resolve(self, number: int) -> None:
        """Mark a candidate as having reached a terminal outcome.

        Raises:
            KeyError: If number is not a candidate of this session
            RuntimeError: If the session was already stopped
        """
        if self._stopped:
            raise RuntimeError("Review session already stopped")
        if number not in self.candidate_ids:
            raise KeyError(number)
        self._resolved.add(number)

    def stop(self) -> list[int]:
        """Reset analyzed_at for every unresolved candidate.

        Persists the store unless dry-run. Calling stop() twice is a no-op
        the second time.

        Returns:
            Issue numbers whose facet was reset
        """
        if self._stopped:
            return []
        self._stopped = True

        reset = self.pending
        for number in reset:
            self.store.set_facet(number, {self.facet: {"analyzed_at": None}})

        if reset:
            facet_writes_total.labels(kind=self.facet.value, outcome="reset").inc(len(reset))
            if not self.dry_run:
                self.store.save()

        logger.info(
            "review_stopped",
            extra={
                "kind": self.facet.value,
                "resolved": len(self._resolved),
                "reset": len(reset),
                "dry_run": self.dry_run,
            },
        )
        return reset
