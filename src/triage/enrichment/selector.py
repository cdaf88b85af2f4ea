"""Candidate selection: which records are due for a given facet.

The universal rule is staleness-or-force. Kind-specific preconditions
(open only, must have a digest, category filters) are passed in as a
predicate by the caller.
"""

from collections.abc import Callable, Collection, Iterable

from ..store.models import FacetName, IssueRecord

__all__ = ["is_due", "select_candidates"]


def is_due(record: IssueRecord, facet: FacetName, recheck: bool = False) -> bool:
    """Check whether a record's facet needs (re)computation.

    Due when the facet was never computed, or when comments were fetched
    after the facet was last computed. recheck makes every record due.

    Note: comments_fetched_at is per record, so a comment refresh makes every
    facet of that record due, including facets that never read comments.
    """
    if recheck:
        return True
    analyzed_at = record.facet(facet).analyzed_at
    if analyzed_at is None:
        return True
    fetched_at = record.comments_fetched_at
    return fetched_at is not None and fetched_at > analyzed_at


def select_candidates(
    records: Iterable[IssueRecord],
    facet: FacetName,
    recheck: bool = False,
    predicate: Callable[[IssueRecord], bool] | None = None,
    exclude_ids: Collection[int] | None = None,
) -> list[IssueRecord]:
    """Select records due for a facet, preserving input order.

    Args:
        records: Records to consider (usually a store query result)
        facet: Facet being computed
        recheck: Force every eligible record to be a candidate
        predicate: Kind-specific eligibility filter
        exclude_ids: Issue numbers withheld from this run (pipeline exclusions)

    Returns:
        Candidate records
    """
    excluded = exclude_ids or ()
    return [
        record
        for record in records
        if record.number not in excluded
        and (predicate is None or predicate(record))
        and is_due(record, facet, recheck)
    ]
