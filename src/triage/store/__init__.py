"""Incremental issue store: record model, invalidation rule, persistence."""

from .models import (
    SNAPSHOT_VERSION,
    Facet,
    FacetName,
    IssueComment,
    IssueDigest,
    IssueRecord,
    IssueSnapshot,
    IssueState,
    StoreMeta,
    StoreSnapshot,
    compute_content_hash,
    utc_now,
)
from .store import STORE_FILENAME, IssueStore, UpsertAction, UpsertResult

__all__ = [
    "SNAPSHOT_VERSION",
    "STORE_FILENAME",
    "Facet",
    "FacetName",
    "IssueComment",
    "IssueDigest",
    "IssueRecord",
    "IssueSnapshot",
    "IssueState",
    "IssueStore",
    "StoreMeta",
    "StoreSnapshot",
    "UpsertAction",
    "UpsertResult",
    "compute_content_hash",
    "utc_now",
]
