"""Data models for the persisted issue store snapshot.

Defines the raw issue snapshot delivered by the tracker, the derived state
layered on top of it (digest + independent analysis facets), and the
versioned snapshot document written to disk.

Snapshot versions:
    1: no comment cache, no org_members, content_hash optional
    2: current layout (comments, comments_fetched_at, full facet map)
"""

import hashlib
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("issue_triage.store.models")

__all__ = [
    "FACET_FIELDS",
    "SNAPSHOT_VERSION",
    "DigestCategory",
    "Facet",
    "FacetName",
    "IssueComment",
    "IssueDigest",
    "IssueRecord",
    "IssueSnapshot",
    "IssueState",
    "StoreMeta",
    "StoreSnapshot",
    "UtcDatetime",
    "as_utc",
    "compute_content_hash",
    "empty_analysis",
    "utc_now",
]

SNAPSHOT_VERSION = 2

DigestCategory = Literal["bug", "feature", "docs", "chore", "question", "other"]


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; aware ones are returned unchanged."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


# Every stored timestamp is aware, so staleness comparisons never mix kinds
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


def compute_content_hash(title: str, body: str) -> str:
    """Compute SHA-256 fingerprint over the semantically significant fields.

    Only title and body participate: state, labels and timestamps change
    without invalidating derived analyses.

    Args:
        title: Issue title
        body: Issue body (empty string when the tracker returns none)

    Returns:
        Hex-encoded SHA-256 hash (64 chars)
    """
    payload = f"{title}\x00{body}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class IssueState(str, Enum):
    """Lifecycle state of a tracked issue.

    Note: Uses (str, Enum) so values serialize as plain strings in the
    snapshot document.
    """

    OPEN = "open"
    CLOSED = "closed"


class FacetName(str, Enum):
    """Independent analyses attached to every record."""

    # Detection phase (close recommendations)
    DUPLICATES = "duplicates"
    DONE = "done"

    # Enrichment phase
    PRIORITY = "priority"
    SECURITY = "security"
    STALE = "stale"
    QUALITY = "quality"
    MISSING_INFO = "missing_info"
    NEEDS_RESPONSE = "needs_response"
    LABELS = "labels"
    GOOD_FIRST_ISSUE = "good_first_issue"
    RECURRING = "recurring"
    CLAIM = "claim"


class IssueComment(BaseModel):
    """One cached comment on an issue."""

    author: str = "unknown"
    body: str = ""
    created_at: UtcDatetime


class IssueSnapshot(BaseModel):
    """Raw issue as returned by the remote tracker.

    Attributes:
        number: Stable external identifier (issue number)
        title: Issue title
        body: Issue body, empty string when absent
        state: open or closed
        labels: Label names
        assignees: Assignee logins
        author: Login of the issue author
        created_at: Creation timestamp
        updated_at: Last update timestamp (tracker side)
        html_url: Browser URL of the issue
        comment_count: Number of comments reported by the tracker
        reactions: Total reaction count
    """

    number: int
    title: str
    body: str = ""
    state: IssueState = IssueState.OPEN
    labels: list[str] = Field(default_factory=list)
    assignees: list[str] = Field(default_factory=list)
    author: str = "unknown"
    created_at: UtcDatetime
    updated_at: UtcDatetime
    html_url: str = ""
    comment_count: int = Field(default=0, ge=0)
    reactions: int = Field(default=0, ge=0)

    @field_validator("body", mode="before")
    @classmethod
    def coerce_missing_body(cls, v):
        """GitHub returns null for empty bodies."""
        return "" if v is None else v

    def fingerprint(self) -> str:
        """Content hash of this snapshot's title and body."""
        return compute_content_hash(self.title, self.body)


class IssueDigest(BaseModel):
    """Compact content-derived summary used as cheap input to several facets."""

    summary: str
    category: DigestCategory
    affected_area: str
    keywords: list[str] = Field(default_factory=list)
    digested_at: UtcDatetime = Field(default_factory=utc_now)


class Facet(BaseModel):
    """One independently computed analysis result.

    A facet with analyzed_at set has had its value decided, even when that
    value is None (e.g. "no duplicate found").

    Attributes:
        value: Result value (JSON-able), None when undecided or negative
        reason: Human-readable explanation
        analyzed_at: When the facet was last computed, None = never
        details: Kind-specific extras (confidence, signals, draft comment)
    """

    value: Any = None
    reason: str | None = None
    analyzed_at: UtcDatetime | None = None
    details: dict[str, Any] = Field(default_factory=dict)


FACET_FIELDS = frozenset(Facet.model_fields)


def empty_analysis() -> dict[FacetName, Facet]:
    """Fresh analysis map with every known facet present and empty."""
    return {name: Facet() for name in FacetName}


class IssueRecord(IssueSnapshot):
    """Tracked issue: raw content plus derived state.

    Invariants:
        content_hash always equals compute_content_hash(title, body).
        digest and analysis facets were computed from the current content.
    """

    content_hash: str
    digest: IssueDigest | None = None
    analysis: dict[FacetName, Facet] = Field(default_factory=empty_analysis)
    comments: list[IssueComment] = Field(default_factory=list)
    comments_fetched_at: UtcDatetime | None = None

    @model_validator(mode="after")
    def fill_missing_facets(self) -> "IssueRecord":
        """Older snapshots carry only the facets that existed at write time."""
        for name in FacetName:
            if name not in self.analysis:
                self.analysis[name] = Facet()
        return self

    @classmethod
    def from_snapshot(cls, snapshot: IssueSnapshot) -> "IssueRecord":
        """Create a new record with empty derived state."""
        return cls(**snapshot.model_dump(), content_hash=snapshot.fingerprint())

    def facet(self, name: FacetName | str) -> Facet:
        """Get a facet by name."""
        return self.analysis[FacetName(name)]


class StoreMeta(BaseModel):
    """Collection metadata, one per tracked repository."""

    owner: str
    repo: str
    last_synced_at: UtcDatetime | None = None
    total_fetched: int = Field(default=0, ge=0)
    org_members: list[str] = Field(default_factory=list)
    version: int = SNAPSHOT_VERSION

    @property
    def full_name(self) -> str:
        """Repository in owner/repo format."""
        return f"{self.owner}/{self.repo}"


class StoreSnapshot(BaseModel):
    """The single versioned document persisted per collection."""

    meta: StoreMeta
    issues: list[IssueRecord] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def upgrade_legacy(cls, data: Any) -> Any:
        """Fill fields introduced after version 1.

        Structural problems (non-dict document, missing meta) are left for
        field validation to reject.
        """
        if not isinstance(data, dict) or not isinstance(data.get("meta"), dict):
            return data

        version = data["meta"].get("version", 1)
        if not isinstance(version, int):
            return data
        if version > SNAPSHOT_VERSION:
            raise ValueError(
                f"Snapshot version {version} is newer than supported version {SNAPSHOT_VERSION}"
            )
        if version == SNAPSHOT_VERSION:
            return data

        upgraded = {**data, "meta": {**data["meta"], "version": SNAPSHOT_VERSION}}
        issues = data.get("issues")
        if isinstance(issues, list):
            upgraded["issues"] = [
                {
                    **raw,
                    "content_hash": compute_content_hash(
                        raw.get("title") or "", raw.get("body") or ""
                    ),
                }
                if isinstance(raw, dict) and "content_hash" not in raw
                else raw
                for raw in issues
            ]

        logger.info(
            "snapshot_upgraded",
            extra={"from_version": version, "to_version": SNAPSHOT_VERSION},
        )
        return upgraded
