"""Fakes and sample data builders shared by the test modules.

Imported directly by tests (tests/ is on sys.path via conftest.py).
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from triage.store.models import IssueDigest, IssueSnapshot

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeEngine:
    """Scripted EnrichmentEngine.

    Each analyze() call consumes the next scripted reply:
        - dict: validated against the requested shape
        - BaseModel instance or None: returned as is
        - Exception instance: raised
        - function: called with (prompt, shape), result handled as above

    Once the script is exhausted every call returns None.
    """

    def __init__(self, *replies: Any):
        self.replies = list(replies)
        self.prompts: list[str] = []
        self.shapes: list[type] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def analyze(self, prompt, shape):
        self.prompts.append(prompt)
        self.shapes.append(shape)
        if not self.replies:
            return None
        reply = self.replies.pop(0)
        if callable(reply) and not isinstance(reply, type):
            reply = reply(prompt, shape)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            return shape.model_validate(reply)
        return reply


class FakeTracker:
    """In-memory TrackerClient. Exception values are raised by the matching fetch."""

    def __init__(
        self,
        issues: list[IssueSnapshot] | None = None,
        comments: dict[int, Any] | None = None,
        timelines: dict[int, Any] | None = None,
        labels: list[str] | None = None,
        org_members: list[str] | Exception | None = None,
    ):
        self.issues = issues or []
        self.comments = comments or {}
        self.timelines = timelines or {}
        self.labels = labels or []
        self.org_members = org_members if org_members is not None else []
        self.fetch_issues_calls: list[dict[str, Any]] = []
        self.comment_calls: list[int] = []
        self.timeline_calls: list[int] = []

    async def fetch_issues(self, since=None, include_closed=False):
        self.fetch_issues_calls.append({"since": since, "include_closed": include_closed})
        return list(self.issues)

    async def fetch_comments(self, number):
        self.comment_calls.append(number)
        value = self.comments.get(number, [])
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_timeline(self, number):
        self.timeline_calls.append(number)
        value = self.timelines.get(number, [])
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_labels(self):
        return list(self.labels)

    async def fetch_org_members(self):
        if isinstance(self.org_members, Exception):
            raise self.org_members
        return list(self.org_members)


def make_snapshot(number: int = 1, **overrides: Any) -> IssueSnapshot:
    """Build a raw snapshot with sensible defaults."""
    data: dict[str, Any] = {
        "number": number,
        "title": f"Issue {number}",
        "body": f"Body of issue {number}",
        "state": "open",
        "labels": [],
        "author": "alice",
        "created_at": NOW - timedelta(days=30),
        "updated_at": NOW - timedelta(days=1),
        "html_url": f"https://github.com/octo/widgets/issues/{number}",
    }
    data.update(overrides)
    return IssueSnapshot(**data)


def make_digest(category: str = "bug", **overrides: Any) -> IssueDigest:
    data: dict[str, Any] = {
        "summary": "Login fails with SSO",
        "category": category,
        "affected_area": "auth",
        "keywords": ["login", "sso"],
        "digested_at": NOW - timedelta(days=1),
    }
    data.update(overrides)
    return IssueDigest(**data)
