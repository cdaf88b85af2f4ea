"""Unit tests for the GitHub tracker client.

Tests GitHubClient with:
- Issue, comment, timeline, label and org member endpoints
- Payload mapping (pull requests skipped, null bodies, label shapes)
- Link header pagination and the base URL guard
- Error handling (retries, backoff, non-retryable errors, rate limits)
"""

import time
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from triage.config import TriageConfig
from triage.tracker.client import (
    GitHubClient,
    GitHubClientError,
    RateLimitExceeded,
    map_issue,
    merged_pull_requests,
)

BASE = "https://api.github.com"


def _issue(number: int, **overrides) -> dict:
    data = {
        "number": number,
        "title": f"Issue {number}",
        "body": "Steps to reproduce...",
        "state": "open",
        "labels": [{"name": "bug"}],
        "assignees": [{"login": "carol"}],
        "user": {"login": "alice"},
        "created_at": "2026-01-01T00:00:00Z",
        "updated_at": "2026-01-05T00:00:00Z",
        "html_url": f"https://github.com/octo/widgets/issues/{number}",
        "comments": 2,
        "reactions": {"total_count": 5},
    }
    data.update(overrides)
    return data


def _headers(**extra) -> dict:
    headers = {
        "X-RateLimit-Remaining": "4999",
        "X-RateLimit-Reset": str(int(time.time()) + 3600),
    }
    headers.update(extra)
    return headers


class Router:
    """httpx.MockTransport handler recording requests."""

    def __init__(self, routes):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self.routes[request.url.path]
        if callable(reply):
            return reply(request)
        if isinstance(reply, list) and reply and isinstance(reply[0], httpx.Response):
            return reply.pop(0)
        return httpx.Response(200, json=reply, headers=_headers())


def _client(router: Router) -> GitHubClient:
    return GitHubClient(
        token="ghp_test_token_123",
        repo="octo/widgets",
        min_delay_ms=0,
        transport=httpx.MockTransport(router),
    )


@pytest.fixture(autouse=True)
def no_sleep():
    """Skip real backoff sleeps."""
    with patch("triage.tracker.client.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


# =============================================================================
# Mapping
# =============================================================================


class TestMapping:
    def test_map_issue(self):
        snapshot = map_issue(_issue(3))

        assert snapshot.number == 3
        assert snapshot.labels == ["bug"]
        assert snapshot.assignees == ["carol"]
        assert snapshot.author == "alice"
        assert snapshot.comment_count == 2
        assert snapshot.reactions == 5
        assert snapshot.updated_at == datetime(2026, 1, 5, tzinfo=timezone.utc)

    def test_map_issue_tolerates_missing_optional_fields(self):
        snapshot = map_issue(
            _issue(4, body=None, user=None, labels=["enhancement"], reactions=None, comments=None)
        )

        assert snapshot.body == ""
        assert snapshot.author == "unknown"
        assert snapshot.labels == ["enhancement"]
        assert snapshot.reactions == 0
        assert snapshot.comment_count == 0

    def test_closed_state(self):
        assert map_issue(_issue(5, state="closed")).state.value == "closed"

    def test_merged_pull_requests(self):
        events = [
            {"event": "labeled"},
            {
                "event": "cross-referenced",
                "source": {"issue": {"number": 10, "title": "Fix", "pull_request": {"merged_at": "2026-01-02T00:00:00Z"}}},
            },
            {
                "event": "cross-referenced",
                "source": {"issue": {"number": 11, "title": "Draft", "pull_request": {"merged_at": None}}},
            },
            {"event": "cross-referenced", "source": {"issue": {"number": 12, "title": "Issue ref"}}},
            {
                "event": "cross-referenced",
                "source": {"issue": {"number": 10, "title": "Fix", "pull_request": {"merged_at": "2026-01-02T00:00:00Z"}}},
            },
        ]

        refs = merged_pull_requests(events)

        assert [(r.number, r.title) for r in refs] == [(10, "Fix")]


# =============================================================================
# Endpoints
# =============================================================================


class TestEndpoints:
    def test_repo_format_validated(self):
        with pytest.raises(ValueError):
            GitHubClient(token="t", repo="widgets")

    @pytest.mark.asyncio
    async def test_from_config(self):
        router = Router({"/api/v3/repos/octo/widgets/labels": [{"name": "bug"}]})
        config = TriageConfig(
            _env_file=None,
            github_token="ghp_from_config",
            github_repo="octo/widgets",
            github_base_url="https://ghe.example.com/api/v3",
        )

        async with GitHubClient.from_config(config, transport=httpx.MockTransport(router)) as client:
            assert await client.fetch_labels() == ["bug"]

        request = router.requests[0]
        assert request.url.host == "ghe.example.com"
        assert request.headers["Authorization"] == "Bearer ghp_from_config"

    def test_from_config_requires_repo(self):
        with pytest.raises(ValueError, match="GITHUB_REPO"):
            GitHubClient.from_config(TriageConfig(_env_file=None, github_repo=""))

    @pytest.mark.asyncio
    async def test_fetch_issues_skips_pull_requests(self):
        router = Router(
            {
                "/repos/octo/widgets/issues": [
                    _issue(1),
                    _issue(2, pull_request={"url": "..."}),
                    _issue(3),
                ]
            }
        )
        async with _client(router) as client:
            issues = await client.fetch_issues()

        assert [i.number for i in issues] == [1, 3]
        params = router.requests[0].url.params
        assert params["state"] == "open"
        assert params["sort"] == "created"
        assert "since" not in params
        assert router.requests[0].headers["Authorization"] == "Bearer ghp_test_token_123"

    @pytest.mark.asyncio
    async def test_fetch_issues_incremental(self):
        router = Router({"/repos/octo/widgets/issues": []})
        since = datetime(2026, 2, 1, 8, 30, tzinfo=timezone.utc)

        async with _client(router) as client:
            await client.fetch_issues(since=since, include_closed=True)

        params = router.requests[0].url.params
        assert params["state"] == "all"
        assert params["sort"] == "updated"
        assert params["since"] == "2026-02-01T08:30:00Z"

    @pytest.mark.asyncio
    async def test_unmappable_issue_skipped(self):
        broken = _issue(2)
        del broken["created_at"]
        router = Router({"/repos/octo/widgets/issues": [_issue(1), broken]})

        async with _client(router) as client:
            issues = await client.fetch_issues()

        assert [i.number for i in issues] == [1]

    @pytest.mark.asyncio
    async def test_fetch_comments(self):
        router = Router(
            {
                "/repos/octo/widgets/issues/7/comments": [
                    {"user": {"login": "bob"}, "body": "Same here", "created_at": "2026-01-03T00:00:00Z"}
                ]
            }
        )
        async with _client(router) as client:
            comments = await client.fetch_comments(7)

        assert comments[0].author == "bob"
        assert comments[0].body == "Same here"

    @pytest.mark.asyncio
    async def test_fetch_timeline(self):
        router = Router(
            {
                "/repos/octo/widgets/issues/7/timeline": [
                    {
                        "event": "cross-referenced",
                        "source": {"issue": {"number": 9, "title": "Fix #7", "pull_request": {"merged_at": "2026-01-04T00:00:00Z"}}},
                    }
                ]
            }
        )
        async with _client(router) as client:
            refs = await client.fetch_timeline(7)

        assert [r.number for r in refs] == [9]

    @pytest.mark.asyncio
    async def test_fetch_labels(self):
        router = Router({"/repos/octo/widgets/labels": [{"name": "bug"}, {"name": "ui"}]})
        async with _client(router) as client:
            assert await client.fetch_labels() == ["bug", "ui"]

    @pytest.mark.asyncio
    async def test_fetch_org_members(self):
        router = Router({"/orgs/octo/members": [{"login": "maint"}]})
        async with _client(router) as client:
            assert await client.fetch_org_members() == ["maint"]

    @pytest.mark.asyncio
    async def test_org_members_for_user_account(self):
        router = Router(
            {"/orgs/octo/members": lambda request: httpx.Response(404, json={"message": "Not Found"})}
        )
        async with _client(router) as client:
            assert await client.fetch_org_members() == []


# =============================================================================
# Pagination
# =============================================================================


class TestPagination:
    @pytest.mark.asyncio
    async def test_follows_link_header(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json=[_issue(2)], headers=_headers())
            return httpx.Response(
                200,
                json=[_issue(1)],
                headers=_headers(
                    Link=f'<{BASE}/repos/octo/widgets/issues?page=2&per_page=100>; rel="next", '
                    f'<{BASE}/repos/octo/widgets/issues?page=2&per_page=100>; rel="last"'
                ),
            )

        router = Router({"/repos/octo/widgets/issues": handler})
        async with _client(router) as client:
            issues = await client.fetch_issues()

        assert [i.number for i in issues] == [1, 2]
        assert len(router.requests) == 2

    @pytest.mark.asyncio
    async def test_foreign_link_rejected(self):
        router = Router(
            {
                "/repos/octo/widgets/issues": lambda request: httpx.Response(
                    200,
                    json=[_issue(1)],
                    headers=_headers(Link='<https://evil.example.com/steal?page=2>; rel="next"'),
                )
            }
        )
        async with _client(router) as client:
            issues = await client.fetch_issues()

        assert [i.number for i in issues] == [1]
        assert len(router.requests) == 1


# =============================================================================
# Error handling
# =============================================================================


class TestErrorHandling:
    @pytest.mark.asyncio
    async def test_server_error_retried(self, no_sleep):
        router = Router(
            {
                "/repos/octo/widgets/labels": [
                    httpx.Response(502, headers=_headers()),
                    httpx.Response(200, json=[{"name": "bug"}], headers=_headers()),
                ]
            }
        )
        async with _client(router) as client:
            assert await client.fetch_labels() == ["bug"]

        assert len(router.requests) == 2
        no_sleep.assert_awaited()

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self):
        router = Router(
            {"/repos/octo/widgets/labels": lambda request: httpx.Response(503, headers=_headers())}
        )
        async with _client(router) as client:
            with pytest.raises(GitHubClientError) as exc_info:
                await client.fetch_labels()

        assert exc_info.value.status_code == 503
        assert len(router.requests) == GitHubClient.MAX_RETRIES + 1

    @pytest.mark.asyncio
    async def test_not_found_not_retried(self):
        router = Router(
            {
                "/repos/octo/widgets/issues/9/comments": lambda request: httpx.Response(
                    404, json={"message": "Not Found"}, headers=_headers()
                )
            }
        )
        async with _client(router) as client:
            with pytest.raises(GitHubClientError, match="Not Found") as exc_info:
                await client.fetch_comments(9)

        assert exc_info.value.status_code == 404
        assert len(router.requests) == 1

    @pytest.mark.asyncio
    async def test_primary_rate_limit_exhausted(self):
        reset = int(time.time()) + 30
        router = Router(
            {
                "/repos/octo/widgets/labels": lambda request: httpx.Response(
                    403,
                    json={"message": "API rate limit exceeded"},
                    headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(reset)},
                )
            }
        )
        async with _client(router) as client:
            with pytest.raises(RateLimitExceeded) as exc_info:
                await client.fetch_labels()

        assert exc_info.value.reset_at == datetime.fromtimestamp(reset, tz=timezone.utc)

    @pytest.mark.asyncio
    async def test_forbidden_without_rate_limit_not_retried(self):
        router = Router(
            {
                "/repos/octo/widgets/labels": lambda request: httpx.Response(
                    403, json={"message": "Resource not accessible"}, headers=_headers()
                )
            }
        )
        async with _client(router) as client:
            with pytest.raises(GitHubClientError, match="not accessible"):
                await client.fetch_labels()

        assert len(router.requests) == 1

    @pytest.mark.asyncio
    async def test_secondary_rate_limit_retried(self, no_sleep):
        router = Router(
            {
                "/repos/octo/widgets/labels": [
                    httpx.Response(429, headers=_headers(**{"Retry-After": "3"})),
                    httpx.Response(200, json=[], headers=_headers()),
                ]
            }
        )
        async with _client(router) as client:
            assert await client.fetch_labels() == []

        no_sleep.assert_any_await(3)

    @pytest.mark.asyncio
    async def test_timeout_retried_then_raised(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        router = Router({"/repos/octo/widgets/labels": handler})
        async with _client(router) as client:
            with pytest.raises(GitHubClientError, match="timeout"):
                await client.fetch_labels()

        assert len(router.requests) == GitHubClient.MAX_RETRIES + 1

    @pytest.mark.asyncio
    async def test_connection_error_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        router = Router({"/repos/octo/widgets/labels": handler})
        async with _client(router) as client:
            with pytest.raises(GitHubClientError, match="HTTP error"):
                await client.fetch_labels()
