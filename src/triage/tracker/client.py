"""GitHub REST API client.

Async httpx-based client for the GitHub REST API v3 with token auth.
Implements Link header pagination, primary/secondary rate limit handling and
exponential backoff. Responses are mapped onto the store's raw record types,
so callers never see GitHub JSON.

Reference: https://docs.github.com/en/rest
"""

import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ValidationError

from ..config import TriageConfig
from ..store.models import IssueComment, IssueSnapshot

logger = logging.getLogger("issue_triage.tracker.client")

__all__ = [
    "GitHubClient",
    "GitHubClientError",
    "PullRequestRef",
    "RateLimitExceeded",
    "TrackerClient",
]


class GitHubClientError(Exception):
    """Raised when GitHub API request fails.

    Wraps httpx errors and HTTP errors for consistent error handling.
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimitExceeded(GitHubClientError):
    """Raised when GitHub rate limit is exhausted."""

    def __init__(self, reset_at: datetime, message: str = "Rate limit exceeded"):
        self.reset_at = reset_at
        super().__init__(f"{message}. Resets at {reset_at.isoformat()}", status_code=403)


class PullRequestRef(BaseModel):
    """A merged pull request that cross-references an issue."""

    number: int
    title: str = ""


class TrackerClient(Protocol):
    """Remote tracker operations the store and analyses depend on."""

    async def fetch_issues(
        self, since: datetime | None = None, include_closed: bool = False
    ) -> list[IssueSnapshot]: ...

    async def fetch_comments(self, number: int) -> list[IssueComment]: ...

    async def fetch_timeline(self, number: int) -> list[PullRequestRef]: ...

    async def fetch_labels(self) -> list[str]: ...

    async def fetch_org_members(self) -> list[str]: ...


def _format_since(since: datetime) -> str:
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return since.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def map_issue(raw: dict[str, Any]) -> IssueSnapshot:
    """Map a GitHub issue payload onto IssueSnapshot.

    Raises:
        ValidationError: If required fields are missing
    """
    labels = [
        label if isinstance(label, str) else (label.get("name") or "")
        for label in raw.get("labels") or []
    ]
    user = raw.get("user") or {}
    reactions = raw.get("reactions") or {}
    return IssueSnapshot(
        number=raw["number"],
        title=raw.get("title") or "",
        body=raw.get("body") or "",
        state="closed" if raw.get("state") == "closed" else "open",
        labels=[name for name in labels if name],
        assignees=[a["login"] for a in raw.get("assignees") or [] if a.get("login")],
        author=user.get("login") or "unknown",
        created_at=raw["created_at"],
        updated_at=raw["updated_at"],
        html_url=raw.get("html_url") or "",
        comment_count=raw.get("comments") or 0,
        reactions=reactions.get("total_count") or 0,
    )


def map_comment(raw: dict[str, Any]) -> IssueComment:
    """Map a GitHub issue comment payload onto IssueComment."""
    user = raw.get("user") or {}
    return IssueComment(
        author=user.get("login") or "unknown",
        body=raw.get("body") or "",
        created_at=raw["created_at"],
    )


def merged_pull_requests(events: list[dict[str, Any]]) -> list[PullRequestRef]:
    """Extract merged PRs from cross-reference events of an issue timeline.

    Each PR is reported once, in timeline order.
    """
    seen: set[int] = set()
    refs: list[PullRequestRef] = []
    for event in events:
        if event.get("event") != "cross-referenced":
            continue
        source_issue = (event.get("source") or {}).get("issue") or {}
        pull_request = source_issue.get("pull_request") or {}
        if not pull_request.get("merged_at"):
            continue
        number = source_issue.get("number")
        if number is None or number in seen:
            continue
        seen.add(number)
        refs.append(PullRequestRef(number=number, title=source_issue.get("title") or ""))
    return refs


class GitHubClient:
    """GitHub REST API client using httpx with Bearer token auth.

    Uses a long-lived httpx.AsyncClient with connection pooling.

    Attributes:
        base_url: GitHub API base URL (default: https://api.github.com)
        repo: Target repository in owner/repo format

    Example:
        >>> async with GitHubClient("ghp_token", "owner/repo") as client:
        ...     issues = await client.fetch_issues(include_closed=True)
    """

    BASE_URL = "https://api.github.com"

    # Rate limit constants
    LOW_QUOTA = 100  # below this many remaining requests, wait for the reset
    MIN_REQUEST_DELAY_MS = 100

    # Timeout configuration
    CONNECT_TIMEOUT = 5.0
    READ_TIMEOUT = 30.0
    WRITE_TIMEOUT = 5.0
    POOL_TIMEOUT = 5.0

    # Retry configuration
    MAX_RETRIES = 3
    BASE_BACKOFF = 2  # seconds, exponential: min(60, 2^attempt)
    MAX_BACKOFF = 60

    DEFAULT_PER_PAGE = 100

    def __init__(
        self,
        token: str,
        repo: str,
        base_url: str | None = None,
        min_delay_ms: int = MIN_REQUEST_DELAY_MS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize GitHub client with token authentication.

        Args:
            token: GitHub token
            repo: Target repository in owner/repo format
            base_url: GitHub API base URL (default: https://api.github.com)
            min_delay_ms: Minimum delay between requests in milliseconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        if "/" not in repo:
            raise ValueError(f"Repository must be in owner/repo format, got {repo!r}")
        self.repo = repo
        self.owner = repo.split("/", 1)[0]
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self._min_delay_s = min_delay_ms / 1000.0

        self._rate_limit_remaining: int | None = None
        self._rate_limit_reset: float | None = None
        self._last_request_time: float = 0.0

        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "issue-triage/1.0",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(
                connect=self.CONNECT_TIMEOUT,
                read=self.READ_TIMEOUT,
                write=self.WRITE_TIMEOUT,
                pool=self.POOL_TIMEOUT,
            ),
            transport=transport,
        )

    @classmethod
    def from_config(
        cls, config: TriageConfig, transport: httpx.AsyncBaseTransport | None = None
    ) -> "GitHubClient":
        """Build a client for config.github_repo using the configured token and base URL.

        Raises:
            ValueError: If github_repo is not set
        """
        if not config.github_repo:
            raise ValueError("TRIAGE_GITHUB_REPO is not set")
        return cls(
            config.github_token.get_secret_value(),
            config.github_repo,
            base_url=config.github_base_url,
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the httpx client and release connections."""
        await self._client.aclose()

    # --- Tracker operations ---

    async def fetch_issues(
        self, since: datetime | None = None, include_closed: bool = False
    ) -> list[IssueSnapshot]:
        """Fetch repository issues, excluding pull requests.

        Args:
            since: Only issues updated after this time (None = all)
            include_closed: Include closed issues

        Returns:
            Raw issue snapshots in ascending update order
        """
        params: dict[str, str] = {
            "state": "all" if include_closed else "open",
            "sort": "updated" if since else "created",
            "direction": "asc",
        }
        if since:
            params["since"] = _format_since(since)

        raw_issues = await self._paginate(f"/repos/{self.repo}/issues", params=params)

        snapshots: list[IssueSnapshot] = []
        for raw in raw_issues:
            if raw.get("pull_request"):
                continue
            try:
                snapshots.append(map_issue(raw))
            except (KeyError, ValidationError) as e:
                logger.warning(
                    "issue_mapping_failed",
                    extra={"number": raw.get("number"), "error": str(e)},
                )
        return snapshots

    async def fetch_comments(self, number: int) -> list[IssueComment]:
        """Fetch all comments on an issue, oldest first."""
        raw_comments = await self._paginate(
            f"/repos/{self.repo}/issues/{number}/comments"
        )
        return [map_comment(raw) for raw in raw_comments]

    async def fetch_timeline(self, number: int) -> list[PullRequestRef]:
        """Fetch merged pull requests that cross-reference an issue."""
        events = await self._paginate(f"/repos/{self.repo}/issues/{number}/timeline")
        return merged_pull_requests(events)

    async def fetch_labels(self) -> list[str]:
        """Fetch the names of all labels defined in the repository."""
        raw_labels = await self._paginate(f"/repos/{self.repo}/labels")
        return [label["name"] for label in raw_labels if label.get("name")]

    async def fetch_org_members(self) -> list[str]:
        """Fetch public members of the owning organization.

        Returns an empty list when the owner is a user account (404).
        """
        try:
            members = await self._paginate(f"/orgs/{self.owner}/members")
        except GitHubClientError as e:
            if e.status_code == 404:
                return []
            raise
        return [m["login"] for m in members if m.get("login")]

    # --- Rate limiting ---

    async def _pace(self) -> None:
        """Space requests out and wait for the quota reset when nearly exhausted."""
        if (
            self._rate_limit_remaining is not None
            and self._rate_limit_remaining < self.LOW_QUOTA
            and self._rate_limit_reset
        ):
            wait_time = self._rate_limit_reset - time.time()
            if wait_time > 0:
                logger.warning(
                    "rate_limit_low",
                    extra={"remaining": self._rate_limit_remaining, "wait_seconds": wait_time},
                )
                await asyncio.sleep(min(wait_time, self.MAX_BACKOFF))

        gap = self._min_delay_s - (time.monotonic() - self._last_request_time)
        if gap > 0:
            await asyncio.sleep(gap)

    def _track_quota(self, response: httpx.Response) -> None:
        for header, attr, cast in (
            ("X-RateLimit-Remaining", "_rate_limit_remaining", int),
            ("X-RateLimit-Reset", "_rate_limit_reset", float),
        ):
            raw = response.headers.get(header)
            if raw is None:
                continue
            try:
                setattr(self, attr, cast(raw))
            except ValueError:
                logger.warning("rate_limit_header_invalid", extra={"header": header, "value": raw})

    @staticmethod
    def _quota_exhausted(response: httpx.Response) -> bool:
        return response.status_code == 403 and response.headers.get("X-RateLimit-Remaining") == "0"

    @staticmethod
    def _retry_after(response: httpx.Response) -> int:
        try:
            return int(response.headers.get("Retry-After", "60"))
        except ValueError:
            return 60

    def _backoff(self, attempt: int) -> float:
        return float(min(self.MAX_BACKOFF, self.BASE_BACKOFF ** (attempt + 1)))

    def _retry_delay(self, response: httpx.Response, attempt: int) -> float | None:
        """Seconds to wait before retrying a failed response, None if not retryable."""
        if self._quota_exhausted(response):
            reset = float(response.headers.get("X-RateLimit-Reset", "0"))
            return min(max(1.0, reset - time.time()), self.MAX_BACKOFF)
        if response.status_code == 429:
            return float(self._retry_after(response))
        if response.status_code >= 500:
            return self._backoff(attempt) + random.uniform(0, 1)
        return None

    def _failure(self, response: httpx.Response) -> GitHubClientError:
        """Exception for a response that will not be retried (again)."""
        status = response.status_code
        if self._quota_exhausted(response):
            reset = float(response.headers.get("X-RateLimit-Reset", "0"))
            return RateLimitExceeded(datetime.fromtimestamp(reset, tz=timezone.utc))
        if status == 429:
            return RateLimitExceeded(
                datetime.fromtimestamp(time.time() + self._retry_after(response), tz=timezone.utc),
                "Secondary rate limit exceeded",
            )
        if status >= 500:
            return GitHubClientError(
                f"GitHub API server error {status} after {self.MAX_RETRIES} retries",
                status_code=status,
            )
        try:
            body = response.json() if response.content else {}
        except (ValueError, UnicodeDecodeError):
            body = {}
        message = body.get("message") if isinstance(body, dict) else None
        return GitHubClientError(
            f"GitHub API error {status}: {message or response.text}",
            status_code=status,
        )

    # --- Requests ---

    async def _get(self, url: str, params: dict[str, str] | None = None) -> httpx.Response:
        """GET with pacing and retries.

        Server errors, timeouts and rate limits are retried up to MAX_RETRIES
        times; other 4xx responses fail immediately.

        Raises:
            RateLimitExceeded: Rate limit still hit after the last retry
            GitHubClientError: Any other failed request
        """
        for attempt in range(self.MAX_RETRIES + 1):
            final = attempt == self.MAX_RETRIES
            await self._pace()
            self._last_request_time = time.monotonic()

            try:
                response = await self._client.get(url, params=params)
            except httpx.TimeoutException as e:
                if final:
                    raise GitHubClientError(
                        f"Request timeout after {self.MAX_RETRIES} retries: {e}"
                    ) from e
                delay = self._backoff(attempt)
                logger.warning(
                    "request_timeout",
                    extra={"url": url, "attempt": attempt + 1, "backoff": delay},
                )
                await asyncio.sleep(delay)
                continue
            except httpx.HTTPError as e:
                raise GitHubClientError(f"HTTP error: {e}") from e

            self._track_quota(response)
            if response.is_success:
                return response

            delay = None if final else self._retry_delay(response, attempt)
            if delay is None:
                raise self._failure(response)
            logger.warning(
                "request_retry",
                extra={"url": url, "status": response.status_code, "attempt": attempt + 1, "backoff": delay},
            )
            await asyncio.sleep(delay)

        raise GitHubClientError("Request failed after all retries")

    async def _paginate(
        self,
        path: str,
        params: dict[str, str] | None = None,
        max_pages: int = 100,
    ) -> list[dict[str, Any]]:
        """Collect every page of a list endpoint by following rel="next" links.

        Links pointing outside base_url are not followed.
        """
        items: list[dict[str, Any]] = []
        url: str | None = path
        page_params: dict[str, str] | None = {**(params or {}), "per_page": str(self.DEFAULT_PER_PAGE)}

        for page in range(max_pages):
            response = await self._get(url, params=page_params)
            data = response.json()
            items.extend(data.get("items", []) if isinstance(data, dict) else data)

            url = self._next_page(response)
            if url is None:
                break
            # the next link already carries the query string
            page_params = None
            logger.debug("paginating", extra={"page": page + 1, "items": len(items)})

        return items

    def _next_page(self, response: httpx.Response) -> str | None:
        url = response.links.get("next", {}).get("url")
        if not url:
            return None
        if not url.startswith(self.base_url + "/"):
            logger.warning("link_header_rejected", extra={"url": url[:100]})
            return None
        return url
