"""GitHub tracker integration.

Provides the async REST client (rate limiting, retry, Link pagination) and
the sync service that pulls issues, digests and comments into the store.
"""

from .client import (
    GitHubClient,
    GitHubClientError,
    PullRequestRef,
    RateLimitExceeded,
    TrackerClient,
    map_comment,
    map_issue,
    merged_pull_requests,
)
from .sync import IssueSyncService, SyncResult

__all__ = [
    "GitHubClient",
    "GitHubClientError",
    "IssueSyncService",
    "PullRequestRef",
    "RateLimitExceeded",
    "SyncResult",
    "TrackerClient",
    "map_comment",
    "map_issue",
    "merged_pull_requests",
]
