"""Issue sync service: pull tracker state into the issue store.

One sync cycle:
    fetch issues (incremental since last_synced_at) -> upsert -> save
    -> digest records without one -> refresh stale comment caches

Fetching the issue list is the only fatal step. Digest and comment
failures are fail-open: counted in SyncResult, partial work saved.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..analyses.prompts import build_digest_prompt
from ..analyses.responses import DigestResponse
from ..config import TriageConfig, get_config
from ..enrichment.engine import EnrichmentEngine
from ..enrichment.runner import chunked
from ..store.models import IssueDigest, IssueRecord, utc_now
from ..store.store import IssueStore, UpsertAction
from .client import GitHubClientError, TrackerClient

logger = logging.getLogger("issue_triage.tracker.sync")

__all__ = ["IssueSyncService", "SyncResult"]


@dataclass
class SyncResult:
    """Result of one sync cycle.

    Tracks upsert counts, derived-state refreshes, errors and timing.
    """

    fetched: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    state_changed: int = 0
    digested: int = 0
    comments_refreshed: int = 0
    comment_failures: int = 0
    errors: int = 0
    duration_seconds: float = 0.0
    error_details: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for logging."""
        return {
            "fetched": self.fetched,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "state_changed": self.state_changed,
            "digested": self.digested,
            "comments_refreshed": self.comments_refreshed,
            "comment_failures": self.comment_failures,
            "errors": self.errors,
            "duration_seconds": round(self.duration_seconds, 2),
        }


def needs_comment_refresh(record: IssueRecord) -> bool:
    """Comments exist remotely and the cache is missing or out of date."""
    return record.comment_count > 0 and (
        record.comments_fetched_at is None
        or len(record.comments) != record.comment_count
    )


class IssueSyncService:
    """Keeps an IssueStore in step with the remote tracker.

    Attributes:
        store: Target issue store
        client: Tracker client (caller owns its lifecycle)
        engine: Enrichment engine for digests; None skips digest generation
        config: Batch sizes and include_closed default
    """

    def __init__(
        self,
        store: IssueStore,
        client: TrackerClient,
        engine: EnrichmentEngine | None = None,
        config: TriageConfig | None = None,
        dry_run: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.client = client
        self.engine = engine
        self.config = config or get_config()
        self.dry_run = dry_run
        self._clock = clock

    async def sync(self, include_closed: bool | None = None, full: bool = False) -> SyncResult:
        """Run one sync cycle.

        Args:
            include_closed: Also fetch closed issues (default from config)
            full: Ignore last_synced_at and fetch everything

        Returns:
            SyncResult with counts and timing

        Raises:
            GitHubClientError: If the issue list cannot be fetched
        """
        start = time.monotonic()
        result = SyncResult()
        started_at = self._clock()
        if include_closed is None:
            include_closed = self.config.include_closed
        since = None if full else self.store.meta.last_synced_at

        logger.info(
            "sync_started",
            extra={
                "repo": self.store.meta.full_name,
                "mode": "full" if since is None else "incremental",
                "include_closed": include_closed,
            },
        )

        snapshots = await self.client.fetch_issues(since=since, include_closed=include_closed)
        result.fetched = len(snapshots)

        for snapshot in snapshots:
            upsert = self.store.upsert(snapshot)
            if upsert.action is UpsertAction.CREATED:
                result.created += 1
            elif upsert.action is UpsertAction.UPDATED:
                result.updated += 1
            else:
                result.unchanged += 1
            if upsert.state_changed:
                result.state_changed += 1

        meta_updates: dict[str, Any] = {
            "last_synced_at": started_at,
            "total_fetched": len(self.store),
        }
        if not self.store.meta.org_members:
            members = await self._fetch_org_members(result)
            if members:
                meta_updates["org_members"] = members
        self.store.update_meta(**meta_updates)
        self._save()

        if self.engine is not None:
            await self.generate_digests(result)
        await self.refresh_comments(result)

        result.duration_seconds = time.monotonic() - start
        logger.info("sync_completed", extra=result.to_dict())
        return result

    async def generate_digests(self, result: SyncResult | None = None) -> int:
        """Digest every record without one, chunk by chunk.

        Records the engine omits stay undigested and are retried next sync.
        An engine failure stops digest generation; earlier chunks are kept.

        Returns:
            Number of records digested
        """
        if self.engine is None:
            raise ValueError("Digest generation requires an enrichment engine")
        result = result if result is not None else SyncResult()

        pending = self.store.query(has_digest=False)
        if not pending:
            return 0

        logger.info("digests_started", extra={"pending": len(pending)})
        digested = 0
        for chunk in chunked(pending, self.config.digest_batch_size):
            try:
                parsed = await self.engine.analyze(build_digest_prompt(chunk), DigestResponse)
            except Exception as e:
                result.errors += 1
                result.error_details.append(f"digests: {e}")
                logger.error("digest_chunk_failed", extra={"error": str(e)})
                break

            members = {r.number for r in chunk}
            if parsed is not None:
                for item in parsed.digests:
                    if item.number not in members:
                        logger.warning(
                            "result_outside_chunk",
                            extra={"kind": "digest", "number": item.number},
                        )
                        continue
                    self.store.set_digest(
                        item.number,
                        IssueDigest(
                            summary=item.summary,
                            category=item.category,
                            affected_area=item.affected_area,
                            keywords=item.keywords,
                            digested_at=self._clock(),
                        ),
                    )
                    digested += 1
            self._save()

        result.digested += digested
        logger.info("digests_completed", extra={"digested": digested, "pending": len(pending)})
        return digested

    async def refresh_comments(self, result: SyncResult | None = None) -> int:
        """Re-fetch comments for records whose cache is missing or stale.

        Per-record failures are counted and skipped.

        Returns:
            Number of records whose comments were refreshed
        """
        result = result if result is not None else SyncResult()
        targets = [r for r in self.store.query() if needs_comment_refresh(r)]
        if not targets:
            return 0

        refreshed = 0
        for record in targets:
            try:
                comments = await self.client.fetch_comments(record.number)
            except GitHubClientError as e:
                result.comment_failures += 1
                result.error_details.append(f"comments #{record.number}: {e}")
                logger.warning(
                    "comment_fetch_failed",
                    extra={"number": record.number, "error": str(e)},
                )
                continue
            self.store.set_comments(record.number, comments, fetched_at=self._clock())
            refreshed += 1

        if refreshed:
            self._save()
        result.comments_refreshed += refreshed
        logger.info(
            "comments_refreshed",
            extra={"refreshed": refreshed, "failed": len(targets) - refreshed},
        )
        return refreshed

    async def _fetch_org_members(self, result: SyncResult) -> list[str]:
        try:
            return await self.client.fetch_org_members()
        except GitHubClientError as e:
            result.errors += 1
            result.error_details.append(f"org_members: {e}")
            logger.warning("org_members_fetch_failed", extra={"error": str(e)})
            return []

    def _save(self) -> None:
        if not self.dry_run:
            self.store.save()
