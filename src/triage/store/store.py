"""Incremental issue store backed by a single versioned JSON snapshot.

The store owns every tracked record plus collection metadata. It is the only
place where raw content and derived state meet, so it enforces the central
invalidation rule: no digest or facet computed from content X survives a
transition away from X.

Persistence is a full-document atomic write (temporary file + rename).
There is exactly one writer per process; no locking is performed.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from ..config import TriageConfig, get_config
from ..errors import (
    CorruptStoreError,
    RecordNotFoundError,
    StoreExistsError,
    StoreNotFoundError,
)
from ..metrics import issue_upserts_total, store_saves_total
from .models import (
    FACET_FIELDS,
    Facet,
    FacetName,
    IssueComment,
    IssueDigest,
    IssueRecord,
    IssueSnapshot,
    IssueState,
    StoreMeta,
    StoreSnapshot,
    as_utc,
    empty_analysis,
    utc_now,
)

logger = logging.getLogger("issue_triage.store")

__all__ = ["STORE_FILENAME", "IssueStore", "UpsertAction", "UpsertResult"]

STORE_FILENAME = "store.json"

# Fields whose change invalidates the digest and every facet
SEMANTIC_FIELDS = frozenset({"title", "body"})
RAW_FIELDS = tuple(name for name in IssueSnapshot.model_fields if name != "number")


class UpsertAction(str, Enum):
    """Outcome of upserting one raw snapshot."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class UpsertResult:
    """Result of IssueStore.upsert.

    Attributes:
        action: created, updated (content changed) or unchanged
        state_changed: True when the open/closed state flipped
    """

    action: UpsertAction
    state_changed: bool = False


class IssueStore:
    """In-memory record set with snapshot persistence.

    Use the init/load/load_or_none constructors; the plain constructor does
    not touch the filesystem.

    Example:
        >>> store = IssueStore.init(Path(".issue-store"), "octo", "widgets")
        >>> store.upsert(snapshot).action
        <UpsertAction.CREATED: 'created'>
        >>> store.save()
    """

    def __init__(self, data: StoreSnapshot, path: Path):
        self._data = data
        self._path = path
        self._by_number: dict[int, IssueRecord] = {i.number: i for i in data.issues}

    # -- Construction ---------------------------------------------------

    @classmethod
    def init(
        cls, location: Path | str, owner: str, repo: str, force: bool = False
    ) -> "IssueStore":
        """Create and persist a new empty snapshot.

        Args:
            location: Store directory (store.json is created inside it)
            owner: Repository owner
            repo: Repository name
            force: Overwrite an existing snapshot

        Raises:
            StoreExistsError: If a snapshot exists and force is False
        """
        path = Path(location) / STORE_FILENAME
        if path.exists() and not force:
            raise StoreExistsError(path)

        store = cls(StoreSnapshot(meta=StoreMeta(owner=owner, repo=repo)), path)
        store.save()
        logger.info(
            "store_initialized",
            extra={"path": str(path), "repo": f"{owner}/{repo}", "forced": force},
        )
        return store

    @classmethod
    def load(cls, location: Path | str) -> "IssueStore":
        """Load and validate the snapshot at location.

        Missing nullable fields are filled with defaults; documents written
        by an older snapshot version are upgraded in memory.

        Raises:
            StoreNotFoundError: If no snapshot exists
            CorruptStoreError: If the document is not UTF-8 JSON or fails
                schema validation
        """
        path = Path(location) / STORE_FILENAME
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise StoreNotFoundError(path) from e
        except UnicodeDecodeError as e:
            logger.error("store_corrupt", extra={"path": str(path), "error": str(e)})
            raise CorruptStoreError(path, f"not valid UTF-8: {e}") from e

        try:
            data = StoreSnapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.error(
                "store_corrupt",
                extra={"path": str(path), "error_count": e.error_count()},
            )
            raise CorruptStoreError(path, str(e)) from e

        logger.debug(
            "store_loaded", extra={"path": str(path), "issues": len(data.issues)}
        )
        return cls(data, path)

    @classmethod
    def load_or_none(cls, location: Path | str) -> "IssueStore | None":
        """Load the snapshot, or return None when none exists.

        Corrupt snapshots still raise CorruptStoreError.
        """
        try:
            return cls.load(location)
        except StoreNotFoundError:
            return None

    @classmethod
    def from_config(cls, config: TriageConfig | None = None, create: bool = False) -> "IssueStore":
        """Open the store at config.store_path.

        Args:
            config: Settings to use; the global config when None
            create: Initialize an empty store for config.github_repo when
                none exists

        Raises:
            StoreNotFoundError: If no snapshot exists and create is False
            ValueError: If create is needed but github_repo is not set
        """
        config = config or get_config()
        store = cls.load_or_none(config.store_path)
        if store is not None:
            return store
        if not create:
            raise StoreNotFoundError(Path(config.store_path) / STORE_FILENAME)
        if not config.github_repo:
            raise ValueError("TRIAGE_GITHUB_REPO is required to initialize a store")
        return cls.init(config.store_path, config.repo_owner, config.repo_name)

    # -- Persistence ----------------------------------------------------

    @property
    def path(self) -> Path:
        """Snapshot file path."""
        return self._path

    def snapshot_bytes(self) -> bytes:
        """Serialized snapshot exactly as save() writes it."""
        return self._data.model_dump_json(indent=2).encode("utf-8")

    def save(self) -> None:
        """Write the full snapshot atomically.

        Writes to a uniquely named temporary file in the same directory, then
        renames it over the snapshot so readers never observe a partial write.

        Raises:
            OSError: If the write or rename fails (temporary file is removed)
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self._path.with_name(f"{self._path.name}.{uuid4().hex}.tmp")
        try:
            tmp_file.write_bytes(self.snapshot_bytes())
            tmp_file.replace(self._path)
        except OSError as e:
            store_saves_total.labels(status="failed").inc()
            logger.error("store_save_failed", extra={"path": str(self._path), "error": str(e)})
            tmp_file.unlink(missing_ok=True)
            raise
        store_saves_total.labels(status="success").inc()

    # -- Mutation -------------------------------------------------------

    def upsert(self, snapshot: IssueSnapshot) -> UpsertResult:
        """Insert or update a raw snapshot, invalidating stale derived state.

        1. Unknown id: create the record with empty digest and facets.
        2. Same content hash: refresh non-semantic fields only.
        3. Different content hash: replace raw content, recompute the hash,
           clear the digest and every facet.

        Args:
            snapshot: Raw issue from the tracker

        Returns:
            UpsertResult with the action taken and whether state changed
        """
        snapshot = snapshot.model_copy(deep=True)
        existing = self._by_number.get(snapshot.number)

        if existing is None:
            record = IssueRecord.from_snapshot(snapshot)
            self._data.issues.append(record)
            self._by_number[record.number] = record
            issue_upserts_total.labels(action=UpsertAction.CREATED.value).inc()
            return UpsertResult(UpsertAction.CREATED)

        state_changed = existing.state != snapshot.state
        new_hash = snapshot.fingerprint()

        if new_hash == existing.content_hash:
            for name in RAW_FIELDS:
                if name not in SEMANTIC_FIELDS:
                    setattr(existing, name, getattr(snapshot, name))
            action = UpsertAction.UNCHANGED
        else:
            for name in RAW_FIELDS:
                setattr(existing, name, getattr(snapshot, name))
            existing.content_hash = new_hash
            existing.digest = None
            existing.analysis = empty_analysis()
            action = UpsertAction.UPDATED
            logger.debug("issue_invalidated", extra={"number": existing.number})

        issue_upserts_total.labels(action=action.value).inc()
        return UpsertResult(action, state_changed=state_changed)

    def set_digest(self, number: int, digest: IssueDigest | None) -> None:
        """Replace a record's digest wholesale.

        Raises:
            RecordNotFoundError: If the id is unknown
        """
        self._require(number).digest = digest

    def set_facet(
        self, number: int, updates: Mapping[FacetName | str, Mapping[str, Any]]
    ) -> None:
        """Shallow-merge field updates into one or more facets of a record.

        Only the fields present in each update are overwritten. All updates
        are validated before any is applied.

        Args:
            number: Issue number
            updates: {facet_name: {field: value}} where field is one of
                value, reason, analyzed_at, details

        Raises:
            RecordNotFoundError: If the id is unknown
            ValueError: If a facet name or field is unknown
        """
        record = self._require(number)

        merged: dict[FacetName, Facet] = {}
        for name, fields in updates.items():
            facet_name = FacetName(name)
            unknown = set(fields) - FACET_FIELDS
            if unknown:
                raise ValueError(
                    f"Unknown facet field(s) for {facet_name.value}: {', '.join(sorted(unknown))}"
                )
            current = record.analysis[facet_name]
            merged[facet_name] = Facet.model_validate(
                {**current.model_dump(), **dict(fields)}
            )

        record.analysis.update(merged)

    def set_comments(
        self,
        number: int,
        comments: Iterable[IssueComment],
        fetched_at: datetime | None = None,
    ) -> None:
        """Replace cached comments and stamp comments_fetched_at.

        Raises:
            RecordNotFoundError: If the id is unknown
        """
        record = self._require(number)
        record.comments = list(comments)
        record.comments_fetched_at = as_utc(fetched_at) if fetched_at else utc_now()

    def update_meta(self, **fields: Any) -> StoreMeta:
        """Update collection metadata fields (validated)."""
        self._data.meta = StoreMeta.model_validate(
            {**self._data.meta.model_dump(), **fields}
        )
        return self._data.meta

    # -- Queries --------------------------------------------------------

    @property
    def meta(self) -> StoreMeta:
        """Collection metadata."""
        return self._data.meta

    def get(self, number: int) -> IssueRecord | None:
        """Get a record by issue number, or None."""
        return self._by_number.get(number)

    def query(
        self,
        state: IssueState | str = "all",
        has_digest: bool | None = None,
    ) -> list[IssueRecord]:
        """Return records matching the filter, in insertion order.

        Args:
            state: "open", "closed" or "all"
            has_digest: True/False to require presence/absence of a digest,
                None for no digest filter

        Returns:
            List of live records (mutations go through the store methods)
        """
        state_value = state.value if isinstance(state, IssueState) else state
        if state_value not in ("open", "closed", "all"):
            raise ValueError(f"Invalid state filter: {state_value!r}")

        result = []
        for record in self._data.issues:
            if state_value != "all" and record.state.value != state_value:
                continue
            if has_digest is not None and (record.digest is not None) != has_digest:
                continue
            result.append(record)
        return result

    def __len__(self) -> int:
        return len(self._data.issues)

    def _require(self, number: int) -> IssueRecord:
        record = self._by_number.get(number)
        if record is None:
            raise RecordNotFoundError(number)
        return record
