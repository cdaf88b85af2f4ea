"""Generic batch enrichment runner shared by every analysis kind.

Kinds differ only in how they build a prompt, how they map engine output
onto a facet, and what they record when the engine says nothing about a
candidate. Everything else lives here:

    candidates -> fixed-size chunks -> engine -> merge/fallback -> persist

Every candidate in a processed chunk leaves with analyzed_at stamped, so a
record the engine stays silent about is not re-offered on the next run
unless forced or its comments change.
"""

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from ..metrics import record_chunk
from ..store.models import FacetName, IssueRecord, utc_now
from ..store.store import IssueStore
from .engine import EnrichmentEngine

logger = logging.getLogger("issue_triage.enrichment.runner")

__all__ = ["BatchResult", "BatchRunner", "BatchSpec", "chunked"]

ItemT = TypeVar("ItemT")

FacetUpdate = Mapping[str, Any]


def chunked(items: Sequence[Any], size: int) -> list[list[Any]]:
    """Split items into consecutive lists of size (last may be smaller).

    Raises:
        ValueError: If size is less than 1
    """
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


@dataclass
class BatchSpec(Generic[ItemT]):
    """Parameterization of one runner invocation.

    Attributes:
        facet: Facet written by this run
        build_prompt: (chunk, store) -> prompt text
        response_model: Pydantic model the engine output is parsed into
        extract: parsed response -> iterable of (issue number, item)
        merge: (item, record) -> facet field update for a returned item
        fallback: record -> facet field update for a silent candidate
        produces: Whether a merged item counts as a reported result
            (e.g. "no duplicate" is merged but not reported)
    """

    facet: FacetName
    build_prompt: Callable[[list[IssueRecord], IssueStore], str]
    response_model: type[BaseModel]
    extract: Callable[[BaseModel], Iterable[tuple[int, ItemT]]]
    merge: Callable[[ItemT, IssueRecord], FacetUpdate]
    fallback: Callable[[IssueRecord], FacetUpdate]
    produces: Callable[[ItemT], bool] | None = None


@dataclass
class BatchResult(Generic[ItemT]):
    """Outcome of one runner invocation.

    Attributes:
        items: Produced (number, item) results; fallbacks excluded
        chunks: Chunks submitted to the engine
        merged: Candidates updated from engine output
        fallbacks: Candidates stamped with the fallback outcome
        message: Set when nothing was run (e.g. no candidates)
    """

    items: list[tuple[int, ItemT]] = field(default_factory=list)
    chunks: int = 0
    merged: int = 0
    fallbacks: int = 0
    message: str | None = None

    @classmethod
    def empty(cls, message: str) -> "BatchResult":
        """Result for a run that had nothing to do."""
        return cls(message=message)

    @property
    def processed(self) -> int:
        """Candidates stamped during the run."""
        return self.merged + self.fallbacks

    def to_dict(self) -> dict:
        """Convert to dictionary for logging."""
        return {
            "produced": len(self.items),
            "chunks": self.chunks,
            "merged": self.merged,
            "fallbacks": self.fallbacks,
            "message": self.message,
        }


class BatchRunner:
    """Chunk candidates, invoke the engine, merge, stamp and persist.

    Args:
        store: Issue store to mutate
        engine: Enrichment engine
        dry_run: Mutate in memory only, never save
        clock: Source of analyzed_at timestamps
    """

    def __init__(
        self,
        store: IssueStore,
        engine: EnrichmentEngine,
        dry_run: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.engine = engine
        self.dry_run = dry_run
        self.clock = clock

    async def run(
        self,
        spec: BatchSpec[ItemT],
        candidates: Sequence[IssueRecord],
        chunk_size: int,
    ) -> BatchResult[ItemT]:
        """Process candidates chunk by chunk.

        An exception raised by the engine aborts the current chunk and
        propagates; chunks processed before it stay persisted.

        Args:
            spec: Kind-specific prompt/merge/fallback parameters
            candidates: Records to process, in order
            chunk_size: Candidates per engine call (>= 1)

        Returns:
            BatchResult with produced items and counters
        """
        kind = spec.facet.value
        if not candidates:
            logger.info("no_candidates", extra={"kind": kind})
            return BatchResult.empty(f"No issues need {kind} analysis")

        chunks = chunked(candidates, chunk_size)
        result: BatchResult[ItemT] = BatchResult()

        logger.info(
            "batch_started",
            extra={
                "kind": kind,
                "candidates": len(candidates),
                "chunks": len(chunks),
                "dry_run": self.dry_run,
            },
        )

        for index, chunk in enumerate(chunks, start=1):
            try:
                parsed = await self.engine.analyze(
                    spec.build_prompt(chunk, self.store), spec.response_model
                )
            except Exception as e:
                record_chunk(kind, "failed")
                logger.error(
                    "chunk_failed",
                    extra={"kind": kind, "chunk": index, "error": str(e)},
                )
                raise

            merged, fallbacks = self._apply(spec, chunk, parsed, result)
            result.chunks += 1
            result.merged += merged
            result.fallbacks += fallbacks

            if not self.dry_run:
                self.store.save()

            record_chunk(
                kind,
                "parsed" if parsed is not None else "unparsed",
                merged=merged,
                fallbacks=fallbacks,
            )
            logger.debug(
                "chunk_completed",
                extra={
                    "kind": kind,
                    "chunk": index,
                    "total_chunks": len(chunks),
                    "merged": merged,
                    "fallbacks": fallbacks,
                },
            )

        logger.info("batch_completed", extra={"kind": kind, **result.to_dict()})
        return result

    def _apply(
        self,
        spec: BatchSpec[ItemT],
        chunk: list[IssueRecord],
        parsed: BaseModel | None,
        result: BatchResult[ItemT],
    ) -> tuple[int, int]:
        now = self.clock()
        members = {record.number: record for record in chunk}
        returned: set[int] = set()

        if parsed is not None:
            for number, item in spec.extract(parsed):
                record = members.get(number)
                if record is None:
                    logger.warning(
                        "result_outside_chunk",
                        extra={"kind": spec.facet.value, "number": number},
                    )
                    continue
                if number in returned:
                    continue
                update = {**spec.merge(item, record), "analyzed_at": now}
                self.store.set_facet(number, {spec.facet: update})
                returned.add(number)
                if spec.produces is None or spec.produces(item):
                    result.items.append((number, item))

        fallbacks = 0
        for record in chunk:
            if record.number in returned:
                continue
            update = {**spec.fallback(record), "analyzed_at": now}
            self.store.set_facet(record.number, {spec.facet: update})
            fallbacks += 1

        return len(returned), fallbacks
