"""Prometheus metrics for the issue store and enrichment pipeline.

All metrics use the `issue_triage_*` prefix. Label values are bounded:
kind ids come from the constructed analysis kind list, never from user input.
"""

import logging

from prometheus_client import Counter, Histogram

logger = logging.getLogger("issue_triage.metrics")

__all__ = [
    "engine_latency_seconds",
    "engine_requests_total",
    "enrichment_chunks_total",
    "facet_writes_total",
    "issue_upserts_total",
    "pipeline_kind_runs_total",
    "record_chunk",
    "record_engine_call",
    "record_kind_run",
    "store_saves_total",
]

# =============================================================================
# STORE
# =============================================================================

issue_upserts_total = Counter(
    "issue_triage_upserts_total",
    "Issue upserts by outcome",
    ["action"],
    # action: created, updated, unchanged
)

store_saves_total = Counter(
    "issue_triage_store_saves_total",
    "Snapshot save attempts",
    ["status"],
    # status: success, failed
)

# =============================================================================
# ENRICHMENT
# =============================================================================

enrichment_chunks_total = Counter(
    "issue_triage_enrichment_chunks_total",
    "Chunks submitted to the enrichment engine",
    ["kind", "outcome"],
    # outcome: parsed, unparsed, failed
)

facet_writes_total = Counter(
    "issue_triage_facet_writes_total",
    "Facet updates written to the store",
    ["kind", "outcome"],
    # outcome: merged, fallback, reset
)

engine_requests_total = Counter(
    "issue_triage_engine_requests_total",
    "Enrichment engine invocations",
    ["status"],
    # status: parsed, unparsed, error
)

engine_latency_seconds = Histogram(
    "issue_triage_engine_latency_seconds",
    "Enrichment engine latency",
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)

# =============================================================================
# PIPELINE
# =============================================================================

pipeline_kind_runs_total = Counter(
    "issue_triage_pipeline_kind_runs_total",
    "Analysis kind executions inside a pipeline run",
    ["kind", "phase", "status"],
    # status: success, failed, skipped
)

# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def record_chunk(kind: str, outcome: str, merged: int = 0, fallbacks: int = 0):
    """Record one processed chunk and the facet writes it produced.

    Args:
        kind: Analysis kind id (e.g. "priority")
        outcome: parsed, unparsed or failed
        merged: Number of facets written from engine results
        fallbacks: Number of facets written with the fallback outcome
    """
    enrichment_chunks_total.labels(kind=kind, outcome=outcome).inc()
    if merged:
        facet_writes_total.labels(kind=kind, outcome="merged").inc(merged)
    if fallbacks:
        facet_writes_total.labels(kind=kind, outcome="fallback").inc(fallbacks)

    logger.debug(
        "chunk_recorded",
        extra={"kind": kind, "outcome": outcome, "merged": merged, "fallbacks": fallbacks},
    )


def record_engine_call(status: str, latency_seconds: float):
    """Record an enrichment engine invocation.

    Args:
        status: parsed, unparsed or error
        latency_seconds: Wall time of the call including retries
    """
    engine_requests_total.labels(status=status).inc()
    engine_latency_seconds.observe(latency_seconds)


def record_kind_run(kind: str, phase: str, status: str):
    """Record the outcome of one analysis kind inside a pipeline run."""
    pipeline_kind_runs_total.labels(kind=kind, phase=phase, status=status).inc()
