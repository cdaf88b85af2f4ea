"""Analysis kinds and the default kind list.

There is no global registry: callers build an explicit list, usually with
default_kinds(config), and hand it to run_pipeline().
"""

from collections.abc import Callable
from datetime import datetime

from ..config import TriageConfig, get_config
from ..store.models import utc_now
from .base import NO_SUGGESTION, AnalysisContext, AnalysisKind, Phase, Preparation, RunOptions
from .claims import ClaimKind
from .detection import DoneKind, DuplicatesKind
from .enrichment import (
    GoodFirstIssueKind,
    LabelsKind,
    MissingInfoKind,
    NeedsResponseKind,
    PriorityKind,
    QualityKind,
    RecurringKind,
    SecurityKind,
    StaleKind,
)

__all__ = [
    "NO_SUGGESTION",
    "AnalysisContext",
    "AnalysisKind",
    "ClaimKind",
    "DoneKind",
    "DuplicatesKind",
    "GoodFirstIssueKind",
    "LabelsKind",
    "MissingInfoKind",
    "NeedsResponseKind",
    "Phase",
    "Preparation",
    "PriorityKind",
    "QualityKind",
    "RecurringKind",
    "RunOptions",
    "SecurityKind",
    "StaleKind",
    "default_kinds",
]


def default_kinds(
    config: TriageConfig | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> list[AnalysisKind]:
    """Build every analysis kind with batch sizes and thresholds from config.

    Detection kinds come first, in the order they run.
    """
    config = config or get_config()
    return [
        DuplicatesKind(config.duplicate_batch_size, config.min_duplicate_confidence),
        DoneKind(config.done_detector_batch_size),
        PriorityKind(config.priority_batch_size),
        SecurityKind(config.security_batch_size),
        StaleKind(
            config.priority_batch_size,
            days_threshold=config.stale_days_threshold,
            close_days=config.stale_close_days,
            clock=clock,
        ),
        QualityKind(config.priority_batch_size),
        MissingInfoKind(config.missing_info_batch_size),
        NeedsResponseKind(config.needs_response_batch_size),
        LabelsKind(config.label_batch_size),
        GoodFirstIssueKind(config.priority_batch_size),
        RecurringKind(config.recurring_batch_size),
        ClaimKind(),
    ]
