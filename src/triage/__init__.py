"""Issue triage: incremental issue store and batch enrichment pipeline.

Provides:
- Issue store with content-hash invalidation and atomic snapshots
- Batch enrichment of per-issue facets through an LLM engine
- Two-phase pipeline (detection, then enrichment with exclusions)
- GitHub sync of issues, digests and comments

Python Version: 3.10+ required
"""

from .__version__ import __version__
from .analyses import AnalysisContext, AnalysisKind, Phase, RunOptions, default_kinds
from .config import TriageConfig, get_config, reset_config
from .enrichment import AnthropicEngine, BatchRunner, EnrichmentEngine, ReviewSession
from .errors import (
    CorruptStoreError,
    RecordNotFoundError,
    StoreExistsError,
    StoreNotFoundError,
    TriageError,
)
from .logging_config import StructuredFormatter, configure_logging
from .pipeline import PipelineOptions, PipelineResult, PipelineState, run_pipeline
from .store import FacetName, IssueRecord, IssueStore
from .tracker import GitHubClient, IssueSyncService

__all__ = [
    "__version__",
    # Configuration
    "TriageConfig",
    "get_config",
    "reset_config",
    # Store
    "IssueStore",
    "IssueRecord",
    "FacetName",
    # Errors
    "TriageError",
    "StoreExistsError",
    "StoreNotFoundError",
    "CorruptStoreError",
    "RecordNotFoundError",
    # Enrichment
    "EnrichmentEngine",
    "AnthropicEngine",
    "BatchRunner",
    "ReviewSession",
    # Analyses and pipeline
    "AnalysisKind",
    "AnalysisContext",
    "Phase",
    "RunOptions",
    "default_kinds",
    "PipelineOptions",
    "PipelineResult",
    "PipelineState",
    "run_pipeline",
    # Tracker
    "GitHubClient",
    "IssueSyncService",
    # Logging
    "configure_logging",
    "StructuredFormatter",
]
