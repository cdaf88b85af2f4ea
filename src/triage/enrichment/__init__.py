"""Candidate selection, batch runner, engine adapter and review sessions."""

from .engine import AnthropicEngine, EnrichmentEngine, parse_structured
from .runner import BatchResult, BatchRunner, BatchSpec, chunked
from .selector import is_due, select_candidates
from .session import ReviewSession

__all__ = [
    "AnthropicEngine",
    "BatchResult",
    "BatchRunner",
    "BatchSpec",
    "EnrichmentEngine",
    "ReviewSession",
    "chunked",
    "is_due",
    "parse_structured",
    "select_candidates",
]
