"""Exception hierarchy for the issue store and enrichment pipeline.

Load-time failures (CorruptStoreError) are fatal: the caller must re-init or
repair the snapshot. RecordNotFoundError signals a programmer error and is
raised immediately, never recovered from.
"""

from pathlib import Path

__all__ = [
    "CorruptStoreError",
    "RecordNotFoundError",
    "StoreExistsError",
    "StoreNotFoundError",
    "TriageError",
]


class TriageError(Exception):
    """Base class for all issue-triage errors."""

    pass


class StoreExistsError(TriageError):
    """Raised by init when a snapshot already exists and force is not set."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Store already exists at {path}. Use force=True to re-initialize.")


class StoreNotFoundError(TriageError):
    """Raised by load when no snapshot exists at the given location."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Store not found at {path}. Run init first.")


class CorruptStoreError(TriageError):
    """Raised when a snapshot fails JSON parsing or schema validation."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupt store at {path}: {reason}")


class RecordNotFoundError(TriageError, KeyError):
    """Raised when mutating a digest or facet of an unknown record id."""

    def __init__(self, number: int):
        self.number = number
        super().__init__(f"Issue #{number} not found in store")

    def __str__(self) -> str:
        return self.args[0]
