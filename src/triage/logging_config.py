"""Structured logging configuration for issue triage.

- JSON structured logging with StructuredFormatter
- Logger hierarchy under the issue_triage namespace
- Level and format from TriageConfig (TRIAGE_LOG_LEVEL, TRIAGE_LOG_FORMAT)

Modules log event names ("batch_completed", "sync_started") and pass the
details through ``extra=``; both formatters render those extras.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from .config import TriageConfig, get_config

ROOT_LOGGER = "issue_triage"

REDACTED = "[REDACTED]"

# Matched against the whole key and against each "_" separated part,
# so github_token and anthropic_api_key are caught but keywords is not.
SENSITIVE_KEYS = {
    "password", "token", "secret", "apikey", "api_key",
    "authorization", "credential", "auth", "key", "bearer",
}

# Attributes every LogRecord carries; anything else came from extra=
RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return lowered in SENSITIVE_KEYS or any(
        part in SENSITIVE_KEYS for part in lowered.split("_")
    )


def redact(value: Any) -> Any:
    """Replace values under sensitive keys, descending into nested dicts."""
    if isinstance(value, dict):
        return {
            k: REDACTED if is_sensitive(str(k)) else redact(v)
            for k, v in value.items()
        }
    return value


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Extras attached to a record, redacted."""
    return redact(
        {
            k: v
            for k, v in record.__dict__.items()
            if k not in RESERVED_ATTRS and not k.startswith("_")
        }
    )


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter.

    Outputs one JSON object per line with:
    - timestamp: UTC ISO 8601 format with 'Z' suffix
    - level: Log level name (INFO, ERROR, etc.)
    - logger: Logger name (issue_triage hierarchy)
    - message: Event name such as "batch_completed"
    - context: Extras from the LogRecord, when present
    - exception: Formatted traceback, when the record carries one

    Security: Sensitive keys (token, api_key, etc.) are redacted to prevent
    accidental credential leakage in logs.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = record_context(record)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Datetimes, paths and enums in extras serialize via str()
        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for local runs (TRIAGE_LOG_FORMAT=text).

    Extras are appended as key=value pairs after the event name.
    """

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        pairs = " ".join(f"{k}={v}" for k, v in context.items())
        head, sep, tail = line.partition("\n")
        return f"{head} {pairs}{sep}{tail}"


def configure_logging(
    level: Optional[str] = None,
    log_format: Optional[str] = None,
    config: Optional[TriageConfig] = None,
) -> None:
    """Attach a stream handler to the issue_triage logger.

    Calling again reconfigures the existing handler instead of adding one.

    Args:
        level: Log level override. Defaults to config.log_level
            (TRIAGE_LOG_LEVEL). Unknown names fall back to INFO.
        log_format: "json" or "text". Defaults to config.log_format
            (TRIAGE_LOG_FORMAT).
        config: Settings to read defaults from; the global config when None
    """
    if level is None or log_format is None:
        config = config or get_config()
        level = level or config.log_level
        log_format = log_format or config.log_format
    log_format = log_format.lower()

    formatter = TextFormatter() if log_format == "text" else StructuredFormatter()

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(LEVELS.get(level.upper(), logging.INFO))

    if not logger.handlers:
        logger.addHandler(logging.StreamHandler())
    for handler in logger.handlers:
        handler.setFormatter(formatter)

    # Records stop here; the root logger would print them a second time
    logger.propagate = False
