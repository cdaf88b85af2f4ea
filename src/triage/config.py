"""Configuration management with pydantic-settings for issue triage.

- Automatic .env file loading with proper precedence
- TRIAGE_ environment variable prefix
- SecretStr for tokens and API keys
- Frozen config (immutable after load)

Batch sizes and thresholds default to values tuned for Claude Sonnet with a
4096 token response budget.
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("issue_triage.config")

__all__ = [
    "DEFAULT_LLM_MODEL",
    "DEFAULT_STORE_PATH",
    "TriageConfig",
    "get_config",
    "reset_config",
]

DEFAULT_LLM_MODEL = "claude-sonnet-4-20250514"
DEFAULT_STORE_PATH = Path(".issue-triage")

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class TriageConfig(BaseSettings):
    """Configuration for the issue store and enrichment pipeline.

    Loads from (in order of precedence):
    1. Environment variables (highest priority)
    2. .env file in the working directory
    3. Default values (lowest priority)

    Attributes:
        store_path: Directory holding store.json
        github_token: GitHub token for API access
        github_repo: Tracked repository (owner/repo)
        github_base_url: GitHub REST API base URL
        include_closed: Sync closed issues as well as open ones
        anthropic_api_key: Anthropic API key for the enrichment engine
        llm_model: Claude model id
        llm_max_tokens: Response token budget per engine call
        llm_timeout: Per-request timeout in seconds
        llm_max_retries: Retries on rate limit/overload
        digest_batch_size .. done_detector_batch_size: Issues per engine call
        min_duplicate_confidence: Duplicates below this are stored as none
        stale_days_threshold: Inactivity (days) before an issue is a stale candidate
        stale_close_days: Grace period quoted in stale close comments
        log_level: Logging level
        log_format: json for production, text for development
    """

    model_config = SettingsConfigDict(
        env_prefix="TRIAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        validate_default=True,
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    # Store
    store_path: Path = Field(
        default=DEFAULT_STORE_PATH,
        description="Directory holding the store snapshot (store.json)",
    )

    # GitHub
    github_token: SecretStr = Field(
        default=SecretStr(""),
        validation_alias=AliasChoices("TRIAGE_GITHUB_TOKEN", "GITHUB_TOKEN", "github_token"),
        description="GitHub token (issues:read is sufficient)",
    )
    github_repo: str = Field(
        default="",
        description="Tracked repository (owner/repo)",
    )
    github_base_url: str = Field(
        default="https://api.github.com",
        description="GitHub REST API base URL (override for GitHub Enterprise)",
    )
    include_closed: bool = Field(
        default=False,
        description="Sync closed issues as well as open ones",
    )

    # Enrichment engine
    anthropic_api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias=AliasChoices(
            "TRIAGE_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY", "anthropic_api_key"
        ),
        description="Anthropic API key",
    )
    llm_model: str = Field(default=DEFAULT_LLM_MODEL, description="Claude model id")
    llm_max_tokens: int = Field(default=4096, ge=256, le=64000)
    llm_timeout: float = Field(default=120.0, ge=5.0, le=600.0)
    llm_max_retries: int = Field(default=3, ge=0, le=10)

    # Batch sizes (issues per engine call)
    digest_batch_size: int = Field(default=20, ge=1, le=100)
    duplicate_batch_size: int = Field(default=30, ge=1, le=100)
    priority_batch_size: int = Field(default=20, ge=1, le=100)
    security_batch_size: int = Field(default=20, ge=1, le=100)
    label_batch_size: int = Field(default=20, ge=1, le=100)
    missing_info_batch_size: int = Field(default=15, ge=1, le=100)
    recurring_batch_size: int = Field(default=15, ge=1, le=100)
    needs_response_batch_size: int = Field(default=15, ge=1, le=100)
    done_detector_batch_size: int = Field(default=10, ge=1, le=100)

    # Thresholds
    min_duplicate_confidence: float = Field(default=0.80, ge=0.0, le=1.0)
    stale_days_threshold: int = Field(default=90, ge=1, le=3650)
    stale_close_days: int = Field(default=14, ge=1, le=365)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")

    @field_validator("store_path", mode="before")
    @classmethod
    def expand_user_paths(cls, v):
        """Expand ~ and environment variables in paths."""
        if isinstance(v, str):
            return Path(os.path.expanduser(os.path.expandvars(v)))
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        """Accept any case, reject unknown levels."""
        level = str(v).upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level '{v}'. Expected one of: {', '.join(sorted(VALID_LOG_LEVELS))}"
            )
        return level

    @model_validator(mode="after")
    def validate_github_repo(self) -> "TriageConfig":
        """github_repo, when set, must be owner/repo."""
        if self.github_repo:
            owner, _, name = self.github_repo.partition("/")
            if not owner or not name or "/" in name:
                raise ValueError("TRIAGE_GITHUB_REPO must be in owner/repo format")
        return self

    @property
    def repo_owner(self) -> str:
        """Owner part of github_repo ("" when unset)."""
        return self.github_repo.partition("/")[0]

    @property
    def repo_name(self) -> str:
        """Name part of github_repo ("" when unset)."""
        return self.github_repo.partition("/")[2]


@lru_cache(maxsize=1)
def get_config() -> TriageConfig:
    """Get global configuration singleton.

    First call loads from environment + .env file, subsequent calls return
    the cached instance.

    Raises:
        ValidationError: If configuration values are invalid.

    Example:
        >>> config = get_config()
        >>> config.digest_batch_size
        20
    """
    return TriageConfig()


def reset_config() -> None:
    """Reset configuration singleton for testing.

    Warning:
        Only use in test code. Production code should not reset config.
    """
    get_config.cache_clear()
