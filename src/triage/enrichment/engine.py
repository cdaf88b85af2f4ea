"""Enrichment engine: prompt in, parsed structured result (or None) out.

The core depends only on the EnrichmentEngine protocol. AnthropicEngine is
the shipped implementation: Claude via the Anthropic async SDK, with
exponential backoff on rate limits and overload, and tolerant JSON
extraction from the model's text response.

Contract:
    analyze() never raises for malformed model output; a response that
    cannot be parsed into the expected shape is returned as None.
    Transport/API failures that survive the retry policy do raise.
"""

import json
import logging
import re
import time
from typing import Protocol, TypeVar

from anthropic import APIStatusError, AsyncAnthropic, RateLimitError
from pydantic import BaseModel, ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from ..config import TriageConfig, get_config
from ..metrics import record_engine_call

logger = logging.getLogger("issue_triage.enrichment.engine")

__all__ = ["AnthropicEngine", "EnrichmentEngine", "parse_structured"]

T = TypeVar("T", bound=BaseModel)

# HTTP statuses worth retrying: rate limit, overload
RETRYABLE_STATUSES = (429, 529)


class EnrichmentEngine(Protocol):
    """Anything that turns a prompt into a parsed result of a given shape."""

    async def analyze(self, prompt: str, shape: type[T]) -> T | None:
        """Return the parsed result, or None if the output is unusable."""
        ...


def _candidate_json_texts(text: str) -> list[str]:
    """Extraction strategies in order: whole text, fenced block, outer braces."""
    candidates = [text]

    code_block_match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text, re.DOTALL)
    if code_block_match:
        candidates.append(code_block_match.group(1))

    brace_match = re.search(r"\{.*\}", text, re.DOTALL)
    if brace_match:
        candidates.append(brace_match.group(0))

    return candidates


def parse_structured(response_text: str, shape: type[T]) -> T | None:
    """Parse LLM response text into the expected pydantic shape.

    Handles clean JSON, JSON wrapped in markdown code fences, and JSON with
    extra prose before/after.

    Args:
        response_text: Raw text returned by the model
        shape: Pydantic model describing the expected result

    Returns:
        Validated instance of shape, or None when no strategy succeeds
    """
    text = response_text.strip()
    if not text:
        logger.warning("empty_response")
        return None

    for candidate in _candidate_json_texts(text):
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        try:
            return shape.model_validate(data)
        except ValidationError as e:
            logger.warning(
                "response_shape_mismatch",
                extra={"shape": shape.__name__, "error_count": e.error_count()},
            )
            return None

    logger.warning("json_parse_failed", extra={"response_preview": text[:200]})
    return None


class AnthropicEngine:
    """Claude-backed enrichment engine.

    Retry policy:
        - Max attempts: llm_max_retries + 1
        - Exponential backoff 1s..8s plus up to 0.4s jitter
        - Retries only 429 (rate limit) and 529 (overload)
        - Respects the retry-after header when present

    Example:
        >>> engine = AnthropicEngine(get_config())
        >>> parsed = await engine.analyze(prompt, PriorityResponse)
    """

    def __init__(
        self,
        config: TriageConfig | None = None,
        client: AsyncAnthropic | None = None,
    ):
        self.config = config or get_config()
        self.model = self.config.llm_model
        self.max_tokens = self.config.llm_max_tokens
        self.max_retries = self.config.llm_max_retries
        # Backoff between attempts (retry-after overrides it)
        self.retry_wait = wait_exponential(multiplier=1, min=1, max=8) + wait_random(0, 0.4)

        if client is not None:
            self._client = client
        else:
            api_key = self.config.anthropic_api_key.get_secret_value()
            if not api_key:
                raise ValueError(
                    "Missing Anthropic API key (TRIAGE_ANTHROPIC_API_KEY or ANTHROPIC_API_KEY)"
                )
            self._client = AsyncAnthropic(api_key=api_key, timeout=self.config.llm_timeout)

    async def analyze(self, prompt: str, shape: type[T]) -> T | None:
        """Send prompt to Claude and parse the reply into shape.

        Raises:
            RateLimitError: After exhausting retries
            APIStatusError: On non-retryable status or after retries
        """
        start = time.monotonic()
        try:
            text = await self._complete(prompt)
        except Exception:
            record_engine_call("error", time.monotonic() - start)
            raise

        parsed = parse_structured(text, shape)
        record_engine_call(
            "parsed" if parsed is not None else "unparsed", time.monotonic() - start
        )
        return parsed

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.close()

    async def _complete(self, prompt: str) -> str:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self.retry_wait,
            retry=retry_if_exception(self._should_retry),
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    messages=[{"role": "user", "content": prompt}],
                )
        text_blocks = [b.text for b in response.content if getattr(b, "type", None) == "text"]
        return text_blocks[0] if text_blocks else ""

    @staticmethod
    def _should_retry(exception: BaseException) -> bool:
        if isinstance(exception, RateLimitError):
            return True
        if isinstance(exception, APIStatusError):
            return exception.status_code in RETRYABLE_STATUSES
        return False

    @staticmethod
    def _retry_after(exception: BaseException | None) -> float | None:
        response = getattr(exception, "response", None)
        if response is None:
            return None
        header = response.headers.get("retry-after")
        if not header:
            return None
        try:
            return float(header)
        except (TypeError, ValueError):
            return None

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = self._retry_after(exception)
        if retry_after:
            # tenacity sleeps for upcoming_sleep after this hook returns
            retry_state.upcoming_sleep = retry_after
            if retry_state.next_action is not None:
                retry_state.next_action.sleep = retry_after
        logger.warning(
            "engine_retry",
            extra={
                "attempt": retry_state.attempt_number,
                "wait_seconds": retry_state.upcoming_sleep,
                "exception_type": type(exception).__name__,
            },
        )
