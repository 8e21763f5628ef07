"""AI error taxonomy, classification, retry with backoff, and graceful fallbacks."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Error codes
RATE_LIMIT = "RATE_LIMIT"
TOKEN_LIMIT = "TOKEN_LIMIT"
AUTH_FAILED = "AUTH_FAILED"
SERVER_ERROR = "SERVER_ERROR"
TIMEOUT = "TIMEOUT"
INVALID_RESPONSE = "INVALID_RESPONSE"
UNKNOWN = "UNKNOWN"


class AIError(Exception):
    """Base class for failures on the AI generation path."""

    def __init__(self, message: str, code: str = UNKNOWN, retryable: bool = False) -> None:
        super().__init__(message)
        self.code = code
        self.retryable = retryable


class ProviderError(AIError):
    """The model provider failed or could not be reached."""


class SchemaValidationError(AIError):
    """The model answered, but not with output matching the requested schema."""

    def __init__(self, message: str, raw_output: str | None = None) -> None:
        super().__init__(message, code=INVALID_RESPONSE, retryable=False)
        self.raw_output = raw_output


def _status_code(error: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify_error(error: BaseException) -> AIError:
    """Map an arbitrary exception from a provider call onto an ``AIError``."""
    if isinstance(error, AIError):
        return error

    message = str(error) or error.__class__.__name__
    lowered = message.lower()
    status = _status_code(error)

    if status == 429 or "rate limit" in lowered or "ratelimit" in lowered:
        return ProviderError(message, code=RATE_LIMIT, retryable=True)

    if status == 400 and "token" in lowered:
        return ProviderError(message, code=TOKEN_LIMIT, retryable=False)

    if status == 401:
        return ProviderError(message, code=AUTH_FAILED, retryable=False)

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)) or "timeout" in lowered or "timed out" in lowered:
        return ProviderError(message, code=TIMEOUT, retryable=True)

    if (status is not None and status >= 500) or isinstance(error, ConnectionError) or "network" in lowered:
        return ProviderError(message, code=SERVER_ERROR, retryable=True)

    return ProviderError(message, code=UNKNOWN, retryable=False)


@dataclass
class RetryConfig:
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000
    timeout_seconds: float | None = 60.0


def backoff_delay_ms(attempt: int, config: RetryConfig) -> float:
    """Delay before retry number ``attempt`` (1-based), with 0-30% jitter."""
    delay = min(config.base_delay_ms * 2 ** (attempt - 1), config.max_delay_ms)
    return min(delay * (1 + random.random() * 0.3), config.max_delay_ms)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    on_retry: Callable[[int, AIError], None] | None = None,
) -> T:
    """Call ``fn`` until it succeeds, retrying retryable errors.

    Each attempt is bounded by ``config.timeout_seconds``. Non-retryable
    errors and the last retryable error are raised as ``AIError``.
    """
    config = config or RetryConfig()
    attempt = 0
    while True:
        try:
            if config.timeout_seconds:
                return await asyncio.wait_for(fn(), timeout=config.timeout_seconds)
            return await fn()
        except Exception as exc:
            error = classify_error(exc)
            attempt += 1
            if not error.retryable or attempt > config.max_retries:
                if error is not exc:
                    raise error from exc
                raise
            delay = backoff_delay_ms(attempt, config)
            logger.warning(
                "AI call failed (%s), retry %d/%d in %.0fms: %s",
                error.code,
                attempt,
                config.max_retries,
                delay,
                error,
            )
            if on_retry:
                on_retry(attempt, error)
            await asyncio.sleep(delay / 1000)


_FALLBACKS: dict[str, dict[str, Any]] = {
    "tutor": {
        "tutor_response": (
            "I'm having trouble connecting right now. Let's try again in a moment. "
            "While you wait, can you tell me what you already know about this problem?"
        ),
    },
    "learning_path": {
        "pre_assessment": [],
        "learning_path": [],
        "explanation": "I couldn't build a learning path right now. Please try again shortly.",
        "notes_prompt": "Write down three things you already know about this topic.",
    },
    "homework": {
        "needs_clarification": False,
        "plan": [],
        "summary": "I couldn't create a plan right now. Start with the task that is due first.",
    },
    "homework_feedback": {
        "feedback": (
            "I can't look at your homework right now. Pick the first problem you are unsure about "
            "and write down what you already know about it."
        ),
        "needs_illustration": False,
        "illustration_topic": None,
    },
    "test_prep": {
        "quiz": [],
        "message": "Quiz generation is temporarily unavailable. Please try again in a moment.",
    },
    "coaching": {
        "intervention_triggered": False,
        "intervention_message": None,
    },
}


def get_graceful_fallback(flow_type: str) -> dict[str, Any] | None:
    """Canned response for a flow when the provider is unavailable."""
    fallback = _FALLBACKS.get(flow_type)
    return dict(fallback) if fallback is not None else None
