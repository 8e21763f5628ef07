"""Tests for error classification, retry with backoff and graceful fallbacks."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from besttutor.ai.errors import (
    AUTH_FAILED,
    RATE_LIMIT,
    SERVER_ERROR,
    TIMEOUT,
    TOKEN_LIMIT,
    UNKNOWN,
    AIError,
    ProviderError,
    RetryConfig,
    backoff_delay_ms,
    classify_error,
    get_graceful_fallback,
    retry_with_backoff,
)


class StatusError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


@pytest.mark.parametrize(
    ("error", "code", "retryable"),
    [
        (StatusError("slow down", 429), RATE_LIMIT, True),
        (Exception("Rate limit reached for requests"), RATE_LIMIT, True),
        (StatusError("maximum context tokens exceeded", 400), TOKEN_LIMIT, False),
        (StatusError("invalid api key", 401), AUTH_FAILED, False),
        (asyncio.TimeoutError(), TIMEOUT, True),
        (Exception("Request timed out"), TIMEOUT, True),
        (StatusError("bad gateway", 502), SERVER_ERROR, True),
        (ConnectionError("reset by peer"), SERVER_ERROR, True),
        (Exception("network unreachable"), SERVER_ERROR, True),
        (ValueError("something odd"), UNKNOWN, False),
    ],
)
def test_classify_error(error, code, retryable):
    classified = classify_error(error)
    assert isinstance(classified, ProviderError)
    assert classified.code == code
    assert classified.retryable is retryable


def test_classify_passes_ai_errors_through():
    error = AIError("already classified", code=TIMEOUT, retryable=True)
    assert classify_error(error) is error


def test_backoff_delay_grows_and_is_capped():
    config = RetryConfig(base_delay_ms=1000, max_delay_ms=3000)
    with patch("besttutor.ai.errors.random.random", return_value=0.0):
        assert backoff_delay_ms(1, config) == 1000
        assert backoff_delay_ms(2, config) == 2000
        assert backoff_delay_ms(5, config) == 3000
    with patch("besttutor.ai.errors.random.random", return_value=1.0):
        assert backoff_delay_ms(1, config) == pytest.approx(1300)
        assert backoff_delay_ms(2, config) == pytest.approx(2600)
        assert backoff_delay_ms(3, config) == 3000


async def test_retry_succeeds_after_transient_failures():
    fn = AsyncMock(side_effect=[StatusError("busy", 503), StatusError("busy", 503), "done"])
    retries = []

    result = await retry_with_backoff(
        fn,
        RetryConfig(max_retries=3, base_delay_ms=1, max_delay_ms=2),
        on_retry=lambda attempt, error: retries.append((attempt, error.code)),
    )

    assert result == "done"
    assert fn.await_count == 3
    assert retries == [(1, SERVER_ERROR), (2, SERVER_ERROR)]


async def test_non_retryable_error_raised_immediately():
    fn = AsyncMock(side_effect=StatusError("bad key", 401))

    with pytest.raises(ProviderError) as exc_info:
        await retry_with_backoff(fn, RetryConfig(max_retries=3, base_delay_ms=1))

    assert exc_info.value.code == AUTH_FAILED
    assert isinstance(exc_info.value.__cause__, StatusError)
    fn.assert_awaited_once()


async def test_gives_up_after_max_retries():
    fn = AsyncMock(side_effect=StatusError("busy", 503))

    with pytest.raises(ProviderError) as exc_info:
        await retry_with_backoff(fn, RetryConfig(max_retries=2, base_delay_ms=1, max_delay_ms=1))

    assert exc_info.value.code == SERVER_ERROR
    assert fn.await_count == 3


async def test_attempt_timeout_is_classified():
    async def hang():
        await asyncio.sleep(1)

    with pytest.raises(ProviderError) as exc_info:
        await retry_with_backoff(hang, RetryConfig(max_retries=0, timeout_seconds=0.01))

    assert exc_info.value.code == TIMEOUT


def test_graceful_fallbacks():
    tutor = get_graceful_fallback("tutor")
    assert "tutor_response" in tutor
    assert get_graceful_fallback("coaching") == {"intervention_triggered": False, "intervention_message": None}
    assert get_graceful_fallback("homework_feedback")["needs_illustration"] is False
    assert get_graceful_fallback("unknown-flow") is None

    # callers get a copy
    tutor["tutor_response"] = "changed"
    assert get_graceful_fallback("tutor")["tutor_response"] != "changed"
