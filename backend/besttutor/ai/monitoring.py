"""Token usage, cost estimation, and AI session telemetry."""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.models.ai_session import AISession

logger = logging.getLogger(__name__)

# USD per 1M tokens: (input, output, cached input)
_PRICING: dict[str, tuple[float, float, float]] = {
    "deepseek": (0.14, 0.28, 0.014),
    "gpt-4o-mini": (0.15, 0.60, 0.075),
    "gpt-4o": (2.50, 10.00, 1.25),
    "gpt-4-turbo": (10.00, 30.00, 10.00),
    "gpt-3.5-turbo": (0.50, 1.50, 0.50),
    "claude-3-5-haiku": (0.80, 4.00, 0.08),
    "claude-sonnet": (3.00, 15.00, 0.30),
}
_DEFAULT_PRICE_PER_MILLION = 0.5


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cached_tokens=self.cached_tokens + other.cached_tokens,
        )


def _pricing_for(model: str) -> tuple[float, float, float] | None:
    name = model.lower().split("/")[-1]
    if "deepseek" in model.lower():
        return _PRICING["deepseek"]
    # Longest prefix first so gpt-4o-mini does not match gpt-4o
    for prefix in sorted(_PRICING, key=len, reverse=True):
        if name.startswith(prefix):
            return _PRICING[prefix]
    return None


def calculate_cost(model: str, usage: TokenUsage) -> float:
    """Estimated USD cost of one call."""
    pricing = _pricing_for(model)
    if pricing is None:
        return usage.total_tokens / 1_000_000 * _DEFAULT_PRICE_PER_MILLION

    input_price, output_price, cached_price = pricing
    uncached_input = max(0, usage.input_tokens - usage.cached_tokens)
    return (
        uncached_input / 1_000_000 * input_price
        + usage.cached_tokens / 1_000_000 * cached_price
        + usage.output_tokens / 1_000_000 * output_price
    )


def estimate_tokens(text: str) -> int:
    """Rough token count (about four characters per token)."""
    if not text:
        return 0
    return max(1, (len(text) + 3) // 4)


def provider_of(model: str) -> str:
    """LiteLLM model names are ``provider/model``; bare names are OpenAI."""
    return model.split("/", 1)[0] if "/" in model else "openai"


async def record_ai_session(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    session_type: str,
    model: str,
    usage: TokenUsage | None = None,
    subject: str | None = None,
    duration_ms: int | None = None,
    message_count: int = 1,
    success: bool = True,
    error_code: str | None = None,
) -> AISession:
    """Add an ``ai_sessions`` row to the session. The caller commits."""
    usage = usage or TokenUsage()
    record = AISession(
        user_id=user_id,
        session_type=session_type,
        subject=subject,
        model=model,
        provider=provider_of(model),
        input_tokens=usage.input_tokens,
        output_tokens=usage.output_tokens,
        cost_usd=Decimal(str(round(calculate_cost(model, usage), 6))),
        duration_ms=duration_ms,
        message_count=message_count,
        success=success,
        error_code=error_code,
    )
    db.add(record)
    await db.flush()
    logger.debug(
        "Recorded AI session %s for user %s (%d tokens, success=%s)",
        session_type,
        user_id,
        usage.total_tokens,
        success,
    )
    return record
