"""Structured generation: prompt a chat model and validate its JSON answer.

Every AI flow goes through ``StructuredGenerator``. A call:

1. copies the message list and appends the target JSON schema to the last
   user message,
2. takes a slot and a point from the service's ``RateLimiter`` (if any),
3. invokes the model under ``retry_with_backoff``,
4. strips Markdown code fences, parses JSON and validates it against the
   pydantic schema.

Provider failures surface as ``ProviderError``, unparseable or invalid output
as ``SchemaValidationError``, an exhausted limiter as ``RateLimitExceeded``.
"""

import json
import logging
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from pydantic import BaseModel, ValidationError

from besttutor.ai.cache import CacheAdapter, CacheTTL
from besttutor.ai.errors import RetryConfig, SchemaValidationError, retry_with_backoff
from besttutor.ai.limiter import RateLimiter
from besttutor.ai.monitoring import TokenUsage
from besttutor.ai.provider import extract_usage, model_name_of

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=BaseModel)
V = TypeVar("V")

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)

JSON_ONLY_INSTRUCTION = "Respond with valid JSON only. Do not wrap it in Markdown or add any other text."


@dataclass
class GenerationResult(Generic[V]):
    value: V
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    duration_ms: int = 0
    cached: bool = False


def message_text(message: BaseMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


def strip_code_fences(text: str) -> str:
    text = text.strip()
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text


def parse_json_output(text: str) -> Any:
    """Parse model output as JSON, tolerating fences and leading chatter."""
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    # Fall back to the outermost object in the text
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError:
            pass
    raise SchemaValidationError("Model output is not valid JSON", raw_output=text)


def with_schema_instruction(messages: Sequence[BaseMessage], schema: type[BaseModel]) -> list[BaseMessage]:
    """Return a copy of ``messages`` whose last user message carries the schema."""
    instruction = (
        "\n\nRespond with a JSON object that matches this JSON schema:\n"
        f"{json.dumps(schema.model_json_schema())}\n{JSON_ONLY_INSTRUCTION}"
    )
    prepared = list(messages)
    for index in range(len(prepared) - 1, -1, -1):
        message = prepared[index]
        if not isinstance(message, HumanMessage):
            continue
        if isinstance(message.content, str):
            content: Any = message.content + instruction
        else:
            content = [*message.content, {"type": "text", "text": instruction.lstrip()}]
        prepared[index] = message.model_copy(update={"content": content})
        return prepared

    prepared.append(HumanMessage(content=instruction.lstrip()))
    return prepared


class StructuredGenerator:
    """Schema-validated generation against one chat model."""

    def __init__(
        self,
        llm: BaseChatModel,
        limiter: RateLimiter | None = None,
        cache: CacheAdapter | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self.llm = llm
        self.limiter = limiter
        self.cache = cache
        self.retry_config = retry_config or RetryConfig()

    @property
    def model_name(self) -> str:
        return model_name_of(self.llm)

    async def _invoke(self, messages: list[BaseMessage]) -> AIMessage:
        async def call() -> AIMessage:
            return await self.llm.ainvoke(messages)

        async def call_with_retry() -> AIMessage:
            return await retry_with_backoff(call, self.retry_config)

        if self.limiter is not None:
            return await self.limiter.execute(call_with_retry)
        return await call_with_retry()

    async def generate(
        self,
        messages: Sequence[BaseMessage],
        schema: type[S],
        *,
        cache_key: str | None = None,
        cache_ttl: int = CacheTTL.LONG,
    ) -> GenerationResult[S]:
        """Generate a ``schema`` instance from ``messages``.

        With ``cache_key`` set and a cache configured, a cached answer is
        returned without calling the model.
        """
        if cache_key and self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                try:
                    return GenerationResult(
                        value=schema.model_validate(cached),
                        model=self.model_name,
                        cached=True,
                    )
                except ValidationError:
                    logger.warning("Ignoring cached value for %s that no longer matches %s", cache_key, schema.__name__)

        started = time.monotonic()
        response = await self._invoke(with_schema_instruction(messages, schema))
        duration_ms = int((time.monotonic() - started) * 1000)

        raw = message_text(response)
        data = parse_json_output(raw)
        try:
            value = schema.model_validate(data)
        except ValidationError as exc:
            logger.warning("Model output failed %s validation: %s", schema.__name__, exc)
            raise SchemaValidationError(f"Model output does not match {schema.__name__}", raw_output=raw) from exc

        if cache_key and self.cache is not None:
            await self.cache.set(cache_key, value.model_dump(mode="json"), cache_ttl)

        return GenerationResult(
            value=value,
            model=self.model_name,
            usage=extract_usage(response),
            duration_ms=duration_ms,
        )

    async def generate_text(self, messages: Sequence[BaseMessage]) -> GenerationResult[str]:
        """Plain-text generation through the same limiter and retry policy."""
        started = time.monotonic()
        response = await self._invoke(list(messages))
        return GenerationResult(
            value=message_text(response).strip(),
            model=self.model_name,
            usage=extract_usage(response),
            duration_ms=int((time.monotonic() - started) * 1000),
        )
