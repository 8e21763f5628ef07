"""Tests for schema-validated structured generation."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.language_models import FakeListChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from pydantic import BaseModel

from besttutor.ai.cache import InMemoryCache
from besttutor.ai.errors import INVALID_RESPONSE, ProviderError, RetryConfig, SchemaValidationError
from besttutor.ai.limiter import RateLimiter, RateLimitExceeded
from besttutor.ai.structured import (
    StructuredGenerator,
    parse_json_output,
    strip_code_fences,
    with_schema_instruction,
)


class Answer(BaseModel):
    answer: str
    confidence: int


def _generator(*responses: str, **kwargs) -> StructuredGenerator:
    return StructuredGenerator(
        FakeListChatModel(responses=list(responses)),
        retry_config=RetryConfig(max_retries=0, timeout_seconds=5),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


def test_parse_json_output_tolerates_chatter():
    assert parse_json_output('Sure! Here you go: {"a": 1} Hope that helps.') == {"a": 1}


def test_parse_json_output_rejects_garbage():
    with pytest.raises(SchemaValidationError) as exc_info:
        parse_json_output("no json here")
    assert exc_info.value.code == INVALID_RESPONSE
    assert exc_info.value.raw_output == "no json here"


def test_schema_instruction_appended_to_last_user_message():
    messages = [SystemMessage(content="sys"), HumanMessage(content="first"), HumanMessage(content="question")]
    prepared = with_schema_instruction(messages, Answer)

    assert prepared[0].content == "sys"
    assert prepared[1].content == "first"
    assert prepared[2].content.startswith("question")
    assert '"confidence"' in prepared[2].content
    # originals are untouched
    assert messages[2].content == "question"


def test_schema_instruction_on_multimodal_message():
    message = HumanMessage(
        content=[
            {"type": "text", "text": "look"},
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,x"}},
        ]
    )
    prepared = with_schema_instruction([message], Answer)
    assert len(prepared[0].content) == 3
    assert prepared[0].content[2]["type"] == "text"


# ---------------------------------------------------------------------------
# StructuredGenerator
# ---------------------------------------------------------------------------


async def test_generate_validates_output():
    generator = _generator('```json\n{"answer": "4", "confidence": 3}\n```')
    result = await generator.generate([HumanMessage(content="2 + 2?")], Answer)

    assert result.value == Answer(answer="4", confidence=3)
    assert result.cached is False


async def test_generate_rejects_schema_mismatch():
    generator = _generator('{"answer": "4"}')
    with pytest.raises(SchemaValidationError):
        await generator.generate([HumanMessage(content="2 + 2?")], Answer)


async def test_cache_hit_skips_model():
    cache = InMemoryCache()
    generator = _generator('{"answer": "4", "confidence": 3}', cache=cache)
    first = await generator.generate([HumanMessage(content="q")], Answer, cache_key="k")

    generator.llm = MagicMock()
    generator.llm.ainvoke = AsyncMock(side_effect=AssertionError("model should not be called"))
    second = await generator.generate([HumanMessage(content="q")], Answer, cache_key="k")

    assert second.cached is True
    assert second.value == first.value
    assert await cache.get("k") == {"answer": "4", "confidence": 3}


async def test_stale_cache_entry_is_regenerated():
    cache = InMemoryCache()
    await cache.set("k", {"unexpected": True})
    generator = _generator('{"answer": "fresh", "confidence": 1}', cache=cache)

    result = await generator.generate([HumanMessage(content="q")], Answer, cache_key="k")
    assert result.cached is False
    assert result.value.answer == "fresh"


async def test_usage_is_extracted_from_response_metadata():
    llm = MagicMock()
    llm.model = "deepseek/deepseek-chat"
    llm.ainvoke = AsyncMock(
        return_value=AIMessage(
            content=json.dumps({"answer": "x", "confidence": 2}),
            response_metadata={"token_usage": {"prompt_tokens": 12, "completion_tokens": 5}},
        )
    )
    generator = StructuredGenerator(llm, retry_config=RetryConfig(max_retries=0))

    result = await generator.generate([HumanMessage(content="q")], Answer)
    assert result.model == "deepseek/deepseek-chat"
    assert result.usage.input_tokens == 12
    assert result.usage.output_tokens == 5


async def test_provider_failure_is_classified():
    llm = MagicMock()
    llm.model = "test/model"
    llm.ainvoke = AsyncMock(side_effect=ConnectionError("network down"))
    generator = StructuredGenerator(llm, retry_config=RetryConfig(max_retries=1, base_delay_ms=1, max_delay_ms=1))

    with pytest.raises(ProviderError):
        await generator.generate([HumanMessage(content="q")], Answer)
    assert llm.ainvoke.await_count == 2


async def test_limiter_exhaustion_propagates():
    limiter = RateLimiter("text", max_per_window=1)
    generator = _generator('{"answer": "4", "confidence": 3}', limiter=limiter)

    await generator.generate([HumanMessage(content="q")], Answer)
    with pytest.raises(RateLimitExceeded):
        await generator.generate([HumanMessage(content="q")], Answer)


async def test_generate_text():
    generator = _generator("  Plain answer.  ")
    result = await generator.generate_text([HumanMessage(content="q")])
    assert result.value == "Plain answer."
