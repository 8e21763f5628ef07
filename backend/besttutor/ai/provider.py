"""Language model construction (LiteLLM via LangChain) and message helpers."""

import logging
import os
from typing import Any

from langchain_core.messages import AIMessage, HumanMessage
from langchain_litellm import ChatLiteLLM

from besttutor.ai.monitoring import TokenUsage
from besttutor.config import Settings

logger = logging.getLogger(__name__)


def export_provider_keys(settings: Settings) -> None:
    """Expose configured provider keys to LiteLLM through the environment."""
    if settings.deepseek_api_key:
        os.environ["DEEPSEEK_API_KEY"] = settings.deepseek_api_key
    if settings.anthropic_api_key:
        os.environ["ANTHROPIC_API_KEY"] = settings.anthropic_api_key
    if settings.openai_api_key:
        os.environ["OPENAI_API_KEY"] = settings.openai_api_key


def create_llm(settings: Settings, model: str | None = None, temperature: float | None = None) -> ChatLiteLLM:
    """Create a chat model for ``model`` (default: ``settings.default_llm_model``)."""
    export_provider_keys(settings)
    model_name = model or settings.default_llm_model
    logger.info("Creating LLM client for %s", model_name)
    return ChatLiteLLM(
        model=model_name,
        temperature=settings.ai_temperature if temperature is None else temperature,
        max_tokens=settings.ai_max_tokens,
    )


def build_user_message(text: str, image_data_uri: str | None = None) -> HumanMessage:
    """User message, multimodal when an image (data URI or URL) is attached."""
    if not image_data_uri:
        return HumanMessage(content=text)
    return HumanMessage(
        content=[
            {"type": "text", "text": text},
            {"type": "image_url", "image_url": {"url": image_data_uri}},
        ]
    )


def extract_usage(message: AIMessage) -> TokenUsage:
    """Token usage from a model response, if the provider reported it."""
    usage_meta: dict[str, Any] | None = getattr(message, "usage_metadata", None)
    if usage_meta:
        details = usage_meta.get("input_token_details") or {}
        return TokenUsage(
            input_tokens=usage_meta.get("input_tokens", 0),
            output_tokens=usage_meta.get("output_tokens", 0),
            cached_tokens=details.get("cache_read", 0) or 0,
        )

    token_usage = (message.response_metadata or {}).get("token_usage") or {}
    return TokenUsage(
        input_tokens=token_usage.get("prompt_tokens", 0) or 0,
        output_tokens=token_usage.get("completion_tokens", 0) or 0,
    )


def model_name_of(llm: Any, default: str = "unknown") -> str:
    return getattr(llm, "model", None) or getattr(llm, "model_name", None) or default
