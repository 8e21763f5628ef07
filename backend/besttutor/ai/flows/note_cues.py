"""Cornell note cue suggestions."""

import logging

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from besttutor.ai.errors import AIError
from besttutor.ai.monitoring import TokenUsage
from besttutor.ai.prompts import NOTE_CUES_SYSTEM_PROMPT
from besttutor.ai.structured import GenerationResult, StructuredGenerator

logger = logging.getLogger(__name__)

FALLBACK_CUES = [
    "What question does this answer?",
    "How can I apply this?",
    "What do I still need to understand?",
]


class NoteCues(BaseModel):
    cues: list[str] = Field(min_length=1, max_length=6)


async def suggest_cues(
    generator: StructuredGenerator,
    topic: str,
    note_body: str | None = None,
) -> GenerationResult[NoteCues]:
    """Suggest cue questions; generic cues are returned if generation fails."""
    prompt = f'Topic: "{topic}"'
    if note_body:
        prompt += f"\n\nTheir notes so far:\n{note_body}"
    try:
        return await generator.generate(
            [SystemMessage(content=NOTE_CUES_SYSTEM_PROMPT), HumanMessage(content=prompt)],
            NoteCues,
        )
    except AIError as exc:
        logger.warning("Cue suggestion failed (%s), using fallback cues", exc.code)
        fallback = NoteCues(cues=list(FALLBACK_CUES))
        return GenerationResult(value=fallback, model=generator.model_name, usage=TokenUsage())
