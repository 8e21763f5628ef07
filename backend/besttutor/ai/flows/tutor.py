"""Subject-specialised tutor flow."""

import logging
from collections.abc import Sequence

from langchain_core.messages import BaseMessage, SystemMessage
from pydantic import BaseModel, Field

from besttutor.ai.behavior import SUBJECT_EXAMPLES, BehaviorFlags, apply_guardrails, render_context
from besttutor.ai.prompts import TUTOR_SYSTEM_PROMPT
from besttutor.ai.provider import build_user_message
from besttutor.ai.structured import GenerationResult, StructuredGenerator

logger = logging.getLogger(__name__)


class TutorInput(BaseModel):
    subject: str = Field(min_length=1, max_length=100)
    question: str = Field(min_length=1)
    homework_image: str | None = Field(default=None, description="Data URI of a photo of the student's work")
    grade_level: int = Field(default=6, ge=3, le=12)
    confidence_level: int | None = Field(default=None, ge=1, le=5)
    verbosity: str = Field(default="normal", pattern="^(short|normal)$")


class Sketch(BaseModel):
    drawing: str = Field(description="Minimal SVG using currentColor for strokes")
    caption: str


class TutorOutput(BaseModel):
    tutor_response: str = Field(description="The tutor's reply to the student")
    sketch: Sketch | None = Field(default=None, description="Optional diagram illustrating the concept")


def flags_for(request: TutorInput) -> BehaviorFlags:
    subject = request.subject.lower()
    return BehaviorFlags(
        subject=subject if subject in SUBJECT_EXAMPLES else "general",
        grade_level=request.grade_level,
        verbosity=request.verbosity,
    )


def build_tutor_messages(request: TutorInput, history: Sequence[BaseMessage] = ()) -> list[BaseMessage]:
    flags = flags_for(request)
    system = (
        f"{TUTOR_SYSTEM_PROMPT}\n\nYou are specializing in {request.subject}.\n\n"
        f"{render_context(flags, request.confidence_level)}"
    )
    text = f'A student has a question: "{request.question}"'
    if request.homework_image:
        text += "\n\nThe student has also provided an image of their handwritten work."
    return [SystemMessage(content=system), *history, build_user_message(text, request.homework_image)]


async def ask_tutor(
    generator: StructuredGenerator,
    request: TutorInput,
    history: Sequence[BaseMessage] = (),
) -> GenerationResult[TutorOutput]:
    """Ask the tutor and apply response guardrails to its answer."""
    result = await generator.generate(build_tutor_messages(request, history), TutorOutput)

    response, warnings = apply_guardrails(result.value.tutor_response, flags_for(request))
    if warnings:
        logger.info("Tutor guardrails for %s: %s", request.subject, "; ".join(warnings))
    result.value = result.value.model_copy(update={"tutor_response": response})
    return result
