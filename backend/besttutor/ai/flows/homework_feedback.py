"""Feedback on a photo of the student's homework."""

from langchain_core.messages import BaseMessage, SystemMessage
from pydantic import BaseModel, Field

from besttutor.ai.prompts import HOMEWORK_FEEDBACK_SYSTEM_PROMPT
from besttutor.ai.provider import build_user_message
from besttutor.ai.structured import GenerationResult, StructuredGenerator


class HomeworkFeedbackInput(BaseModel):
    subject: str = Field(min_length=1, max_length=100)
    homework_image: str = Field(
        pattern=r"^(data:image/|https://)",
        description="Photo of the homework as a base64 data URI (or an https URL)",
    )


class HomeworkFeedbackOutput(BaseModel):
    feedback: str = Field(description="Encouraging feedback and guiding questions")
    needs_illustration: bool = Field(default=False, description="Whether a picture would help explain a concept")
    illustration_topic: str | None = Field(default=None, description="Concept the picture should show")


def build_feedback_messages(request: HomeworkFeedbackInput) -> list[BaseMessage]:
    # Constant prompt first so providers can reuse the cached prefix
    return [
        SystemMessage(content=f"{HOMEWORK_FEEDBACK_SYSTEM_PROMPT}\n\nSubject: {request.subject}"),
        build_user_message("Please analyze this homework and provide feedback.", request.homework_image),
    ]


async def get_homework_feedback(
    generator: StructuredGenerator, request: HomeworkFeedbackInput
) -> GenerationResult[HomeworkFeedbackOutput]:
    result = await generator.generate(build_feedback_messages(request), HomeworkFeedbackOutput)
    if not result.value.needs_illustration and result.value.illustration_topic:
        result.value = result.value.model_copy(update={"illustration_topic": None})
    return result
