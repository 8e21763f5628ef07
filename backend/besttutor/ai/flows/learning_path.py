"""Personalised learning path generation."""

import json

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from besttutor.ai.prompts import LEARNING_PATH_SYSTEM_PROMPT
from besttutor.ai.structured import GenerationResult, StructuredGenerator


class LearningPathInput(BaseModel):
    subject: str = Field(min_length=1, max_length=100)
    mastery_scores: dict[str, float] = Field(default_factory=dict)
    intervention_effectiveness: dict[str, float] = Field(default_factory=dict)
    learning_style: str | None = None
    grade_level: str | None = None
    current_understanding: int | None = Field(default=None, ge=0, le=100)
    specific_topics: str | None = None
    learning_goals: str | None = None
    time_available_hours: float | None = Field(default=None, gt=0)


class KnowledgeCheckQuestion(BaseModel):
    question: str
    purpose: str


class LearningPathStep(BaseModel):
    topic: str
    description: str
    examples: list[str] = Field(default_factory=list)
    resources: list[str] = Field(default_factory=list)
    estimated_time: int = Field(description="Minutes")
    practice_questions: list[str] = Field(default_factory=list)


class LearningPathOutput(BaseModel):
    pre_assessment: list[KnowledgeCheckQuestion]
    learning_path: list[LearningPathStep]
    explanation: str
    notes_prompt: str


def _or_unspecified(value: object) -> str:
    return "Not specified" if value is None else str(value)


def build_learning_path_prompt(student_id: str, request: LearningPathInput) -> str:
    understanding = (
        f"{request.current_understanding}% (self-assessed)" if request.current_understanding is not None else None
    )
    time_available = f"{request.time_available_hours:g} hours per week" if request.time_available_hours else None
    lines = [
        "Generate a personalized learning path for the following student:",
        f"Student ID: {student_id}",
        f"Subject: {request.subject}",
        f"Grade Level: {_or_unspecified(request.grade_level)}",
        f"Learning Style: {_or_unspecified(request.learning_style)}",
        f"Current Understanding: {_or_unspecified(understanding)}",
        f"Time Available: {_or_unspecified(time_available)}",
    ]
    if request.specific_topics:
        lines += ["Specific Topics to Focus On:", request.specific_topics]
    if request.learning_goals:
        lines += ["Learning Goals:", request.learning_goals]
    lines += [
        "Mastery Scores:",
        json.dumps(request.mastery_scores, indent=2),
        "Intervention Effectiveness:",
        json.dumps(request.intervention_effectiveness, indent=2),
        "Include a 3-5 question pre-assessment, a notes prompt, and 4-6 learning path steps.",
    ]
    return "\n".join(lines)


async def generate_learning_path(
    generator: StructuredGenerator,
    student_id: str,
    request: LearningPathInput,
) -> GenerationResult[LearningPathOutput]:
    return await generator.generate(
        [
            SystemMessage(content=LEARNING_PATH_SYSTEM_PROMPT),
            HumanMessage(content=build_learning_path_prompt(student_id, request)),
        ],
        LearningPathOutput,
    )
