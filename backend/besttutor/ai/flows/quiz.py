"""Quiz and flashcard generation (test prep)."""

from typing import Literal

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from besttutor.ai.cache import CacheTTL, generate_cache_key
from besttutor.ai.prompts import TEST_PREP_SYSTEM_PROMPT
from besttutor.ai.structured import GenerationResult, StructuredGenerator


class QuizGenerationInput(BaseModel):
    subject: str = Field(min_length=1, max_length=100)
    topic: str = Field(min_length=1, max_length=255)
    type: Literal["quiz", "flashcards"] = "quiz"
    count: int = Field(default=5, ge=1, le=10)


class QuizQuestion(BaseModel):
    question: str
    options: list[str] = Field(min_length=4, max_length=4)
    answer: str


class Flashcard(BaseModel):
    term: str
    definition: str


class QuizContent(BaseModel):
    quiz: list[QuizQuestion] | None = None
    flashcards: list[Flashcard] | None = None

    def entries(self) -> list[QuizQuestion] | list[Flashcard]:
        return self.quiz or self.flashcards or []


async def generate_quiz(generator: StructuredGenerator, request: QuizGenerationInput) -> GenerationResult[QuizContent]:
    prompt = (
        f"Generate {request.type} for the following:\n"
        f"Subject: {request.subject}\n"
        f"Topic: {request.topic}\n"
        f"Number of items: {request.count}\n"
    )
    if request.type == "quiz":
        prompt += "Generate a multiple-choice quiz in `quiz`. Each question has 4 options and one correct answer."
    else:
        prompt += "Generate flashcards in `flashcards`. Each flashcard has a term and its definition."

    return await generator.generate(
        [SystemMessage(content=TEST_PREP_SYSTEM_PROMPT), HumanMessage(content=prompt)],
        QuizContent,
        cache_key=generate_cache_key("quiz", request.subject, request.topic, request.type, request.count),
        cache_ttl=CacheTTL.DAY,
    )
