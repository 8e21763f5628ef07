"""Pydantic v2 request/response schemas for quiz endpoints."""

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# --- Request schemas ---


class QuizGenerateRequest(BaseModel):
    subject: str = Field(..., min_length=1, max_length=100)
    topic: str = Field(..., min_length=1, max_length=255)
    type: Literal["quiz", "flashcards"] = "quiz"
    count: int = Field(5, ge=1, le=10)


class QuizSubmitRequest(BaseModel):
    quiz_id: uuid.UUID
    answers: list[str | None]
    time_spent_seconds: int | None = Field(None, ge=0)


# --- Response schemas ---


class QuizResponse(BaseModel):
    id: uuid.UUID
    subject: str
    topic: str
    quiz_type: str
    questions: dict[str, Any]
    total_questions: int
    completed: bool
    score: float | None = None
    correct_answers: int | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class QuizSubmitResponse(BaseModel):
    quiz_id: uuid.UUID
    score: float
    correct_answers: int
    total_questions: int
    results: list[bool]
