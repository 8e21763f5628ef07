"""Quiz result model: generated quiz/flashcards plus the student's submission."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Integer, String, false, func
from sqlalchemy.orm import Mapped, mapped_column

from besttutor.database import Base, UUIDPrimaryKeyMixin


class QuizResult(UUIDPrimaryKeyMixin, Base):
    """A generated quiz. Answers and score are filled in on submission."""

    __tablename__ = "quiz_results"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subject: Mapped[str] = mapped_column(String(100), nullable=False)
    topic: Mapped[str] = mapped_column(String(255), nullable=False)
    quiz_type: Mapped[str] = mapped_column(String(20), nullable=False)  # quiz, flashcards
    questions: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False)
    answers: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    correct_answers: Mapped[int | None] = mapped_column(Integer, nullable=True)
    time_spent_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), index=True)

    def __repr__(self) -> str:
        return f"<QuizResult(id={self.id}, user_id={self.user_id}, completed={self.completed})>"
