"""Pydantic v2 response schemas for the parent dashboard."""

import uuid

from pydantic import BaseModel


class LearningMetricsResponse(BaseModel):
    profile_id: uuid.UUID
    period_days: int
    active_days: int
    total_sessions: int
    current_streak_days: int
    sessions_by_type: dict[str, int]
    quizzes_completed: int
    average_quiz_score: float | None
    ai_cost_usd: float
    average_latency_ms: float | None
    error_free_rate: float | None
    subscription_status: str
