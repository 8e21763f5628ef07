"""Learning metrics for the parent dashboard.

``compute_learning_metrics`` is a pure function over already-loaded rows;
``get_learning_metrics`` loads the rows for one profile and period.
"""

import logging
import uuid
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.database import utcnow
from besttutor.models.ai_session import AISession
from besttutor.models.quiz import QuizResult

logger = logging.getLogger(__name__)

PERIODS = (7, 30)


@dataclass
class LearningMetrics:
    period_days: int
    active_days: int = 0
    total_sessions: int = 0
    current_streak_days: int = 0
    sessions_by_type: dict[str, int] = field(default_factory=dict)
    quizzes_completed: int = 0
    average_quiz_score: float | None = None
    ai_cost_usd: float = 0.0
    average_latency_ms: float | None = None
    error_free_rate: float | None = None


def current_streak(days: set[date], today: date) -> int:
    """Consecutive active days ending today, or yesterday if today is still empty."""
    cursor = today if today in days else today - timedelta(days=1)
    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def compute_learning_metrics(
    sessions: Sequence[AISession],
    quizzes: Sequence[QuizResult],
    period_days: int,
    now: datetime | None = None,
) -> LearningMetrics:
    now = now or utcnow()
    since = now - timedelta(days=period_days)
    sessions = [s for s in sessions if s.created_at >= since]
    completed = [q for q in quizzes if q.completed and (q.completed_at or q.created_at) >= since]

    active = {s.created_at.date() for s in sessions} | {(q.completed_at or q.created_at).date() for q in completed}
    metrics = LearningMetrics(
        period_days=period_days,
        active_days=len(active),
        total_sessions=len(sessions),
        current_streak_days=current_streak(active, now.date()),
        sessions_by_type=dict(Counter(s.session_type for s in sessions)),
        quizzes_completed=len(completed),
    )

    scores = [q.score for q in completed if q.score is not None]
    if scores:
        metrics.average_quiz_score = round(sum(scores) / len(scores), 1)

    week_ago = now - timedelta(days=7)
    metrics.ai_cost_usd = round(sum(float(s.cost_usd or 0) for s in sessions if s.created_at >= week_ago), 6)

    latencies = [s.duration_ms for s in sessions if s.duration_ms is not None]
    if latencies:
        metrics.average_latency_ms = round(sum(latencies) / len(latencies), 1)
    if sessions:
        metrics.error_free_rate = round(sum(1 for s in sessions if s.success) / len(sessions), 3)
    return metrics


async def get_learning_metrics(db: AsyncSession, profile_id: uuid.UUID, period_days: int = 7) -> LearningMetrics:
    since = utcnow() - timedelta(days=period_days)
    sessions = await db.execute(
        select(AISession).where(AISession.user_id == profile_id, AISession.created_at >= since)
    )
    quizzes = await db.execute(
        select(QuizResult).where(QuizResult.user_id == profile_id, QuizResult.completed.is_(True))
    )
    metrics = compute_learning_metrics(list(sessions.scalars().all()), list(quizzes.scalars().all()), period_days)
    logger.debug("Computed %d-day metrics for profile %s", period_days, profile_id)
    return metrics
