"""Parent dashboard API router: learning metrics for an owned child profile."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.api.deps import get_current_parent, get_db, get_owned_profile
from besttutor.models.user import User
from besttutor.schemas.parent import LearningMetricsResponse
from besttutor.services.metrics_service import PERIODS, get_learning_metrics
from besttutor.services.subscription_service import get_or_create_subscription

router = APIRouter(prefix="/api/v1/parent", tags=["parent"])


@router.get("/children/{profile_id}/metrics", response_model=LearningMetricsResponse)
async def child_metrics(
    profile_id: uuid.UUID,
    period_days: int = Query(7),
    db: AsyncSession = Depends(get_db),
    parent: User = Depends(get_current_parent),
) -> LearningMetricsResponse:
    if period_days not in PERIODS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"period_days must be one of {', '.join(map(str, PERIODS))}",
        )
    profile = await get_owned_profile(db, parent, profile_id)
    metrics = await get_learning_metrics(db, profile.id, period_days)
    subscription = await get_or_create_subscription(db, profile)

    return LearningMetricsResponse(
        profile_id=profile.id,
        period_days=metrics.period_days,
        active_days=metrics.active_days,
        total_sessions=metrics.total_sessions,
        current_streak_days=metrics.current_streak_days,
        sessions_by_type=metrics.sessions_by_type,
        quizzes_completed=metrics.quizzes_completed,
        average_quiz_score=metrics.average_quiz_score,
        ai_cost_usd=metrics.ai_cost_usd,
        average_latency_ms=metrics.average_latency_ms,
        error_free_rate=metrics.error_free_rate,
        subscription_status=subscription.status,
    )
