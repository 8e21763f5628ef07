"""Plan gating dependencies: premium features and the free AI allowance."""

import logging

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.auth.dependencies import get_current_active_user
from besttutor.billing.plans import UPGRADE_URL, PlanLimits, plan_for_status
from besttutor.database import get_db
from besttutor.models.user import User
from besttutor.services.subscription_service import (
    count_ai_sessions_this_month,
    get_or_create_subscription,
    is_premium,
)

logger = logging.getLogger(__name__)


def _upgrade_required(message: str, subscription_status: str, **extra) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "message": message,
            "status": subscription_status,
            "upgrade_url": UPGRADE_URL,
            **extra,
        },
    )


async def get_plan_limits(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_active_user),
) -> PlanLimits:
    subscription = await get_or_create_subscription(db, user)
    return plan_for_status(subscription.status, subscription.expires_at)


async def require_premium(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_active_user),
) -> User:
    """Raise 403 with an upgrade payload unless the profile is premium."""
    subscription = await get_or_create_subscription(db, user)
    if not is_premium(subscription):
        logger.info("Premium feature refused for user %s (status=%s)", user.id, subscription.status)
        raise _upgrade_required("This feature requires a premium subscription.", subscription.status)
    return user


async def check_ai_allowance(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_active_user),
) -> User:
    """Raise 403 once a free profile has used its monthly AI queries."""
    subscription = await get_or_create_subscription(db, user)
    plan = plan_for_status(subscription.status, subscription.expires_at)
    if plan.max_ai_queries_per_month is None:
        return user

    used = await count_ai_sessions_this_month(db, user.id)
    if used >= plan.max_ai_queries_per_month:
        raise _upgrade_required(
            f"Free AI limit reached ({used}/{plan.max_ai_queries_per_month}). Upgrade for unlimited tutoring.",
            subscription.status,
            limit=plan.max_ai_queries_per_month,
            current=used,
        )
    return user
