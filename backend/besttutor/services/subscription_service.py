"""Subscription service: lookups and state updates for profile subscriptions."""

import logging
import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.billing.plans import is_premium_status
from besttutor.billing.stripe_client import create_customer
from besttutor.database import utcnow
from besttutor.models.ai_session import AISession
from besttutor.models.subscription import Subscription
from besttutor.models.user import User

logger = logging.getLogger(__name__)


async def get_or_create_subscription(db: AsyncSession, user: User) -> Subscription:
    """Get the profile's subscription row, creating a free one if missing."""
    subscription = await db.scalar(select(Subscription).where(Subscription.user_id == user.id))
    if subscription is not None:
        return subscription

    logger.info("Creating free subscription row for user %s", user.id)
    subscription = Subscription(user_id=user.id, status="free")
    db.add(subscription)
    await db.flush()
    return subscription


async def get_subscription_for_user_id(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
    return await db.scalar(select(Subscription).where(Subscription.user_id == user_id))


async def get_subscription_by_stripe_customer(db: AsyncSession, stripe_customer_id: str) -> Subscription | None:
    """Look up subscription by Stripe customer ID (used by webhooks)."""
    return await db.scalar(select(Subscription).where(Subscription.stripe_customer_id == stripe_customer_id))


async def get_subscriptions_by_stripe_subscription(
    db: AsyncSession, stripe_subscription_id: str
) -> list[Subscription]:
    """All profile rows linked to a Stripe subscription (several for a family plan)."""
    result = await db.execute(
        select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
    )
    return list(result.scalars().all())


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    return await db.scalar(select(User).where(func.lower(User.email) == email.lower()))


async def ensure_stripe_customer(db: AsyncSession, user: User, subscription: Subscription) -> str:
    """Ensure the user has a Stripe customer ID. Create one if missing."""
    if subscription.stripe_customer_id:
        return subscription.stripe_customer_id

    customer = await create_customer(email=user.email, name=user.name or user.email, user_id=str(user.id))
    subscription.stripe_customer_id = customer.id
    await db.flush()
    logger.info("Linked Stripe customer %s to user %s", customer.id, user.id)
    return customer.id


async def apply_stripe_state(
    db: AsyncSession,
    subscription: Subscription,
    *,
    status: str,
    event_at: datetime,
    stripe_subscription_id: str | None = None,
    expires_at: datetime | None = None,
    keep_subscription_id: bool = True,
    keep_expires_at: bool = False,
) -> bool:
    """Overwrite the row with an absolute state taken from a Stripe event.

    Events older than the last one applied are ignored, so out-of-order
    deliveries cannot roll the row back. Replaying the same event writes the
    same values again. Returns whether the state was applied.
    """
    if subscription.last_event_at is not None and event_at < subscription.last_event_at:
        logger.info(
            "Ignoring stale event for subscription %s (event %s < last %s)",
            subscription.id,
            event_at,
            subscription.last_event_at,
        )
        return False

    subscription.status = status
    if stripe_subscription_id is not None or not keep_subscription_id:
        subscription.stripe_subscription_id = stripe_subscription_id
    if not keep_expires_at:
        subscription.expires_at = expires_at
    subscription.last_event_at = event_at
    await db.flush()

    logger.info(
        "Subscription %s (user %s) -> status=%s, stripe=%s, expires=%s",
        subscription.id,
        subscription.user_id,
        status,
        subscription.stripe_subscription_id,
        subscription.expires_at,
    )
    return True


def is_premium(subscription: Subscription | None, now: datetime | None = None) -> bool:
    if subscription is None:
        return False
    return is_premium_status(subscription.status, subscription.expires_at, now)


def month_start(now: datetime | None = None) -> datetime:
    now = now or utcnow()
    return datetime(now.year, now.month, 1)


async def count_ai_sessions_this_month(db: AsyncSession, user_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(AISession)
        .where(
            AISession.user_id == user_id,
            AISession.success.is_(True),
            AISession.created_at >= month_start(),
        )
    )
    return result.scalar_one()
