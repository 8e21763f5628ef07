"""Plan definitions and subscription status rules."""

from dataclasses import dataclass
from datetime import datetime

from besttutor.config import settings
from besttutor.database import utcnow

# Stripe subscription status -> local status
_STRIPE_STATUS_MAP = {
    "active": "active",
    "trialing": "trialing",
    "past_due": "past_due",
    "canceled": "canceled",
    "unpaid": "canceled",
    "incomplete_expired": "canceled",
}

PREMIUM_STATUSES = frozenset({"active", "trialing"})
UPGRADE_URL = "/api/v1/billing/checkout"


@dataclass(frozen=True)
class PlanLimits:
    """What a profile may do on a plan."""

    name: str
    display_name: str
    max_ai_queries_per_month: int | None  # None = unlimited
    has_learning_paths: bool
    has_coaching: bool
    price_monthly_cents: int


PLANS: dict[str, PlanLimits] = {
    "free": PlanLimits(
        name="free",
        display_name="Free",
        max_ai_queries_per_month=settings.free_ai_queries_per_month,
        has_learning_paths=False,
        has_coaching=False,
        price_monthly_cents=0,
    ),
    "premium": PlanLimits(
        name="premium",
        display_name="Premium",
        max_ai_queries_per_month=None,
        has_learning_paths=True,
        has_coaching=True,
        price_monthly_cents=999,
    ),
}


def map_stripe_status(stripe_status: str | None) -> str:
    """Map a Stripe subscription status onto the local state machine."""
    return _STRIPE_STATUS_MAP.get(stripe_status or "", "free")


def is_premium_status(status: str, expires_at: datetime | None, now: datetime | None = None) -> bool:
    """Premium while active or trialing and not past the paid-through date (naive UTC)."""
    if status not in PREMIUM_STATUSES:
        return False
    if expires_at is None:
        return True
    return expires_at > (now or utcnow())


def plan_for_status(status: str, expires_at: datetime | None = None) -> PlanLimits:
    return PLANS["premium"] if is_premium_status(status, expires_at) else PLANS["free"]
