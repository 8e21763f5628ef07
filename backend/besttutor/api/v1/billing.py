"""Billing API endpoints: subscription status, Stripe Checkout, Customer Portal and family rosters."""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.api.deps import get_current_active_user, get_current_parent, get_db, rate_limit
from besttutor.billing.plans import plan_for_status
from besttutor.billing.roster import (
    RosterChange,
    add_profile,
    find_live_seat,
    list_family_subscriptions,
    remove_profile,
)
from besttutor.billing.stripe_client import (
    create_checkout_session,
    create_family_checkout_session,
    create_portal_session,
)
from besttutor.config import settings
from besttutor.models.user import User
from besttutor.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    FamilyCheckoutRequest,
    PlanResponse,
    PortalRequest,
    PortalResponse,
    RosterChangeRequest,
    RosterChangeResponse,
    RosterResponse,
    SubscriptionResponse,
    UsageResponse,
)
from besttutor.services.subscription_service import (
    count_ai_sessions_this_month,
    ensure_stripe_customer,
    get_or_create_subscription,
    is_premium,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


def _stripe_failure(action: str, exc: stripe.StripeError) -> HTTPException:
    logger.error("Stripe %s error: %s", action, exc)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


def _require_price() -> str:
    if not settings.stripe_price_id:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stripe price ID not configured.",
        )
    return settings.stripe_price_id


def _default_urls(success_url: str | None, cancel_url: str | None) -> tuple[str, str]:
    return (
        success_url or f"{settings.frontend_url}/billing?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url or f"{settings.frontend_url}/pricing",
    )


def _change_response(change: RosterChange) -> RosterChangeResponse:
    return RosterChangeResponse(
        subscription_id=change.stripe_subscription_id,
        profile_ids=change.profile_ids,
        quantity=change.quantity,
        roster_version=change.roster_version,
        canceled=change.canceled,
    )


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SubscriptionResponse:
    """Current plan, status and this month's AI usage."""
    subscription = await get_or_create_subscription(db, current_user)
    plan = plan_for_status(subscription.status, subscription.expires_at)
    ai_queries_used = await count_ai_sessions_this_month(db, current_user.id)

    return SubscriptionResponse(
        plan=PlanResponse(
            name=plan.name,
            display_name=plan.display_name,
            max_ai_queries_per_month=plan.max_ai_queries_per_month,
            has_learning_paths=plan.has_learning_paths,
            has_coaching=plan.has_coaching,
            price_monthly_cents=plan.price_monthly_cents,
        ),
        status=subscription.status,
        is_premium=is_premium(subscription),
        stripe_subscription_id=subscription.stripe_subscription_id,
        expires_at=subscription.expires_at,
        usage=UsageResponse(
            ai_queries_used=ai_queries_used,
            ai_queries_limit=plan.max_ai_queries_per_month,
        ),
    )


@router.post("/checkout", response_model=CheckoutResponse, dependencies=[Depends(rate_limit("checkout"))])
async def create_checkout(
    body: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> CheckoutResponse:
    """Create a Stripe Checkout session for the current profile, with the free trial."""
    price_id = _require_price()
    subscription = await get_or_create_subscription(db, current_user)
    if is_premium(subscription):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Already subscribed")

    customer_id = await ensure_stripe_customer(db, current_user, subscription)
    success_url, cancel_url = _default_urls(body.success_url, body.cancel_url)

    try:
        session = await create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            profile_id=str(current_user.id),
            success_url=success_url,
            cancel_url=cancel_url,
            trial_days=settings.stripe_trial_days,
        )
    except stripe.StripeError as e:
        raise _stripe_failure("checkout", e) from e

    return CheckoutResponse(checkout_url=session.url, session_id=session.id)


@router.post(
    "/family-checkout",
    response_model=CheckoutResponse,
    dependencies=[Depends(rate_limit("checkout"))],
)
async def create_family_checkout(
    body: FamilyCheckoutRequest,
    db: AsyncSession = Depends(get_db),
    parent: User = Depends(get_current_parent),
) -> CheckoutResponse:
    """One Stripe Checkout covering several child profiles, billed per seat."""
    price_id = _require_price()
    profile_ids = list(dict.fromkeys(body.profile_ids))
    if len(profile_ids) > settings.max_profiles_per_checkout:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {settings.max_profiles_per_checkout} profiles per checkout",
        )

    result = await db.execute(select(User).where(User.id.in_(profile_ids)))
    profiles = {profile.id: profile for profile in result.scalars().all()}
    for profile_id in profile_ids:
        profile = profiles.get(profile_id)
        if profile is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Profile {profile_id} not found")
        if profile.parent_id != parent.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized for this profile")
        if await find_live_seat(db, profile_id) is not None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Profile {profile_id} already has a family seat",
            )

    parent_subscription = await get_or_create_subscription(db, parent)
    customer_id = await ensure_stripe_customer(db, parent, parent_subscription)
    success_url, cancel_url = _default_urls(body.success_url, body.cancel_url)

    try:
        session = await create_family_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            parent_user_id=str(parent.id),
            parent_email=parent.email,
            profile_ids=[str(p) for p in profile_ids],
            success_url=success_url,
            cancel_url=cancel_url,
        )
    except stripe.StripeError as e:
        raise _stripe_failure("family checkout", e) from e

    return CheckoutResponse(checkout_url=session.url, session_id=session.id)


@router.post("/portal", response_model=PortalResponse)
async def create_portal(
    body: PortalRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> PortalResponse:
    """Create a Stripe Customer Portal session for subscription management."""
    subscription = await get_or_create_subscription(db, current_user)

    if not subscription.stripe_customer_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No Stripe customer found. Subscribe first.",
        )

    return_url = body.return_url or f"{settings.frontend_url}/billing"

    try:
        session = await create_portal_session(
            customer_id=subscription.stripe_customer_id,
            return_url=return_url,
        )
    except stripe.StripeError as e:
        raise _stripe_failure("portal", e) from e

    return PortalResponse(portal_url=session.url)


# --- Family rosters ---


@router.get("/family-subscriptions", response_model=list[RosterResponse])
async def list_rosters(
    db: AsyncSession = Depends(get_db),
    parent: User = Depends(get_current_parent),
) -> list[RosterResponse]:
    families = await list_family_subscriptions(db, parent.id)
    return [
        RosterResponse(
            subscription_id=family.stripe_subscription_id,
            status=family.status,
            profile_ids=family.profile_ids,
            quantity=family.quantity,
            roster_version=family.roster_version,
        )
        for family in families
    ]


@router.post("/family-subscriptions/add-child", response_model=RosterChangeResponse)
async def add_child(
    body: RosterChangeRequest,
    db: AsyncSession = Depends(get_db),
    parent: User = Depends(get_current_parent),
) -> RosterChangeResponse:
    """Add a seat for ``profile_id``. Roster errors map to 400/403/404/409."""
    try:
        change = await add_profile(
            db, parent=parent, stripe_subscription_id=body.subscription_id, profile_id=body.profile_id
        )
    except stripe.StripeError as e:
        raise _stripe_failure("roster update", e) from e
    return _change_response(change)


@router.post("/family-subscriptions/remove-child", response_model=RosterChangeResponse)
async def remove_child(
    body: RosterChangeRequest,
    db: AsyncSession = Depends(get_db),
    parent: User = Depends(get_current_parent),
) -> RosterChangeResponse:
    """Remove the seat of ``profile_id``; the last seat cancels the subscription."""
    try:
        change = await remove_profile(
            db, parent=parent, stripe_subscription_id=body.subscription_id, profile_id=body.profile_id
        )
    except stripe.StripeError as e:
        raise _stripe_failure("roster update", e) from e
    return _change_response(change)
