"""Stripe webhook event handlers: map subscription lifecycle events onto local state.

Every handler writes an absolute state ("status is X, paid through Y") rather
than a delta, so duplicated deliveries are harmless. Rows remember the
creation time of the newest event applied; older events are skipped, which
makes out-of-order delivery safe as well.
"""

import logging
import uuid
from datetime import datetime, timezone

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.billing.plans import map_stripe_status
from besttutor.billing.roster import get_family_subscription, upsert_family_roster
from besttutor.billing.stripe_client import MULTI_SUBSCRIPTION, get_customer_email, get_subscription
from besttutor.database import utcnow
from besttutor.models.subscription import Subscription
from besttutor.models.user import User
from besttutor.services.subscription_service import (
    apply_stripe_state,
    get_or_create_subscription,
    get_subscription_by_stripe_customer,
    get_subscription_for_user_id,
    get_subscriptions_by_stripe_subscription,
    get_user_by_email,
)

logger = logging.getLogger(__name__)


def _ts_to_naive(ts: int | None) -> datetime | None:
    """Convert Stripe Unix timestamp to naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def _event_time(event: stripe.Event) -> datetime:
    return _ts_to_naive(getattr(event, "created", None)) or utcnow()


def _get_first_item(stripe_sub: stripe.Subscription):
    """First subscription item, read with bracket notation (``.items`` is dict.items)."""
    sub_items = stripe_sub["items"]
    if sub_items and sub_items.data:
        return sub_items.data[0]
    return None


def _get_period_end(stripe_sub: stripe.Subscription) -> datetime | None:
    """Paid-through date.

    Newer Stripe API versions carry the period on the subscription item,
    older ones on the subscription.
    """
    item = _get_first_item(stripe_sub)
    period_end = getattr(item, "current_period_end", None) if item else None
    if period_end is None:
        period_end = getattr(stripe_sub, "current_period_end", None)
    return _ts_to_naive(period_end)


def _metadata(obj) -> dict:
    return getattr(obj, "metadata", None) or {}


def _parse_profile_ids(raw: str | None) -> list[uuid.UUID]:
    profile_ids = []
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        try:
            profile_ids.append(uuid.UUID(part))
        except ValueError:
            logger.warning("Skipping malformed profile id %r in roster metadata", part)
    return profile_ids


def _invoice_subscription_id(invoice) -> str | None:
    subscription_id = getattr(invoice, "subscription", None)
    if subscription_id:
        return subscription_id
    # Newer API versions nest it under parent.subscription_details
    parent = getattr(invoice, "parent", None)
    details = getattr(parent, "subscription_details", None) if parent else None
    return getattr(details, "subscription", None) if details else None


async def _subscription_for_user(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
    subscription = await get_subscription_for_user_id(db, user_id)
    if subscription is not None:
        return subscription
    user = await db.get(User, user_id)
    return await get_or_create_subscription(db, user) if user is not None else None


async def _rows_for_family(db: AsyncSession, stripe_subscription_id: str) -> list[Subscription] | None:
    family = await get_family_subscription(db, stripe_subscription_id)
    if family is None:
        return None
    rows = []
    for profile_id in family.profile_ids:
        row = await _subscription_for_user(db, profile_id)
        if row is not None:
            rows.append(row)
    return rows


async def _resolve_rows(
    db: AsyncSession,
    stripe_subscription_id: str | None,
    customer_id: str | None,
    email: str | None = None,
) -> list[Subscription]:
    """Find the profile rows an event applies to.

    Lookup order: family roster seats, rows linked to the subscription ID, the
    row owning the customer ID, then the profile with the customer's email.
    """
    if stripe_subscription_id:
        family_rows = await _rows_for_family(db, stripe_subscription_id)
        if family_rows is not None:
            return family_rows

        rows = await get_subscriptions_by_stripe_subscription(db, stripe_subscription_id)
        if rows:
            return rows

    if customer_id:
        row = await get_subscription_by_stripe_customer(db, customer_id)
        if row is not None:
            return [row]

    if email is None and customer_id:
        email = await get_customer_email(customer_id)
    if email:
        user = await get_user_by_email(db, email)
        if user is not None:
            return [await get_or_create_subscription(db, user)]

    return []


def _is_family(metadata: dict) -> bool:
    return metadata.get("type") == MULTI_SUBSCRIPTION


async def _rows_from_roster_metadata(
    db: AsyncSession,
    stripe_subscription_id: str,
    metadata: dict,
    customer_id: str | None,
    status: str,
) -> list[Subscription]:
    """Create or extend the family roster described by ``metadata``; return its seat rows."""
    profile_ids = _parse_profile_ids(metadata.get("profile_ids"))
    try:
        parent_id = uuid.UUID(metadata.get("parent_user_id") or "")
    except ValueError:
        parent_id = None
    if parent_id is None or not profile_ids or await db.get(User, parent_id) is None:
        logger.warning("Family subscription %s is missing roster metadata", stripe_subscription_id)
        return []

    family = await upsert_family_roster(
        db,
        stripe_subscription_id=stripe_subscription_id,
        parent_user_id=parent_id,
        profile_ids=profile_ids,
        stripe_customer_id=customer_id,
        status=status,
    )
    return await _rows_for_family(db, family.stripe_subscription_id) or []


async def _resolve_subscription_rows(db: AsyncSession, stripe_sub, status: str) -> list[Subscription]:
    """Rows for a subscription event.

    A family subscription only ever touches its seats: when no roster exists
    yet it is built from the subscription metadata, and the parent's customer
    row is never used as a fallback.
    """
    family_rows = await _rows_for_family(db, stripe_sub.id)
    if family_rows is not None:
        return family_rows
    metadata = _metadata(stripe_sub)
    if _is_family(metadata):
        return await _rows_from_roster_metadata(db, stripe_sub.id, metadata, stripe_sub.customer, status)
    return await _resolve_rows(db, stripe_sub.id, stripe_sub.customer)


async def handle_checkout_session_completed(db: AsyncSession, event: stripe.Event) -> None:
    """checkout.session.completed: link the subscription and activate its profiles."""
    session = event.data.object
    subscription_id = session.subscription
    customer_id = session.customer

    if not subscription_id:
        logger.info("Checkout session %s has no subscription, skipping", session.id)
        return

    event_at = _event_time(event)
    stripe_sub = await get_subscription(subscription_id)
    status = map_stripe_status(stripe_sub.status)
    expires_at = _get_period_end(stripe_sub)
    metadata = _metadata(session) or _metadata(stripe_sub)

    if _is_family(metadata):
        rows = await _rows_from_roster_metadata(db, subscription_id, metadata, customer_id, status)
        if not rows:
            return
    elif metadata.get("profile_id"):
        row = await _subscription_for_user(db, uuid.UUID(metadata["profile_id"]))
        rows = [row] if row is not None else []
    else:
        email = getattr(session, "customer_email", None) or getattr(
            getattr(session, "customer_details", None), "email", None
        )
        rows = await _resolve_rows(db, None, customer_id, email)

    if not rows:
        logger.warning("No local profile found for checkout %s (customer %s)", session.id, customer_id)
        return

    for row in rows:
        await apply_stripe_state(
            db,
            row,
            status=status,
            event_at=event_at,
            stripe_subscription_id=subscription_id,
            expires_at=expires_at,
        )
    logger.info("Checkout completed: %s -> %s for %d profile(s)", subscription_id, status, len(rows))


async def handle_subscription_updated(db: AsyncSession, event: stripe.Event) -> None:
    """customer.subscription.created / updated: copy status and paid-through date."""
    stripe_sub = event.data.object
    status = map_stripe_status(stripe_sub.status)
    rows = await _resolve_subscription_rows(db, stripe_sub, status)
    if not rows:
        logger.warning("No local subscription found for Stripe subscription %s", stripe_sub.id)
        return

    family = await get_family_subscription(db, stripe_sub.id)
    if family is not None:
        family.status = status
        item = _get_first_item(stripe_sub)
        if item is not None and item.quantity != len(family.seats):
            logger.warning(
                "Seat drift on %s: Stripe quantity %s, local seats %d",
                stripe_sub.id,
                item.quantity,
                len(family.seats),
            )

    event_at = _event_time(event)
    expires_at = _get_period_end(stripe_sub)
    for row in rows:
        await apply_stripe_state(
            db,
            row,
            status=status,
            event_at=event_at,
            stripe_subscription_id=stripe_sub.id,
            expires_at=expires_at,
        )
    logger.info("Subscription %s: %s -> %s", event.type, stripe_sub.id, status)


async def handle_subscription_deleted(db: AsyncSession, event: stripe.Event) -> None:
    """customer.subscription.deleted: cancel every linked profile, effective now."""
    stripe_sub = event.data.object
    rows = await _resolve_subscription_rows(db, stripe_sub, "canceled")
    if not rows:
        logger.warning("No local subscription found for Stripe subscription %s (delete event)", stripe_sub.id)
        return

    family = await get_family_subscription(db, stripe_sub.id)
    if family is not None:
        family.status = "canceled"

    event_at = _event_time(event)
    for row in rows:
        await apply_stripe_state(db, row, status="canceled", event_at=event_at, expires_at=event_at)
    logger.info("Subscription deleted: %s canceled for %d profile(s)", stripe_sub.id, len(rows))


async def handle_invoice_payment_failed(db: AsyncSession, event: stripe.Event) -> None:
    """invoice.payment_failed: mark linked profiles past_due."""
    invoice = event.data.object
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        logger.info("Invoice %s has no subscription, skipping payment failure", invoice.id)
        return

    rows = await _rows_for_family(db, subscription_id)
    if rows is None:
        rows = await get_subscriptions_by_stripe_subscription(db, subscription_id)
    if not rows:
        # Nothing linked yet; the subscription metadata tells a family apart from a single profile
        stripe_sub = await get_subscription(subscription_id)
        rows = await _resolve_subscription_rows(db, stripe_sub, "past_due")
    if not rows:
        logger.warning("No local subscription found for Stripe subscription %s (payment failed)", subscription_id)
        return

    event_at = _event_time(event)
    for row in rows:
        await apply_stripe_state(db, row, status="past_due", event_at=event_at, keep_expires_at=True)
    logger.info("Payment failed: %s marked past_due", subscription_id)


EVENT_HANDLERS = {
    "checkout.session.completed": handle_checkout_session_completed,
    "customer.subscription.created": handle_subscription_updated,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_failed": handle_invoice_payment_failed,
}
