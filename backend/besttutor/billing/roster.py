"""Family (multi-seat) subscription roster.

The roster lives in ``family_subscriptions`` / ``family_subscription_seats``.
Stripe is kept in step with it: the subscription item quantity always equals
the number of seats, and the seat list is mirrored into the subscription
metadata for support tooling.

Every mutation:

1. re-fetches the Stripe subscription,
2. claims the roster with a compare-and-swap on ``roster_version`` (a
   concurrent mutation of the same roster fails with ``RosterConflict``),
3. updates Stripe (quantity + metadata, or cancels when the last seat goes),
4. updates the local rows in the same transaction.

A Stripe failure propagates and the caller's transaction rolls back, leaving
the version unchanged. ``reconcile_roster`` repairs any remaining drift.
"""

import logging
import uuid
from dataclasses import dataclass, field

import stripe
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from besttutor.billing.plans import map_stripe_status
from besttutor.billing.stripe_client import (
    MULTI_SUBSCRIPTION,
    cancel_subscription,
    get_subscription,
    roster_metadata,
    update_family_subscription,
)
from besttutor.config import settings
from besttutor.database import utcnow
from besttutor.models.family import FamilySubscription, FamilySubscriptionSeat
from besttutor.models.user import User
from besttutor.services.subscription_service import get_or_create_subscription

logger = logging.getLogger(__name__)


class RosterError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RosterNotFound(RosterError):
    status_code = 404


class RosterForbidden(RosterError):
    status_code = 403


class RosterInvalid(RosterError):
    status_code = 400


class RosterConflict(RosterError):
    status_code = 409


@dataclass
class RosterChange:
    stripe_subscription_id: str
    profile_ids: list[uuid.UUID]
    quantity: int
    roster_version: int
    canceled: bool = False


@dataclass
class ReconcileResult:
    stripe_subscription_id: str
    local_seats: int
    stripe_quantity: int | None
    changed: bool = False
    actions: list[str] = field(default_factory=list)


def _first_item(stripe_sub: stripe.Subscription):
    # Bracket access: ``.items`` collides with dict.items on StripeObject
    sub_items = stripe_sub["items"]
    if sub_items and sub_items.data:
        return sub_items.data[0]
    return None


def _metadata(stripe_sub: stripe.Subscription) -> dict:
    return getattr(stripe_sub, "metadata", None) or {}


async def get_family_subscription(db: AsyncSession, stripe_subscription_id: str) -> FamilySubscription | None:
    return await db.scalar(
        select(FamilySubscription).where(FamilySubscription.stripe_subscription_id == stripe_subscription_id)
    )


async def list_family_subscriptions(db: AsyncSession, parent_user_id: uuid.UUID) -> list[FamilySubscription]:
    result = await db.execute(
        select(FamilySubscription)
        .where(FamilySubscription.parent_user_id == parent_user_id)
        .order_by(FamilySubscription.created_at)
    )
    return list(result.scalars().all())


async def find_live_seat(db: AsyncSession, profile_id: uuid.UUID) -> FamilySubscriptionSeat | None:
    """The seat ``profile_id`` holds on a live family subscription, if any.

    A seat left behind on a canceled roster is released so the profile can
    join another family subscription.
    """
    seat = await db.scalar(select(FamilySubscriptionSeat).where(FamilySubscriptionSeat.profile_id == profile_id))
    if seat is None:
        return None
    family = seat.family_subscription
    if family.status != "canceled":
        return seat

    logger.info("Releasing seat of profile %s from canceled roster %s", profile_id, family.stripe_subscription_id)
    family.seats.remove(seat)
    family.quantity = len(family.seats)
    await db.flush()
    return None


async def upsert_family_roster(
    db: AsyncSession,
    *,
    stripe_subscription_id: str,
    parent_user_id: uuid.UUID,
    profile_ids: list[uuid.UUID],
    stripe_customer_id: str | None = None,
    status: str = "active",
) -> FamilySubscription:
    """Create or complete the local roster from a finished family checkout.

    Replays add nothing: seats already present are kept and missing ones added.
    A profile seated on another live family subscription is skipped; the
    quantity drift this leaves on Stripe is repaired by ``reconcile_roster``.
    Once the roster has been edited the checkout metadata is stale and is no
    longer applied.
    """
    family = await get_family_subscription(db, stripe_subscription_id)
    if family is not None and family.roster_version > 0:
        logger.info("Roster %s already edited, ignoring checkout metadata", stripe_subscription_id)
        return family

    if family is None:
        family = FamilySubscription(
            stripe_subscription_id=stripe_subscription_id,
            stripe_customer_id=stripe_customer_id,
            parent_user_id=parent_user_id,
            status=status,
            quantity=0,
            roster_version=0,
            seats=[],
        )
        db.add(family)
        await db.flush()
        logger.info("Created family roster for Stripe subscription %s", stripe_subscription_id)

    seated = set(family.profile_ids)
    for profile_id in profile_ids:
        if profile_id in seated:
            continue
        other = await find_live_seat(db, profile_id)
        if other is not None:
            logger.warning(
                "Profile %s already holds a seat on %s, not seating it on %s",
                profile_id,
                other.family_subscription.stripe_subscription_id,
                stripe_subscription_id,
            )
            continue
        family.seats.append(FamilySubscriptionSeat(profile_id=profile_id))
        seated.add(profile_id)

    family.quantity = len(family.seats)
    if stripe_customer_id and not family.stripe_customer_id:
        family.stripe_customer_id = stripe_customer_id
    await db.flush()
    return family


async def _claim_roster(db: AsyncSession, family: FamilySubscription, expected_version: int) -> int:
    """Compare-and-swap on ``roster_version``. Returns the new version."""
    result = await db.execute(
        update(FamilySubscription)
        .where(
            FamilySubscription.id == family.id,
            FamilySubscription.roster_version == expected_version,
        )
        .values(roster_version=expected_version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning(
            "Roster version conflict on %s (expected %d)",
            family.stripe_subscription_id,
            expected_version,
        )
        raise RosterConflict("The roster was changed by another request. Reload and try again.")

    set_committed_value(family, "roster_version", expected_version + 1)
    return expected_version + 1


async def _load_for_parent(
    db: AsyncSession, parent: User, stripe_subscription_id: str, profile_id: uuid.UUID
) -> tuple[FamilySubscription, User]:
    family = await get_family_subscription(db, stripe_subscription_id)
    if family is None:
        raise RosterNotFound("Family subscription not found")
    if family.parent_user_id != parent.id:
        raise RosterForbidden("Not authorized to manage this subscription")

    profile = await db.scalar(select(User).where(User.id == profile_id))
    if profile is None:
        raise RosterNotFound("Profile not found")
    if profile.parent_id != parent.id:
        raise RosterForbidden("Not authorized to manage this profile")
    return family, profile


async def _fetch_family_stripe_subscription(stripe_subscription_id: str, parent: User) -> stripe.Subscription:
    stripe_sub = await get_subscription(stripe_subscription_id)
    metadata = _metadata(stripe_sub)
    if metadata.get("type") != MULTI_SUBSCRIPTION:
        raise RosterInvalid("Not a family subscription")
    if metadata.get("parent_user_id") and metadata.get("parent_user_id") != str(parent.id):
        raise RosterForbidden("Not authorized to manage this subscription")
    return stripe_sub


async def remove_profile(
    db: AsyncSession,
    *,
    parent: User,
    stripe_subscription_id: str,
    profile_id: uuid.UUID,
) -> RosterChange:
    """Remove a child profile from a family subscription.

    The Stripe quantity drops by one; removing the last seat cancels the
    Stripe subscription. The removed profile's subscription row becomes
    ``canceled`` with its subscription ID cleared.
    """
    family, profile = await _load_for_parent(db, parent, stripe_subscription_id, profile_id)
    profile_sub = await get_or_create_subscription(db, profile)
    if profile_sub.stripe_subscription_id not in (None, stripe_subscription_id):
        raise RosterInvalid("Profile belongs to a different subscription")

    seat = next((s for s in family.seats if s.profile_id == profile_id), None)
    if seat is None:
        raise RosterNotFound("Profile is not on this subscription")

    expected_version = family.roster_version
    stripe_sub = await _fetch_family_stripe_subscription(stripe_subscription_id, parent)
    version = await _claim_roster(db, family, expected_version)

    remaining = [s.profile_id for s in family.seats if s.profile_id != profile_id]
    canceled = not remaining
    if canceled:
        await cancel_subscription(stripe_subscription_id)
        family.status = "canceled"
    else:
        item = _first_item(stripe_sub)
        if item is None:
            raise RosterInvalid("Stripe subscription has no items")
        await update_family_subscription(
            stripe_subscription_id,
            item.id,
            len(remaining),
            roster_metadata(str(parent.id), [str(p) for p in remaining], parent.email),
        )

    family.seats.remove(seat)
    family.quantity = len(remaining)

    profile_sub.status = "canceled"
    profile_sub.stripe_subscription_id = None
    profile_sub.expires_at = utcnow()
    await db.flush()

    logger.info(
        "Removed profile %s from %s (%d seats left%s)",
        profile_id,
        stripe_subscription_id,
        len(remaining),
        ", subscription canceled" if canceled else "",
    )
    return RosterChange(
        stripe_subscription_id=stripe_subscription_id,
        profile_ids=remaining,
        quantity=len(remaining),
        roster_version=version,
        canceled=canceled,
    )


async def add_profile(
    db: AsyncSession,
    *,
    parent: User,
    stripe_subscription_id: str,
    profile_id: uuid.UUID,
) -> RosterChange:
    """Add a child profile to an existing family subscription (one more seat)."""
    family, profile = await _load_for_parent(db, parent, stripe_subscription_id, profile_id)
    if family.status == "canceled":
        raise RosterInvalid("Subscription is canceled")
    if profile_id in family.profile_ids:
        raise RosterInvalid("Profile is already on this subscription")

    if await find_live_seat(db, profile_id) is not None:
        raise RosterInvalid("Profile already has a family seat")
    if len(family.seats) >= settings.max_profiles_per_checkout:
        raise RosterInvalid(f"A family subscription covers at most {settings.max_profiles_per_checkout} profiles")

    expected_version = family.roster_version
    stripe_sub = await _fetch_family_stripe_subscription(stripe_subscription_id, parent)
    item = _first_item(stripe_sub)
    if item is None:
        raise RosterInvalid("Stripe subscription has no items")
    version = await _claim_roster(db, family, expected_version)

    profile_ids = [*family.profile_ids, profile_id]
    await update_family_subscription(
        stripe_subscription_id,
        item.id,
        len(profile_ids),
        roster_metadata(str(parent.id), [str(p) for p in profile_ids], parent.email),
    )

    family.seats.append(FamilySubscriptionSeat(profile_id=profile_id))
    family.quantity = len(profile_ids)

    profile_sub = await get_or_create_subscription(db, profile)
    profile_sub.status = map_stripe_status(getattr(stripe_sub, "status", None))
    profile_sub.stripe_subscription_id = stripe_subscription_id
    profile_sub.expires_at = None
    await db.flush()

    logger.info("Added profile %s to %s (%d seats)", profile_id, stripe_subscription_id, len(profile_ids))
    return RosterChange(
        stripe_subscription_id=stripe_subscription_id,
        profile_ids=profile_ids,
        quantity=len(profile_ids),
        roster_version=version,
    )


async def reconcile_roster(db: AsyncSession, family: FamilySubscription) -> ReconcileResult:
    """Bring Stripe's quantity and metadata in line with the local seats.

    A subscription canceled on Stripe's side marks the local roster canceled.
    An active subscription with no seats left is canceled.
    """
    stripe_sub = await get_subscription(family.stripe_subscription_id)
    item = _first_item(stripe_sub)
    seats = family.profile_ids
    result = ReconcileResult(
        stripe_subscription_id=family.stripe_subscription_id,
        local_seats=len(seats),
        stripe_quantity=getattr(item, "quantity", None) if item else None,
    )

    stripe_status = map_stripe_status(getattr(stripe_sub, "status", None))
    if stripe_status == "canceled":
        if family.status != "canceled":
            family.status = "canceled"
            result.changed = True
            result.actions.append("marked canceled")
        return result

    if not seats:
        await cancel_subscription(family.stripe_subscription_id)
        family.status = "canceled"
        result.changed = True
        result.actions.append("canceled empty subscription")
        return result

    metadata = roster_metadata(str(family.parent_user_id), [str(p) for p in seats])
    current = _metadata(stripe_sub)
    quantity_drift = item is not None and item.quantity != len(seats)
    metadata_drift = current.get("profile_ids") != metadata["profile_ids"]
    if item is not None and (quantity_drift or metadata_drift):
        await _claim_roster(db, family, family.roster_version)
        if current.get("parent_email"):
            metadata["parent_email"] = current["parent_email"]
        await update_family_subscription(family.stripe_subscription_id, item.id, len(seats), metadata)
        result.changed = True
        result.actions.append(f"quantity {item.quantity} -> {len(seats)}" if quantity_drift else "metadata synced")

    family.quantity = len(seats)
    family.status = stripe_status
    if result.changed:
        logger.info("Reconciled %s: %s", family.stripe_subscription_id, "; ".join(result.actions))
    return result
