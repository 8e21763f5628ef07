"""Async Stripe API wrapper for BestTutorEver."""

import logging
from collections.abc import Sequence

import stripe
from stripe import StripeClient

from besttutor.config import settings

logger = logging.getLogger(__name__)

MULTI_SUBSCRIPTION = "multi_subscription"
SINGLE_SUBSCRIPTION = "single_subscription"


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support."""
    return StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(),
    )


def roster_metadata(parent_user_id: str, profile_ids: Sequence[str], parent_email: str | None = None) -> dict[str, str]:
    """Stripe metadata mirroring a family roster."""
    metadata = {
        "type": MULTI_SUBSCRIPTION,
        "parent_user_id": parent_user_id,
        "profile_ids": ",".join(profile_ids),
        "profile_count": str(len(profile_ids)),
    }
    if parent_email:
        metadata["parent_email"] = parent_email
    return metadata


async def create_customer(email: str, name: str, user_id: str) -> stripe.Customer:
    client = get_stripe_client()
    logger.info("Creating Stripe customer for user %s (%s)", user_id, email)
    customer = await client.v1.customers.create_async(
        params={
            "email": email,
            "name": name,
            "metadata": {"besttutor_user_id": user_id},
        }
    )
    logger.info("Created Stripe customer %s for user %s", customer.id, user_id)
    return customer


async def get_customer_email(customer_id: str) -> str | None:
    client = get_stripe_client()
    customer = await client.v1.customers.retrieve_async(customer_id)
    return getattr(customer, "email", None)


async def create_checkout_session(
    customer_id: str,
    price_id: str,
    profile_id: str,
    success_url: str,
    cancel_url: str,
    trial_days: int = 0,
) -> stripe.checkout.Session:
    """Checkout for a single profile, with an optional free trial."""
    client = get_stripe_client()
    logger.info("Creating checkout session for customer %s, profile %s", customer_id, profile_id)
    metadata = {"type": SINGLE_SUBSCRIPTION, "profile_id": profile_id}
    subscription_data: dict = {"metadata": metadata}
    if trial_days > 0:
        subscription_data["trial_period_days"] = trial_days
    return await client.v1.checkout.sessions.create_async(
        params={
            "mode": "subscription",
            "customer": customer_id,
            "line_items": [{"price": price_id, "quantity": 1}],
            "metadata": metadata,
            "subscription_data": subscription_data,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
    )


async def create_family_checkout_session(
    customer_id: str,
    price_id: str,
    parent_user_id: str,
    parent_email: str,
    profile_ids: Sequence[str],
    success_url: str,
    cancel_url: str,
) -> stripe.checkout.Session:
    """Checkout for several child profiles: one line item, one seat per profile."""
    client = get_stripe_client()
    metadata = roster_metadata(parent_user_id, profile_ids, parent_email)
    logger.info(
        "Creating family checkout session for customer %s with %d profiles",
        customer_id,
        len(profile_ids),
    )
    return await client.v1.checkout.sessions.create_async(
        params={
            "mode": "subscription",
            "customer": customer_id,
            "line_items": [{"price": price_id, "quantity": len(profile_ids)}],
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
    )


async def create_portal_session(customer_id: str, return_url: str) -> stripe.billing_portal.Session:
    client = get_stripe_client()
    logger.info("Creating portal session for customer %s", customer_id)
    return await client.v1.billing_portal.sessions.create_async(
        params={
            "customer": customer_id,
            "return_url": return_url,
        }
    )


async def get_subscription(subscription_id: str) -> stripe.Subscription:
    client = get_stripe_client()
    return await client.v1.subscriptions.retrieve_async(subscription_id)


async def cancel_subscription(subscription_id: str) -> stripe.Subscription:
    client = get_stripe_client()
    logger.info("Canceling Stripe subscription %s", subscription_id)
    return await client.v1.subscriptions.cancel_async(subscription_id)


async def update_family_subscription(
    subscription_id: str,
    item_id: str,
    quantity: int,
    metadata: dict[str, str],
) -> stripe.Subscription:
    """Set the seat quantity and roster metadata in one Stripe update."""
    client = get_stripe_client()
    logger.info("Updating Stripe subscription %s to quantity %d", subscription_id, quantity)
    return await client.v1.subscriptions.update_async(
        subscription_id,
        params={
            "items": [{"id": item_id, "quantity": quantity}],
            "metadata": metadata,
            "proration_behavior": "create_prorations",
        },
    )


def construct_webhook_event(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify and construct a Stripe webhook event (synchronous)."""
    client = get_stripe_client()
    return client.construct_event(payload, sig_header, settings.stripe_webhook_secret)
