"""Re-align Stripe seat quantities with the local family rosters.

Run periodically (cron) or after an incident:
    python -m besttutor.billing.scripts.reconcile_rosters

Each roster is committed on its own so one Stripe failure does not undo the
others.
"""

import asyncio
import logging

import stripe
from sqlalchemy import select

from besttutor.billing.roster import RosterConflict, reconcile_roster
from besttutor.config import settings
from besttutor.database import async_session_factory, engine
from besttutor.models.family import FamilySubscription

logger = logging.getLogger("besttutor.reconcile")


async def main() -> int:
    if not settings.stripe_configured:
        logger.error("STRIPE_SECRET_KEY is not set")
        return 1

    async with async_session_factory() as session:
        result = await session.execute(
            select(FamilySubscription.id).where(FamilySubscription.status != "canceled")
        )
        family_ids = list(result.scalars().all())

    changed = failed = 0
    for family_id in family_ids:
        async with async_session_factory() as session:
            family = await session.get(FamilySubscription, family_id)
            if family is None:
                continue
            # Rollback expires the instance
            stripe_subscription_id = family.stripe_subscription_id
            try:
                outcome = await reconcile_roster(session, family)
                await session.commit()
            except (stripe.StripeError, RosterConflict):
                await session.rollback()
                failed += 1
                logger.exception("Failed to reconcile %s", stripe_subscription_id)
                continue
            if outcome.changed:
                changed += 1

    logger.info("Reconciled %d roster(s): %d changed, %d failed", len(family_ids), changed, failed)
    await engine.dispose()
    return 1 if failed else 0


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    raise SystemExit(asyncio.run(main()))
