"""Create the BestTutorEver Premium product and its per-seat price in test mode.

Run once:
    python -m besttutor.billing.scripts.create_stripe_price

Outputs the price ID to set in .env:
    STRIPE_PRICE_ID=price_xxx
"""

import asyncio

from besttutor.billing.plans import PLANS
from besttutor.billing.stripe_client import get_stripe_client
from besttutor.config import settings


async def main() -> None:
    if not settings.stripe_secret_key:
        print("ERROR: STRIPE_SECRET_KEY is not set in .env")
        return

    client = get_stripe_client()
    premium = PLANS["premium"]

    product = await client.v1.products.create_async(
        params={
            "name": f"BestTutorEver {premium.display_name}",
            "description": "Unlimited AI tutoring, learning paths and coaching. Billed per student profile.",
        }
    )
    price = await client.v1.prices.create_async(
        params={
            "product": product.id,
            "unit_amount": premium.price_monthly_cents,
            "currency": "usd",
            "recurring": {"interval": "month"},
        }
    )
    print(f"Created product: {product.name} ({product.id})")
    print(f"  Price: ${premium.price_monthly_cents / 100:.2f}/mo per seat ({price.id})")

    print("\n--- Add this to your .env ---")
    print(f"STRIPE_PRICE_ID={price.id}")


if __name__ == "__main__":
    asyncio.run(main())
