"""Tests for subscription service lookups and Stripe state updates (pure DB, no HTTP)."""

from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.database import utcnow
from besttutor.models.ai_session import AISession
from besttutor.models.subscription import Subscription
from besttutor.models.user import User
from besttutor.services.subscription_service import (
    apply_stripe_state,
    count_ai_sessions_this_month,
    ensure_stripe_customer,
    get_or_create_subscription,
    get_subscription_by_stripe_customer,
    get_subscriptions_by_stripe_subscription,
    get_user_by_email,
    is_premium,
    month_start,
)

T0 = datetime(2024, 5, 1, 12, 0)


class TestLookups:
    async def test_existing_row_returned(self, db_session: AsyncSession, student):
        first = await get_or_create_subscription(db_session, student)
        again = await get_or_create_subscription(db_session, student)
        assert first.id == again.id
        assert first.status == "free"

    async def test_missing_row_created_as_free(self, db_session: AsyncSession):
        user = User(email="norow@test.com", name="No Row", role="parent", is_active=True)
        db_session.add(user)
        await db_session.flush()

        subscription = await get_or_create_subscription(db_session, user)
        assert subscription.user_id == user.id
        assert subscription.status == "free"

    async def test_by_stripe_ids(self, db_session: AsyncSession, user_factory, parent):
        child_a = await user_factory(role="student", parent=parent, stripe_subscription_id="sub_family")
        child_b = await user_factory(role="student", parent=parent, stripe_subscription_id="sub_family")
        await user_factory(stripe_customer_id="cus_lookup")

        rows = await get_subscriptions_by_stripe_subscription(db_session, "sub_family")
        assert {row.user_id for row in rows} == {child_a.id, child_b.id}
        assert (await get_subscription_by_stripe_customer(db_session, "cus_lookup")) is not None
        assert (await get_subscription_by_stripe_customer(db_session, "cus_missing")) is None

    async def test_user_by_email_ignores_case(self, db_session: AsyncSession, parent):
        assert (await get_user_by_email(db_session, parent.email.upper())).id == parent.id


class TestEnsureStripeCustomer:
    async def test_existing_customer_reused(self, db_session: AsyncSession, user_factory):
        user = await user_factory(stripe_customer_id="cus_existing")
        with patch("besttutor.services.subscription_service.create_customer", new_callable=AsyncMock) as create:
            assert await ensure_stripe_customer(db_session, user, user.subscription) == "cus_existing"
        create.assert_not_awaited()

    async def test_customer_created_and_linked(self, db_session: AsyncSession, parent):
        with patch(
            "besttutor.services.subscription_service.create_customer",
            new_callable=AsyncMock,
            return_value=SimpleNamespace(id="cus_new"),
        ) as create:
            customer_id = await ensure_stripe_customer(db_session, parent, parent.subscription)

        assert customer_id == "cus_new"
        assert parent.subscription.stripe_customer_id == "cus_new"
        assert create.await_args.kwargs["user_id"] == str(parent.id)


class TestApplyStripeState:
    async def test_applies_absolute_state(self, db_session: AsyncSession, student):
        subscription = student.subscription
        expires = T0 + timedelta(days=30)
        applied = await apply_stripe_state(
            db_session, subscription, status="active", event_at=T0, stripe_subscription_id="sub_1", expires_at=expires
        )
        assert applied is True
        assert (subscription.status, subscription.stripe_subscription_id) == ("active", "sub_1")
        assert subscription.expires_at == expires
        assert subscription.last_event_at == T0

    async def test_older_event_ignored(self, db_session: AsyncSession, student):
        subscription = student.subscription
        await apply_stripe_state(db_session, subscription, status="canceled", event_at=T0, keep_subscription_id=False)
        applied = await apply_stripe_state(
            db_session,
            subscription,
            status="active",
            event_at=T0 - timedelta(minutes=1),
            stripe_subscription_id="sub_1",
        )
        assert applied is False
        assert subscription.status == "canceled"
        assert subscription.stripe_subscription_id is None

    async def test_same_event_replayed(self, db_session: AsyncSession, student):
        subscription = student.subscription
        for _ in range(2):
            assert await apply_stripe_state(
                db_session, subscription, status="past_due", event_at=T0, stripe_subscription_id="sub_1"
            )
        assert subscription.status == "past_due"

    async def test_expiry_kept_when_requested(self, db_session: AsyncSession, student):
        subscription = student.subscription
        expires = T0 + timedelta(days=5)
        await apply_stripe_state(db_session, subscription, status="active", event_at=T0, expires_at=expires)
        await apply_stripe_state(
            db_session, subscription, status="past_due", event_at=T0 + timedelta(hours=1), keep_expires_at=True
        )
        assert subscription.expires_at == expires


class TestPremiumAndUsage:
    def test_is_premium(self):
        now = T0
        assert is_premium(None) is False
        assert is_premium(Subscription(status="free"), now) is False
        assert is_premium(Subscription(status="trialing"), now) is True
        assert is_premium(Subscription(status="active", expires_at=now + timedelta(days=1)), now) is True
        assert is_premium(Subscription(status="active", expires_at=now - timedelta(days=1)), now) is False

    def test_month_start(self):
        assert month_start(datetime(2024, 2, 29, 23, 59)) == datetime(2024, 2, 1)

    async def test_counts_successful_sessions_this_month(self, db_session: AsyncSession, student):
        last_month = month_start() - timedelta(seconds=1)
        for success, created_at in [(True, utcnow()), (True, utcnow()), (False, utcnow()), (True, last_month)]:
            db_session.add(
                AISession(
                    user_id=student.id,
                    session_type="tutor",
                    model="gpt-4o-mini",
                    provider="openai",
                    success=success,
                    created_at=created_at,
                )
            )
        await db_session.flush()
        assert await count_ai_sessions_this_month(db_session, student.id) == 2
