"""Tests for Stripe webhook handler functions with mocked Stripe events."""

import uuid
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.billing.roster import get_family_subscription
from besttutor.billing.stripe_client import MULTI_SUBSCRIPTION
from besttutor.billing.webhooks import (
    _get_period_end,
    _invoice_subscription_id,
    _parse_profile_ids,
    _ts_to_naive,
    handle_checkout_session_completed,
    handle_invoice_payment_failed,
    handle_subscription_deleted,
    handle_subscription_updated,
)
from besttutor.models.user import User

PERIOD_END = 1702600000
EVENT_TIME = 1700000000


class _StripeObj(SimpleNamespace):
    """SimpleNamespace with bracket notation support (like Stripe API objects)."""

    def __getitem__(self, key: str):
        return getattr(self, key)


def _make_event(event_type: str, data_object: dict, created: int = EVENT_TIME) -> _StripeObj:
    """Create a fake Stripe Event-like object."""
    return _StripeObj(
        type=event_type,
        id=f"evt_test_{uuid.uuid4().hex[:8]}",
        created=created,
        data=_StripeObj(object=_StripeObj(**data_object)),
    )


def _make_stripe_sub(
    status: str = "active",
    sub_id: str = "sub_test_123",
    customer: str = "cus_test_123",
    quantity: int = 1,
    metadata: dict | None = None,
) -> _StripeObj:
    """Create a fake Stripe Subscription object (period end on the item)."""
    return _StripeObj(
        id=sub_id,
        customer=customer,
        status=status,
        metadata=metadata or {},
        items=_StripeObj(data=[_StripeObj(id="si_test_1", quantity=quantity, current_period_end=PERIOD_END)]),
    )


def _sub_event(event_type: str, stripe_sub: _StripeObj, created: int = EVENT_TIME) -> _StripeObj:
    return _StripeObj(type=event_type, id="evt_sub", created=created, data=_StripeObj(object=stripe_sub))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_ts_to_naive(self):
        result = _ts_to_naive(EVENT_TIME)
        assert result == datetime(2023, 11, 14, 22, 13, 20)
        assert result.tzinfo is None
        assert _ts_to_naive(None) is None

    def test_period_end_from_item(self):
        assert _get_period_end(_make_stripe_sub()) == _ts_to_naive(PERIOD_END)

    def test_period_end_from_subscription(self):
        fake_sub = _StripeObj(items=_StripeObj(data=[]), current_period_end=PERIOD_END)
        assert _get_period_end(fake_sub) == _ts_to_naive(PERIOD_END)

    def test_parse_profile_ids_skips_malformed(self):
        first, second = uuid.uuid4(), uuid.uuid4()
        assert _parse_profile_ids(f"{first}, not-a-uuid,,{second}") == [first, second]
        assert _parse_profile_ids(None) == []

    def test_invoice_subscription_id_new_api_shape(self):
        invoice = _StripeObj(
            id="in_1",
            subscription=None,
            parent=_StripeObj(subscription_details=_StripeObj(subscription="sub_nested")),
        )
        assert _invoice_subscription_id(invoice) == "sub_nested"


# ---------------------------------------------------------------------------
# checkout.session.completed
# ---------------------------------------------------------------------------


class TestCheckoutCompleted:
    async def test_single_profile_checkout(self, db_session: AsyncSession, student: User):
        event = _make_event(
            "checkout.session.completed",
            {
                "id": "cs_test_1",
                "subscription": "sub_single",
                "customer": "cus_single",
                "metadata": {"type": "single_subscription", "profile_id": str(student.id)},
            },
        )
        stripe_sub = _make_stripe_sub(status="trialing", sub_id="sub_single", customer="cus_single")

        with patch("besttutor.billing.webhooks.get_subscription", AsyncMock(return_value=stripe_sub)):
            await handle_checkout_session_completed(db_session, event)

        subscription = student.subscription
        assert subscription.status == "trialing"
        assert subscription.stripe_subscription_id == "sub_single"
        assert subscription.expires_at == _ts_to_naive(PERIOD_END)
        assert subscription.last_event_at == _ts_to_naive(EVENT_TIME)

    async def test_family_checkout_creates_roster(
        self, db_session: AsyncSession, user_factory, parent: User, student: User
    ):
        sibling = await user_factory(role="student", parent=parent, grade_level=9)
        metadata = {
            "type": MULTI_SUBSCRIPTION,
            "parent_user_id": str(parent.id),
            "profile_ids": f"{student.id},{sibling.id}",
        }
        event = _make_event(
            "checkout.session.completed",
            {"id": "cs_family", "subscription": "sub_family", "customer": "cus_family", "metadata": metadata},
        )
        stripe_sub = _make_stripe_sub(sub_id="sub_family", customer="cus_family", quantity=2, metadata=metadata)

        with patch("besttutor.billing.webhooks.get_subscription", AsyncMock(return_value=stripe_sub)):
            await handle_checkout_session_completed(db_session, event)
            # Replayed delivery adds nothing
            await handle_checkout_session_completed(db_session, event)

        family = await get_family_subscription(db_session, "sub_family")
        assert family is not None
        assert family.parent_user_id == parent.id
        assert family.profile_ids == [student.id, sibling.id]
        assert family.quantity == 2
        assert family.roster_version == 0
        for profile in (student, sibling):
            assert profile.subscription.status == "active"
            assert profile.subscription.stripe_subscription_id == "sub_family"

    async def test_family_checkout_skips_profile_seated_elsewhere(
        self, db_session: AsyncSession, user_factory, parent: User, student: User
    ):
        sibling = await user_factory(role="student", parent=parent, grade_level=9)
        for sub_id, profiles in (("sub_first", [student]), ("sub_second", [student, sibling])):
            metadata = {
                "type": MULTI_SUBSCRIPTION,
                "parent_user_id": str(parent.id),
                "profile_ids": ",".join(str(p.id) for p in profiles),
            }
            event = _make_event(
                "checkout.session.completed",
                {"id": f"cs_{sub_id}", "subscription": sub_id, "customer": "cus_twice", "metadata": metadata},
            )
            stripe_sub = _make_stripe_sub(sub_id=sub_id, customer="cus_twice", metadata=metadata)
            with patch("besttutor.billing.webhooks.get_subscription", AsyncMock(return_value=stripe_sub)):
                await handle_checkout_session_completed(db_session, event)

        first = await get_family_subscription(db_session, "sub_first")
        second = await get_family_subscription(db_session, "sub_second")
        assert first.profile_ids == [student.id]
        assert second.profile_ids == [sibling.id]
        assert second.quantity == 1
        assert student.subscription.stripe_subscription_id == "sub_first"
        assert sibling.subscription.stripe_subscription_id == "sub_second"

    async def test_seat_on_canceled_roster_is_released(self, db_session: AsyncSession, parent: User, student: User):
        metadata = {"type": MULTI_SUBSCRIPTION, "parent_user_id": str(parent.id), "profile_ids": str(student.id)}
        old_sub = _make_stripe_sub(sub_id="sub_old", customer="cus_again", metadata=metadata)
        with patch("besttutor.billing.webhooks.get_subscription", AsyncMock(return_value=old_sub)):
            await handle_checkout_session_completed(
                db_session,
                _make_event(
                    "checkout.session.completed",
                    {"id": "cs_old", "subscription": "sub_old", "customer": "cus_again", "metadata": metadata},
                ),
            )
        await handle_subscription_deleted(
            db_session,
            _sub_event("customer.subscription.deleted", _make_stripe_sub(status="canceled", sub_id="sub_old")),
        )

        new_sub = _make_stripe_sub(sub_id="sub_renewed", customer="cus_again", metadata=metadata)
        with patch("besttutor.billing.webhooks.get_subscription", AsyncMock(return_value=new_sub)):
            await handle_checkout_session_completed(
                db_session,
                _make_event(
                    "checkout.session.completed",
                    {"id": "cs_new", "subscription": "sub_renewed", "customer": "cus_again", "metadata": metadata},
                    created=EVENT_TIME + 60,
                ),
            )

        assert (await get_family_subscription(db_session, "sub_old")).profile_ids == []
        assert (await get_family_subscription(db_session, "sub_renewed")).profile_ids == [student.id]
        assert student.subscription.status == "active"

    async def test_family_checkout_without_roster_metadata_is_skipped(self, db_session: AsyncSession):
        metadata = {"type": MULTI_SUBSCRIPTION}
        event = _make_event(
            "checkout.session.completed",
            {"id": "cs_bad", "subscription": "sub_bad", "customer": "cus_bad", "metadata": metadata},
        )
        with patch(
            "besttutor.billing.webhooks.get_subscription",
            AsyncMock(return_value=_make_stripe_sub(sub_id="sub_bad", metadata=metadata)),
        ):
            await handle_checkout_session_completed(db_session, event)

        assert await get_family_subscription(db_session, "sub_bad") is None

    async def test_checkout_without_subscription_is_skipped(self, db_session: AsyncSession):
        event = _make_event("checkout.session.completed", {"id": "cs_pay", "subscription": None, "customer": None})
        with patch("besttutor.billing.webhooks.get_subscription", AsyncMock()) as mock_get:
            await handle_checkout_session_completed(db_session, event)
        mock_get.assert_not_awaited()

    async def test_checkout_matched_by_customer_email(self, db_session: AsyncSession, student: User):
        event = _make_event(
            "checkout.session.completed",
            {
                "id": "cs_email",
                "subscription": "sub_email",
                "customer": "cus_unknown",
                "customer_email": student.email.upper(),
            },
        )
        with patch(
            "besttutor.billing.webhooks.get_subscription",
            AsyncMock(return_value=_make_stripe_sub(sub_id="sub_email")),
        ):
            await handle_checkout_session_completed(db_session, event)

        assert student.subscription.status == "active"
        assert student.subscription.stripe_subscription_id == "sub_email"


# ---------------------------------------------------------------------------
# customer.subscription.*
# ---------------------------------------------------------------------------


class TestSubscriptionEvents:
    async def test_updated_maps_status(self, db_session: AsyncSession, user_factory, parent: User):
        profile = await user_factory(
            role="student",
            parent=parent,
            status="active",
            stripe_customer_id="cus_upd",
            stripe_subscription_id="sub_upd",
        )
        event = _sub_event(
            "customer.subscription.updated", _make_stripe_sub(status="unpaid", sub_id="sub_upd", customer="cus_upd")
        )
        await handle_subscription_updated(db_session, event)

        assert profile.subscription.status == "canceled"
        assert profile.subscription.expires_at == _ts_to_naive(PERIOD_END)

    async def test_updated_replay_is_idempotent(self, db_session: AsyncSession, user_factory, parent: User):
        profile = await user_factory(role="student", parent=parent, stripe_subscription_id="sub_replay")
        event = _sub_event("customer.subscription.updated", _make_stripe_sub(status="past_due", sub_id="sub_replay"))

        await handle_subscription_updated(db_session, event)
        first = (profile.subscription.status, profile.subscription.expires_at, profile.subscription.last_event_at)
        await handle_subscription_updated(db_session, event)
        second = (profile.subscription.status, profile.subscription.expires_at, profile.subscription.last_event_at)

        assert first == second == ("past_due", _ts_to_naive(PERIOD_END), _ts_to_naive(EVENT_TIME))

    async def test_stale_event_is_ignored(self, db_session: AsyncSession, user_factory, parent: User):
        profile = await user_factory(role="student", parent=parent, stripe_subscription_id="sub_order")
        newer = _sub_event(
            "customer.subscription.deleted", _make_stripe_sub(status="canceled", sub_id="sub_order"), EVENT_TIME + 60
        )
        older = _sub_event(
            "customer.subscription.updated", _make_stripe_sub(status="active", sub_id="sub_order"), EVENT_TIME
        )

        await handle_subscription_deleted(db_session, newer)
        await handle_subscription_updated(db_session, older)

        assert profile.subscription.status == "canceled"
        assert profile.subscription.last_event_at == _ts_to_naive(EVENT_TIME + 60)

    async def test_deleted_cancels_family_seats(self, db_session: AsyncSession, parent: User, student: User):
        metadata = {
            "type": MULTI_SUBSCRIPTION,
            "parent_user_id": str(parent.id),
            "profile_ids": str(student.id),
        }
        checkout = _make_event(
            "checkout.session.completed",
            {"id": "cs_del", "subscription": "sub_del", "customer": "cus_del", "metadata": metadata},
        )
        stripe_sub = _make_stripe_sub(sub_id="sub_del", customer="cus_del", metadata=metadata)
        with patch("besttutor.billing.webhooks.get_subscription", AsyncMock(return_value=stripe_sub)):
            await handle_checkout_session_completed(db_session, checkout)

        deleted = _sub_event(
            "customer.subscription.deleted",
            _make_stripe_sub(status="canceled", sub_id="sub_del", customer="cus_del"),
            EVENT_TIME + 10,
        )
        await handle_subscription_deleted(db_session, deleted)

        family = await get_family_subscription(db_session, "sub_del")
        assert family.status == "canceled"
        assert student.subscription.status == "canceled"
        assert student.subscription.expires_at == _ts_to_naive(EVENT_TIME + 10)

    async def test_family_created_before_checkout_leaves_parent_free(self, db_session: AsyncSession, user_factory):
        family_parent = await user_factory(role="parent", stripe_customer_id="cus_early")
        child = await user_factory(role="student", parent=family_parent, grade_level=4)
        metadata = {
            "type": MULTI_SUBSCRIPTION,
            "parent_user_id": str(family_parent.id),
            "profile_ids": str(child.id),
        }
        stripe_sub = _make_stripe_sub(sub_id="sub_early", customer="cus_early", metadata=metadata)

        await handle_subscription_updated(db_session, _sub_event("customer.subscription.created", stripe_sub))
        checkout = _make_event(
            "checkout.session.completed",
            {"id": "cs_early", "subscription": "sub_early", "customer": "cus_early", "metadata": metadata},
        )
        with patch("besttutor.billing.webhooks.get_subscription", AsyncMock(return_value=stripe_sub)):
            await handle_checkout_session_completed(db_session, checkout)
        deleted = _make_stripe_sub(status="canceled", sub_id="sub_early", customer="cus_early", metadata=metadata)
        await handle_subscription_deleted(
            db_session, _sub_event("customer.subscription.deleted", deleted, EVENT_TIME + 10)
        )

        assert family_parent.subscription.status == "free"
        assert family_parent.subscription.stripe_subscription_id is None
        assert child.subscription.status == "canceled"
        family = await get_family_subscription(db_session, "sub_early")
        assert family.profile_ids == [child.id]
        assert family.status == "canceled"

    async def test_unknown_subscription_changes_nothing(self, db_session: AsyncSession, student: User):
        stripe_sub = _make_stripe_sub(sub_id="sub_nobody", customer="cus_nobody")
        event = _sub_event("customer.subscription.updated", stripe_sub)
        with patch("besttutor.billing.webhooks.get_customer_email", AsyncMock(return_value=None)):
            await handle_subscription_updated(db_session, event)
        assert student.subscription.status == "free"


# ---------------------------------------------------------------------------
# invoice.payment_failed
# ---------------------------------------------------------------------------


class TestInvoicePaymentFailed:
    async def test_marks_past_due_and_keeps_expiry(self, db_session: AsyncSession, user_factory, parent: User):
        profile = await user_factory(role="student", parent=parent, status="active", stripe_subscription_id="sub_inv")
        paid_through = datetime(2030, 1, 1)
        profile.subscription.expires_at = paid_through
        await db_session.flush()

        event = _make_event(
            "invoice.payment_failed",
            {"id": "in_fail", "subscription": "sub_inv", "customer": "cus_inv"},
        )
        await handle_invoice_payment_failed(db_session, event)

        assert profile.subscription.status == "past_due"
        assert profile.subscription.expires_at == paid_through

    async def test_unlinked_family_invoice_never_touches_parent(self, db_session: AsyncSession, user_factory):
        family_parent = await user_factory(role="parent", status="active", stripe_customer_id="cus_inv_family")
        child = await user_factory(role="student", parent=family_parent, grade_level=7)
        metadata = {
            "type": MULTI_SUBSCRIPTION,
            "parent_user_id": str(family_parent.id),
            "profile_ids": str(child.id),
        }
        event = _make_event(
            "invoice.payment_failed",
            {"id": "in_family", "subscription": "sub_inv_family", "customer": "cus_inv_family"},
        )
        stripe_sub = _make_stripe_sub(sub_id="sub_inv_family", customer="cus_inv_family", metadata=metadata)
        with patch("besttutor.billing.webhooks.get_subscription", AsyncMock(return_value=stripe_sub)):
            await handle_invoice_payment_failed(db_session, event)

        assert family_parent.subscription.status == "active"
        assert child.subscription.status == "past_due"

    async def test_invoice_without_subscription_is_skipped(self, db_session: AsyncSession):
        event = _make_event("invoice.payment_failed", {"id": "in_one_off", "subscription": None})
        await handle_invoice_payment_failed(db_session, event)
