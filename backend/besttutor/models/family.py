"""Family (multi-seat) subscription roster."""

import uuid

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from besttutor.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class FamilySubscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A Stripe subscription billed to a parent with one seat per child profile.

    ``roster_version`` is bumped by every roster mutation with a conditional
    update, so two concurrent mutations of the same roster cannot both win.
    """

    __tablename__ = "family_subscriptions"

    stripe_subscription_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    parent_user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="active")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    roster_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    seats: Mapped[list["FamilySubscriptionSeat"]] = relationship(
        back_populates="family_subscription",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="FamilySubscriptionSeat.created_at",
    )

    @property
    def profile_ids(self) -> list[uuid.UUID]:
        return [seat.profile_id for seat in self.seats]

    def __repr__(self) -> str:
        return (
            f"<FamilySubscription(id={self.id}, stripe={self.stripe_subscription_id}, "
            f"seats={len(self.seats)}, version={self.roster_version})>"
        )


class FamilySubscriptionSeat(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One child profile occupying one paid seat."""

    __tablename__ = "family_subscription_seats"

    family_subscription_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("family_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # A profile can occupy at most one seat anywhere
    profile_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    family_subscription: Mapped["FamilySubscription"] = relationship(back_populates="seats", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("family_subscription_id", "profile_id", name="uq_family_seat_profile"),
    )
