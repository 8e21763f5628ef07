"""Pydantic v2 request/response schemas for billing endpoints."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

# --- Request schemas ---


class CheckoutRequest(BaseModel):
    """Single-profile checkout for the authenticated user."""

    success_url: str | None = None
    cancel_url: str | None = None


class FamilyCheckoutRequest(BaseModel):
    """Checkout covering several child profiles, one seat each."""

    profile_ids: list[uuid.UUID] = Field(..., min_length=1)
    success_url: str | None = None
    cancel_url: str | None = None


class PortalRequest(BaseModel):
    return_url: str | None = None


class RosterChangeRequest(BaseModel):
    subscription_id: str = Field(..., min_length=1)
    profile_id: uuid.UUID


# --- Response schemas ---


class PlanResponse(BaseModel):
    name: str
    display_name: str
    max_ai_queries_per_month: int | None
    has_learning_paths: bool
    has_coaching: bool
    price_monthly_cents: int


class UsageResponse(BaseModel):
    ai_queries_used: int
    ai_queries_limit: int | None  # None = unlimited


class SubscriptionResponse(BaseModel):
    plan: PlanResponse
    status: str
    is_premium: bool
    stripe_subscription_id: str | None
    expires_at: datetime | None
    usage: UsageResponse


class CheckoutResponse(BaseModel):
    checkout_url: str
    session_id: str


class PortalResponse(BaseModel):
    portal_url: str


class RosterResponse(BaseModel):
    subscription_id: str
    status: str
    profile_ids: list[uuid.UUID]
    quantity: int
    roster_version: int


class RosterChangeResponse(BaseModel):
    subscription_id: str
    profile_ids: list[uuid.UUID]
    quantity: int
    roster_version: int
    canceled: bool
