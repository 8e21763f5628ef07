"""Pydantic v2 request/response schemas for authentication and family profiles."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Parent account registration."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    name: str = Field(..., min_length=1, max_length=255)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class ChildProfileCreate(BaseModel):
    """A student profile created by a parent. A password enables direct login."""

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    grade_level: int | None = Field(None, ge=3, le=12)
    password: str | None = Field(None, min_length=8, max_length=128)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    role: str
    parent_id: uuid.UUID | None = None
    grade_level: int | None = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuthResponse(BaseModel):
    user: UserResponse
    tokens: TokenResponse


class ChildProfileResponse(UserResponse):
    subscription_status: str = "free"
