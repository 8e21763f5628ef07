"""FastAPI authentication dependencies."""

import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.auth.jwt import ACCESS, decode_token
from besttutor.database import get_db
from besttutor.models.user import User

_bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Validate the bearer access token and load its user.

    Raises:
        HTTPException 401: Missing, invalid or expired token, or unknown user.
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    try:
        payload = decode_token(credentials.credentials, expected_type=ACCESS)
        user_id = uuid.UUID(payload["sub"])
    except (JWTError, KeyError, ValueError):
        raise _unauthorized() from None

    user = await db.scalar(select(User).where(User.id == user_id))
    if user is None:
        raise _unauthorized()
    return user


async def get_current_active_user(user: User = Depends(get_current_user)) -> User:
    """Raises HTTPException 403 if the account is inactive."""
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is inactive")
    return user


async def get_current_parent(user: User = Depends(get_current_active_user)) -> User:
    if user.role != "parent":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Parent account required")
    return user


async def get_owned_profile(db: AsyncSession, parent: User, profile_id: uuid.UUID) -> User:
    """Load a child profile and check that ``parent`` owns it (404 / 403)."""
    profile = await db.scalar(select(User).where(User.id == profile_id))
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    if profile.parent_id != parent.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized for this profile")
    return profile
