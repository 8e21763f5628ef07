"""Family API router: the authenticated parent's child profiles."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.api.deps import get_current_parent, get_db
from besttutor.auth.passwords import hash_password
from besttutor.models.subscription import Subscription
from besttutor.models.user import User
from besttutor.schemas.auth import ChildProfileCreate, ChildProfileResponse, UserResponse
from besttutor.services.subscription_service import get_user_by_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/family", tags=["family"])


def _to_response(profile: User) -> ChildProfileResponse:
    base = UserResponse.model_validate(profile)
    subscription_status = profile.subscription.status if profile.subscription is not None else "free"
    return ChildProfileResponse(**base.model_dump(), subscription_status=subscription_status)


@router.get("/profiles", response_model=list[ChildProfileResponse])
async def list_profiles(
    db: AsyncSession = Depends(get_db),
    parent: User = Depends(get_current_parent),
) -> list[ChildProfileResponse]:
    result = await db.execute(select(User).where(User.parent_id == parent.id).order_by(User.created_at))
    return [_to_response(profile) for profile in result.scalars().all()]


@router.post("/profiles", response_model=ChildProfileResponse, status_code=status.HTTP_201_CREATED)
async def create_profile(
    body: ChildProfileCreate,
    db: AsyncSession = Depends(get_db),
    parent: User = Depends(get_current_parent),
) -> ChildProfileResponse:
    """Create a student profile owned by the parent, with a free subscription row."""
    if await get_user_by_email(db, body.email) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    profile = User(
        email=body.email.lower(),
        name=body.name,
        role="student",
        parent_id=parent.id,
        grade_level=body.grade_level,
        hashed_password=hash_password(body.password) if body.password else None,
    )
    db.add(profile)
    await db.flush()

    db.add(Subscription(user_id=profile.id, status="free"))
    await db.flush()
    await db.refresh(profile)
    logger.info("Parent %s created student profile %s", parent.id, profile.id)
    return _to_response(profile)
