"""
services/user/router.py
User profile management.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user
from shared.models.models import Language, User
from shared.schemas.schemas import UserResponse, UserUpdateRequest
from shared.utils.errors import NotFound, ValidationError

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Return the currently authenticated user's profile."""
    return UserResponse.model_validate(current_user)


@router.put("/me", response_model=UserResponse)
async def update_me(
    data: UserUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Update user profile fields (name, phone, preferred_language).
    Only non-None fields in the request body are updated.
    preferred_language also selects the language of future notifications.
    """
    updates = data.model_dump(exclude_none=True)
    if not updates:
        return UserResponse.model_validate(current_user)

    # Phone uniqueness check
    if "phone" in updates:
        existing = await db.execute(
            select(User).where(User.phone == updates["phone"], User.id != current_user.id)
        )
        if existing.scalar_one_or_none():
            raise ValidationError("Phone number already in use", status_code=409)

    if "preferred_language" in updates:
        updates["preferred_language"] = Language(updates["preferred_language"])

    for field, value in updates.items():
        setattr(current_user, field, value)

    await db.commit()
    await db.refresh(current_user)
    return UserResponse.model_validate(current_user)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Public profile of another user (e.g. the counterparty of a booking)."""
    user = await db.scalar(select(User).where(User.id == user_id, User.is_active == True))
    if not user:
        raise NotFound("User not found")
    return UserResponse.model_validate(user)
