"""
Profile API Endpoints
=====================

Handles user profile retrieval and updates.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from affirm.db.session import get_db
from affirm.dependencies import CurrentUserId
from affirm.schemas.profile import ProfileUpdateRequest
from affirm.services.cache import CacheInvalidator, CacheKeys, CacheManager
from affirm.services.profile_service import ProfileService, to_profile_dto

router = APIRouter()


@router.get("/me")
async def get_my_profile(
    user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Get the caller's profile.

    Read-only: a missing profile is reported as ``exists: false`` and is
    not created.
    """
    cache_key = CacheKeys.profile(user_id)

    cached = await CacheManager.get(cache_key)
    if cached:
        return cached

    user = await ProfileService(db).get_user(user_id)
    if user is None:
        return {"profile": None, "exists": False, "profileCompleted": False}

    data = {
        "profile": to_profile_dto(user).model_dump(by_alias=True),
        "exists": True,
        "profileCompleted": user.profile_completed,
    }
    await CacheManager.set(cache_key, data, ttl=CacheManager.TTL_SHORT)
    return data


@router.put("")
async def update_profile(
    profile_data: ProfileUpdateRequest,
    user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Create or update the caller's profile."""
    user = await ProfileService(db).upsert_profile(user_id, profile_data)
    await db.commit()

    await CacheInvalidator.on_profile_update(user_id)

    return {
        "profile": to_profile_dto(user).model_dump(by_alias=True),
        "profileCompleted": user.profile_completed,
    }
