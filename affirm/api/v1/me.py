"""
Me API Endpoints
================

Avatar upload for the caller.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from affirm.config import settings
from affirm.core.errors import (
    ErrorCodes,
    ServiceUnavailableError,
    UpstreamServiceError,
    ValidationError,
)
from affirm.db.session import get_db
from affirm.dependencies import CurrentUserId
from affirm.schemas.profile import AvatarUploadResponse
from affirm.services.avatar_storage import get_storage_service
from affirm.services.cache import CacheInvalidator
from affirm.services.profile_service import ProfileService
from affirm.utils.helpers import mask_id

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/avatar")
async def upload_avatar(
    user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
    avatar: Optional[UploadFile] = File(default=None),
):
    """
    Upload a new avatar image (multipart field ``avatar``).

    The previous avatar blob is removed after the profile points at the
    new one.
    """
    if avatar is None:
        raise ValidationError(
            message="Missing avatar file",
            field="avatar",
            code=ErrorCodes.PROFILE_AVATAR_MISSING,
        )

    content = await avatar.read()
    if not content:
        raise ValidationError(
            message="Missing avatar file",
            field="avatar",
            code=ErrorCodes.PROFILE_AVATAR_MISSING,
        )

    max_bytes = settings.MAX_AVATAR_UPLOAD_SIZE_MB * 1024 * 1024
    if len(content) > max_bytes:
        raise ValidationError(
            message=f"Avatar must be at most {settings.MAX_AVATAR_UPLOAD_SIZE_MB} MB",
            field="avatar",
            code=ErrorCodes.PROFILE_AVATAR_TOO_LARGE,
        )

    storage = get_storage_service()
    try:
        uploaded = await storage.upload_avatar(user_id, content, avatar.content_type)
    except UpstreamServiceError:
        raise ServiceUnavailableError(
            code=ErrorCodes.STORAGE_UNAVAILABLE,
            message="Avatar storage is temporarily unavailable",
        )

    user, previous_key = await ProfileService(db).set_avatar(
        user_id, uploaded["url"], uploaded["key"]
    )
    await db.commit()

    await CacheInvalidator.on_profile_update(user_id)

    if previous_key and previous_key != uploaded["key"]:
        try:
            await storage.delete_avatar(previous_key)
        except UpstreamServiceError as e:
            logger.warning("Old avatar not deleted for user %s: %s", mask_id(user_id), e)

    response = AvatarUploadResponse(avatar_uri=user.avatar_url or uploaded["url"])
    return response.model_dump(by_alias=True)
