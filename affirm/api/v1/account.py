"""
Account API Endpoints
=====================

Account deletion for the caller.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from affirm.core.errors import ErrorCodes, ServiceUnavailableError, UpstreamServiceError
from affirm.db.session import get_db
from affirm.dependencies import CurrentUserId
from affirm.services.account_service import AccountService
from affirm.services.cache import CacheInvalidator

router = APIRouter()


@router.delete("")
async def delete_account(
    user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Delete the caller's account and app data.

    The user id comes only from the verified session token.
    """
    try:
        await AccountService(db).delete_account(user_id)
    except UpstreamServiceError:
        await db.rollback()
        raise ServiceUnavailableError(
            code=ErrorCodes.ACCOUNT_IDENTITY_UNAVAILABLE,
            message="Account deletion is temporarily unavailable",
        )
    await db.commit()

    await CacheInvalidator.on_account_delete(user_id)
    return {"ok": True}
