"""
Billing API Endpoints
=====================

Read-only payment history for the caller.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from affirm.core.errors import ErrorCodes, ServiceUnavailableError, UpstreamServiceError
from affirm.db.session import get_db
from affirm.dependencies import CurrentUserId
from affirm.schemas.billing import BillingHistoryResponse
from affirm.services.billing import BillingService
from affirm.services.cache import CacheKeys, CacheManager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/history")
async def get_billing_history(
    user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Get payment history, newest first.

    Returns 503 if the legacy billing lookup is configured and fails.
    """
    cache_key = CacheKeys.billing_history(user_id)

    cached = await CacheManager.get(cache_key)
    if cached:
        return cached

    try:
        items = await BillingService(db).get_history(user_id)
    except UpstreamServiceError:
        raise ServiceUnavailableError(
            code=ErrorCodes.BILLING_LEGACY_UNAVAILABLE,
            message="Payment history is temporarily unavailable",
        )

    data = BillingHistoryResponse(items=items).model_dump(by_alias=True)
    await CacheManager.set(cache_key, data, ttl=CacheManager.TTL_MEDIUM)
    return data
