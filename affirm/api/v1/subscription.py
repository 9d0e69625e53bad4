"""
Subscription API Endpoints
==========================

Current entitlement for the caller, client-reported activation, and
auto-renew / downgrade management.

Responses are the bare client subscription shape:
``{plan, status, autoRenew, periodEnd, storageLimitGb?}``.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from affirm.db.session import get_db
from affirm.dependencies import CurrentUserId
from affirm.schemas.subscription import ActivateRequest, CancelAutoRenewRequest
from affirm.services.cache import CacheInvalidator, CacheKeys, CacheManager
from affirm.services.projection import to_client
from affirm.services.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def get_subscription(
    user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Get the caller's current subscription projection."""
    cache_key = CacheKeys.subscription(user_id)

    cached = await CacheManager.get(cache_key)
    if cached:
        return cached

    state = await ReconciliationEngine(db).get_state(user_id)
    data = to_client(state)

    await CacheManager.set(cache_key, data, ttl=CacheManager.TTL_SHORT)
    return data


@router.post("/activate")
async def activate_subscription(
    request: ActivateRequest,
    user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Activate a subscription right after an in-app purchase.

    The plan is derived from ``productId``; ``plan`` is only used when no
    product id is sent. Invalid payloads are rejected with 400 before any
    state is written.
    """
    state = await ReconciliationEngine(db).activate(user_id, request)
    await db.commit()

    await CacheInvalidator.on_subscription_change(user_id)
    return to_client(state)


@router.post("/cancel-auto-renew")
async def cancel_auto_renew(
    user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
    request: Optional[CancelAutoRenewRequest] = None,
):
    """Turn off auto-renew. 404 if the caller has no subscription."""
    period_end = request.period_end if request else None

    state = await ReconciliationEngine(db).cancel_auto_renew(user_id, period_end)
    await db.commit()

    await CacheInvalidator.on_subscription_change(user_id)
    return to_client(state)


@router.post("/resume-auto-renew")
async def resume_auto_renew(
    user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Turn auto-renew back on. 404 if the caller has no subscription."""
    state = await ReconciliationEngine(db).resume_auto_renew(user_id)
    await db.commit()

    await CacheInvalidator.on_subscription_change(user_id)
    return to_client(state)


@router.post("/switch-to-free")
async def switch_to_free(
    user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Downgrade to the free plan. Always succeeds."""
    state = await ReconciliationEngine(db).switch_to_free(user_id)
    await db.commit()

    await CacheInvalidator.on_subscription_change(user_id)
    return to_client(state)
