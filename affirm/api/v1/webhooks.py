"""
Webhooks API Endpoints
======================

Handles webhooks from external services (RevenueCat).

Authentication:
    RevenueCat sends the configured authorization token in the
    ``Authorization`` header, raw or as ``Bearer <token>``. It is compared
    in constant time against REVENUECAT_WEBHOOK_AUTH.

Response policy:
    - 401 bad or missing authorization (when a secret is configured)
    - 400 invalid JSON, missing ``event`` or ``event.type``
    - 200 with a marker for every classified outcome, including skipped
      (no app_user_id), ignored (unknown type) and duplicate (event id
      already recorded)
    - 500 on infrastructure failure, after rollback, so RevenueCat retries

Idempotency:
    Event ids are recorded in ``webhook_events`` in the same transaction
    as the state change. Ledger and state writes are keyed upserts, so a
    redelivery without an event id converges to the same state.
"""

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from affirm.core.errors import AuthenticationError, ErrorCodes, ValidationError
from affirm.db.session import get_db
from affirm.services.cache import CacheInvalidator
from affirm.services.revenuecat import RevenueCatService
from affirm.utils.helpers import mask_id

logger = logging.getLogger(__name__)

router = APIRouter()


def _reject_constant(name: str):
    # NaN and Infinity are not JSON; the body is stored verbatim
    raise ValueError(f"Invalid JSON constant: {name}")


@router.post("/revenuecat")
async def revenuecat_webhook(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    authorization: str = Header(default="", alias="Authorization"),
):
    """
    Handle RevenueCat webhook events.

    Events handled:
    - INITIAL_PURCHASE, RENEWAL, NON_RENEWING_PURCHASE, UNCANCELLATION,
      PRODUCT_CHANGE (activate)
    - REFUND, REVOCATION, CANCELLATION with CUSTOMER_SUPPORT reason (revoke)
    - CANCELLATION (auto-renew off)
    - EXPIRATION (expire)
    - anything else is acknowledged as ignored
    """
    revenuecat_service = RevenueCatService(db)

    # ── Verify authorization ──────────────────────────────────────────────
    if not revenuecat_service.verify_webhook_authorization(authorization):
        logger.warning("Unauthorized RevenueCat webhook attempt")
        raise AuthenticationError(
            code=ErrorCodes.AUTH_WEBHOOK_SECRET,
            message="Invalid webhook authorization",
        )

    # ── Parse payload ─────────────────────────────────────────────────────
    try:
        body = await request.body()
        payload = json.loads(body.decode("utf-8"), parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError) as e:
        logger.error("Invalid webhook payload: %s", e)
        raise ValidationError(
            message="Invalid JSON payload",
            code=ErrorCodes.WEBHOOK_INVALID_BODY,
        )

    event = revenuecat_service.parse_webhook_payload(payload)

    logger.info(
        "Webhook received: type=%s user=%s event_id=%s",
        event.type,
        mask_id(event.app_user_id),
        event.id,
    )

    # ── Process event ─────────────────────────────────────────────────────
    try:
        result = await revenuecat_service.process_event(event, payload)
        await db.commit()
    except Exception:
        logger.exception(
            "Webhook processing error: type=%s user=%s event_id=%s",
            event.type,
            mask_id(event.app_user_id),
            event.id,
        )
        await db.rollback()
        # Return 500 so RevenueCat will retry
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "code": ErrorCodes.INTERNAL_ERROR,
                "message": "Error processing webhook",
            },
        )

    if event.app_user_id and not result.get("duplicate") and "ignored" not in result:
        await CacheInvalidator.on_subscription_change(event.app_user_id)

    logger.info(
        "Webhook processed: type=%s user=%s result=%s",
        event.type,
        mask_id(event.app_user_id),
        result,
    )
    return result
