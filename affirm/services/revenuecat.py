"""
RevenueCat Service
==================

Integration with RevenueCat webhooks.

Handles:
- Webhook authentication (shared secret, raw or ``Bearer <secret>``)
- Parsing the webhook body into a typed event
- Event audit log with duplicate detection by event id
- Dispatch to the event classifier and the reconciliation engine
"""

import logging
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from affirm.config import settings
from affirm.core.errors import ErrorCodes, ValidationError
from affirm.core.security import normalize_auth_header, secrets_match
from affirm.db.session import upsert_insert
from affirm.models.webhook_event import WebhookEvent
from affirm.schemas.subscription import RevenueCatEvent
from affirm.services.entitlements import (
    EntitlementAction,
    PurchaseEvent,
    classify_event,
    extract_amount_cents,
    pick_currency,
    provider_from_store,
)
from affirm.services.reconciliation import ReconciliationEngine
from affirm.utils.helpers import from_epoch_ms, mask_id

logger = logging.getLogger(__name__)

SKIPPED_MISSING_USER = "missing app_user_id"


class RevenueCatService:
    """Service for RevenueCat webhook processing."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.webhook_secret = settings.REVENUECAT_WEBHOOK_AUTH
        self.engine = ReconciliationEngine(db)

    # -------------------------------------------------------------------------
    # Webhook Authentication
    # -------------------------------------------------------------------------

    def verify_webhook_authorization(self, authorization_header: Optional[str]) -> bool:
        """
        Verify the RevenueCat ``Authorization`` header.

        RevenueCat sends the token exactly as configured in the dashboard,
        which may or may not include a ``Bearer`` prefix. When no secret is
        configured the check is skipped.
        """
        if not self.webhook_secret:
            logger.warning("REVENUECAT_WEBHOOK_AUTH not configured, skipping webhook auth")
            return True

        provided = normalize_auth_header(authorization_header)
        if not provided:
            return False

        return secrets_match(provided, normalize_auth_header(self.webhook_secret))

    # -------------------------------------------------------------------------
    # Parsing
    # -------------------------------------------------------------------------

    @staticmethod
    def parse_webhook_payload(payload: Any) -> RevenueCatEvent:
        """
        Validate the webhook body and return the typed event.

        Raises:
            ValidationError: body is not an object, has no ``event`` object,
                or the event has no ``type``.
        """
        event = payload.get("event") if isinstance(payload, dict) else None
        if not isinstance(event, dict):
            raise ValidationError(
                message="Missing event",
                field="event",
                code=ErrorCodes.WEBHOOK_INVALID_BODY,
            )

        try:
            return RevenueCatEvent.model_validate(event)
        except PydanticValidationError:
            raise ValidationError(
                message="Missing event.type",
                field="event.type",
                code=ErrorCodes.WEBHOOK_INVALID_BODY,
            )

    @staticmethod
    def to_purchase_event(
        event: RevenueCatEvent,
        payload: Optional[dict[str, Any]] = None,
    ) -> PurchaseEvent:
        """
        Normalise a RevenueCat event into engine input.

        ``payload`` is the delivered webhook body, kept verbatim on the
        ledger row; without it the parsed event is stored.
        """
        raw = event.model_dump(exclude_none=True)
        return PurchaseEvent(
            product_id=event.product_id,
            transaction_id=event.transaction_id,
            original_transaction_id=event.original_transaction_id,
            provider=provider_from_store(event.store) if event.store else None,
            amount_cents=extract_amount_cents(raw),
            currency=pick_currency(raw),
            purchased_at=from_epoch_ms(event.purchased_at_ms),
            expires_at=from_epoch_ms(event.expiration_at_ms),
            declared_plan=event.plan,
            raw_payload=payload if payload is not None else raw,
        )

    # -------------------------------------------------------------------------
    # Audit log
    # -------------------------------------------------------------------------

    async def record_event(
        self,
        event: RevenueCatEvent,
        payload: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Insert the event into the audit log if absent.

        Returns False when the event id was already recorded.
        """
        if not event.id:
            return True

        stmt = upsert_insert(self.db, WebhookEvent).values(
            event_id=event.id,
            provider="revenuecat",
            event_type=event.type,
            user_id=event.app_user_id,
            raw_payload=payload if payload is not None else event.model_dump(exclude_none=True),
        )
        stmt = stmt.on_conflict_do_nothing(
            index_elements=["event_id"],
        ).returning(WebhookEvent.webhook_event_id)

        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    async def process_event(
        self,
        event: RevenueCatEvent,
        payload: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Process one webhook event and return the acknowledgement body.
        ``payload`` is the delivered body the event was parsed from.

        Does not commit; the caller owns the transaction.
        """
        user_id = event.app_user_id
        if not user_id:
            logger.info(
                "Webhook skipped: type=%s event_id=%s reason=missing app_user_id",
                event.type,
                event.id,
            )
            return {"ok": True, "skipped": SKIPPED_MISSING_USER}

        if not await self.record_event(event, payload):
            logger.info("Duplicate webhook event %s, skipping", event.id)
            return {"ok": True, "duplicate": True}

        action = classify_event(event.type, event.cancel_reason)
        if action == EntitlementAction.IGNORED:
            logger.info(
                "Webhook ignored: type=%s user=%s",
                event.type,
                mask_id(user_id),
            )
            return {"ok": True, "ignored": event.type}

        await self.engine.apply(user_id, action, self.to_purchase_event(event, payload))

        if action == EntitlementAction.REFUND_LIKE:
            return {"ok": True, "revoked": True}
        if action == EntitlementAction.CANCELLATION:
            return {"ok": True, "canceled": True}
        if action == EntitlementAction.EXPIRATION:
            return {"ok": True, "expired": True}
        return {"ok": True}
