"""
Reconciliation Engine
=====================

Converges purchase-lifecycle events and client calls into one
subscription state row per user, plus one ledger row per transaction.

Every write is a single keyed statement:
- Ledger: ``INSERT ... ON CONFLICT (transaction_id) DO UPDATE`` touching
  only the mutable fields, so identity fields keep their first value.
- State: ``INSERT ... ON CONFLICT (user_id) DO UPDATE ... RETURNING`` with
  the full target state, so replays converge instead of accumulating.
- Cancel / resume: ``UPDATE ... WHERE user_id = ... RETURNING``.

The database serializes concurrent writers per key; there is no
read-modify-write anywhere in this module.
"""

import dataclasses
import logging
import math
from typing import Any, Optional
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from affirm.core.errors import ErrorCodes, NotFoundError, ValidationError
from affirm.db.session import upsert_insert
from affirm.models.payment import (
    MAX_AMOUNT_CENTS,
    PAYMENT_MUTABLE_FIELDS,
    PaymentProvider,
    PaymentRecord,
    Platform,
)
from affirm.models.subscription import (
    Plan,
    SubscriptionSource,
    SubscriptionState,
    SubscriptionStatus,
)
from affirm.schemas.subscription import ActivateRequest
from affirm.services.entitlements import EntitlementAction, PurchaseEvent
from affirm.utils.helpers import from_epoch_ms, is_valid_epoch_ms, mask_id, utc_now

logger = logging.getLogger(__name__)

UNKNOWN_PRODUCT_ID = "unknown"


class ReconciliationEngine:
    """Applies classified actions to the ledger and subscription state."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_state(self, user_id: str) -> Optional[SubscriptionState]:
        result = await self.db.execute(
            select(SubscriptionState).where(SubscriptionState.user_id == user_id)
        )
        return result.scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Event application
    # -------------------------------------------------------------------------

    async def apply(
        self,
        user_id: Optional[str],
        action: EntitlementAction,
        event: PurchaseEvent,
    ) -> Optional[SubscriptionState]:
        """
        Apply ``action`` for ``user_id``.

        Returns the resulting state, or None when nothing was written
        (ignored action or no user identity).
        """
        if not user_id or action == EntitlementAction.IGNORED:
            return None

        if action == EntitlementAction.PURCHASE_LIKE:
            state = await self._apply_purchase(user_id, event)
        elif action == EntitlementAction.REFUND_LIKE:
            state = await self._apply_revocation(
                user_id, event, SubscriptionStatus.INACTIVE
            )
        elif action == EntitlementAction.EXPIRATION:
            state = await self._apply_revocation(
                user_id, event, SubscriptionStatus.EXPIRED
            )
        elif action == EntitlementAction.CANCELLATION:
            state = await self._apply_cancellation(user_id, event)
        else:
            raise ValueError(f"Unsupported action: {action}")

        logger.info(
            "Subscription reconciled: user=%s action=%s plan=%s status=%s",
            mask_id(user_id),
            action.value,
            state.plan.value,
            state.status.value,
        )
        return state

    async def _apply_purchase(
        self,
        user_id: str,
        event: PurchaseEvent,
    ) -> SubscriptionState:
        if event.plan == Plan.LIFETIME:
            # Lifetime never renews or expires
            event = dataclasses.replace(event, expires_at=None)

        now = utc_now()
        payment_id = None
        if event.transaction_id:
            payment_id = await self.record_payment(user_id, event)

        target: dict[str, Any] = {
            "plan": event.plan,
            "status": SubscriptionStatus.ACTIVE,
            "source": event.source,
            "started_at": event.purchased_at or now,
            "renews_at": event.expires_at,
            "canceled_at": None,
        }
        if payment_id is not None:
            target["latest_payment_id"] = payment_id

        return await self._upsert_state(user_id, target)

    async def _apply_revocation(
        self,
        user_id: str,
        event: PurchaseEvent,
        status: SubscriptionStatus,
    ) -> SubscriptionState:
        target: dict[str, Any] = {
            "plan": Plan.FREE,
            "status": status,
            "renews_at": None,
            "canceled_at": utc_now(),
        }
        if event.provider is not None:
            target["source"] = event.source
        return await self._upsert_state(user_id, target)

    async def _apply_cancellation(
        self,
        user_id: str,
        event: PurchaseEvent,
    ) -> SubscriptionState:
        """
        Auto-renew was turned off. Entitlement runs until the period end,
        so plan and renews_at are only touched when the event carries them.
        """
        target: dict[str, Any] = {
            "status": SubscriptionStatus.CANCELED,
            "canceled_at": utc_now(),
        }
        if event.product_id:
            target["plan"] = event.plan
        if event.expires_at is not None:
            target["renews_at"] = event.expires_at
        if event.provider is not None:
            target["source"] = event.source

        return await self._upsert_state(
            user_id,
            target,
            on_insert={"plan": event.plan},
        )

    # -------------------------------------------------------------------------
    # Ledger
    # -------------------------------------------------------------------------

    async def record_payment(self, user_id: str, event: PurchaseEvent) -> uuid.UUID:
        """
        Upsert the ledger row for ``event.transaction_id``.

        Identity fields are written on insert only; mutable fields are
        overwritten by every delivery. Returns the row's payment_id.
        """
        values = {
            "payment_id": uuid.uuid4(),
            "transaction_id": event.transaction_id,
            "user_id": user_id,
            "platform": event.resolved_platform,
            "provider": event.resolved_provider,
            "product_id": event.product_id or UNKNOWN_PRODUCT_ID,
            "original_transaction_id": event.original_transaction_id,
            "amount_cents": event.amount_cents,
            "currency": event.currency,
            "purchased_at": event.purchased_at or utc_now(),
            "expires_at": event.expires_at,
            "raw_payload": event.raw_payload,
        }

        stmt = upsert_insert(self.db, PaymentRecord).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["transaction_id"],
            set_={name: stmt.excluded[name] for name in PAYMENT_MUTABLE_FIELDS},
        ).returning(PaymentRecord.payment_id)

        result = await self.db.execute(stmt)
        payment_id = result.scalar_one()

        logger.info(
            "Payment recorded: user=%s transaction=%s product=%s amount_cents=%d %s",
            mask_id(user_id),
            mask_id(event.transaction_id),
            values["product_id"],
            event.amount_cents,
            event.currency,
        )
        return payment_id

    # -------------------------------------------------------------------------
    # State upsert
    # -------------------------------------------------------------------------

    async def _upsert_state(
        self,
        user_id: str,
        target: dict[str, Any],
        on_insert: Optional[dict[str, Any]] = None,
    ) -> SubscriptionState:
        """
        Create-or-update the user's state row in one statement.

        ``target`` is written on both insert and update; ``on_insert``
        supplies values used only when the row is created.
        """
        now = utc_now()
        insert_values = {
            "subscription_id": uuid.uuid4(),
            "user_id": user_id,
            "plan": Plan.FREE,
            "status": SubscriptionStatus.INACTIVE,
            "source": SubscriptionSource.ADMIN,
            **(on_insert or {}),
            **target,
            "updated_at": now,
        }
        update_values = {**target, "updated_at": now}

        stmt = upsert_insert(self.db, SubscriptionState).values(**insert_values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_=update_values,
        ).returning(SubscriptionState)

        result = await self.db.scalars(
            stmt,
            execution_options={"populate_existing": True},
        )
        return result.one()

    # -------------------------------------------------------------------------
    # Client-initiated operations
    # -------------------------------------------------------------------------

    @staticmethod
    def validate_activation(request: ActivateRequest) -> None:
        """Reject an activation payload before any state is touched."""
        for field_name, alias in (
            ("product_id", "productId"),
            ("transaction_id", "transactionId"),
            ("currency", "currency"),
        ):
            value = getattr(request, field_name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(
                    message=f"{alias} is required",
                    field=alias,
                    code=ErrorCodes.SUB_INVALID_ACTIVATION,
                )

        if request.provider not in {p.value for p in PaymentProvider}:
            raise ValidationError(
                message="provider must be one of google_play, app_store, stripe, promo",
                field="provider",
                code=ErrorCodes.SUB_INVALID_ACTIVATION,
            )
        if request.platform not in {p.value for p in Platform}:
            raise ValidationError(
                message="platform must be one of android, ios, web",
                field="platform",
                code=ErrorCodes.SUB_INVALID_ACTIVATION,
            )

        amount = request.amount_cents
        if (
            isinstance(amount, bool)
            or not isinstance(amount, (int, float))
            or not math.isfinite(amount)
            or amount < 0
            or amount > MAX_AMOUNT_CENTS
        ):
            raise ValidationError(
                message="amountCents must be a finite non-negative number within range",
                field="amountCents",
                code=ErrorCodes.SUB_INVALID_ACTIVATION,
            )

        period_end = request.period_end
        if period_end is not None and (
            isinstance(period_end, bool)
            or not isinstance(period_end, (int, float))
            or not math.isfinite(period_end)
            or not is_valid_epoch_ms(period_end)
        ):
            raise ValidationError(
                message="periodEnd must be epoch milliseconds",
                field="periodEnd",
                code=ErrorCodes.SUB_INVALID_ACTIVATION,
            )

    async def activate(self, user_id: str, request: ActivateRequest) -> SubscriptionState:
        """Client-reported purchase, applied as a purchase-like event."""
        self.validate_activation(request)

        provider = PaymentProvider(request.provider)
        event = PurchaseEvent(
            product_id=request.product_id.strip(),
            transaction_id=request.transaction_id.strip(),
            provider=provider,
            platform=Platform(request.platform),
            amount_cents=int(round(request.amount_cents)),
            currency=request.currency.strip().upper(),
            purchased_at=utc_now(),
            expires_at=from_epoch_ms(request.period_end),
            declared_plan=request.plan,
            raw_payload=request.model_dump(by_alias=True, mode="json"),
        )

        return await self.apply(user_id, EntitlementAction.PURCHASE_LIKE, event)

    async def _update_existing(self, user_id: str, values: dict[str, Any]) -> SubscriptionState:
        stmt = (
            update(SubscriptionState)
            .where(SubscriptionState.user_id == user_id)
            .values(**values, updated_at=utc_now())
            .returning(SubscriptionState)
        )
        result = await self.db.scalars(
            stmt,
            execution_options={
                "populate_existing": True,
                "synchronize_session": False,
            },
        )
        state = result.one_or_none()
        if state is None:
            raise NotFoundError(
                code=ErrorCodes.SUB_NOT_FOUND,
                message="No subscription found",
            )
        return state

    async def cancel_auto_renew(
        self,
        user_id: str,
        period_end_ms: Optional[float] = None,
    ) -> SubscriptionState:
        values: dict[str, Any] = {
            "status": SubscriptionStatus.CANCELED,
            "canceled_at": utc_now(),
        }
        if period_end_ms is not None:
            values["renews_at"] = from_epoch_ms(period_end_ms)

        state = await self._update_existing(user_id, values)
        logger.info("Auto-renew canceled: user=%s", mask_id(user_id))
        return state

    async def resume_auto_renew(self, user_id: str) -> SubscriptionState:
        """Flip back to active. Never creates a row."""
        state = await self._update_existing(
            user_id,
            {"status": SubscriptionStatus.ACTIVE, "canceled_at": None},
        )
        logger.info("Auto-renew resumed: user=%s", mask_id(user_id))
        return state

    async def switch_to_free(self, user_id: str) -> SubscriptionState:
        state = await self._upsert_state(
            user_id,
            {
                "plan": Plan.FREE,
                "status": SubscriptionStatus.INACTIVE,
                "source": SubscriptionSource.ADMIN,
                "renews_at": None,
                "canceled_at": utc_now(),
            },
        )
        logger.info("Switched to free: user=%s", mask_id(user_id))
        return state
