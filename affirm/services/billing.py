"""
Billing History Service
=======================

Read-only payment history for the app's "Payments" screen.

Items come from the local payment ledger and, when
``LEGACY_BILLING_API_URL`` is configured, from the legacy billing API
that served history before the ledger existed. Ledger entries win when
both sides report the same store transaction id.
"""

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from affirm.config import settings
from affirm.core.errors import UpstreamServiceError
from affirm.models.payment import PaymentProvider, PaymentRecord
from affirm.schemas.billing import BillingItem
from affirm.services.entitlements import plan_from_product
from affirm.utils.helpers import mask_id, to_epoch_ms

logger = logging.getLogger(__name__)

STORE_BY_PROVIDER = {
    PaymentProvider.APP_STORE: "apple",
    PaymentProvider.GOOGLE_PLAY: "google",
    PaymentProvider.STRIPE: "stripe",
    PaymentProvider.PROMO: "promo",
}


def payment_to_item(payment: PaymentRecord) -> BillingItem:
    """Render a ledger row as a billing item."""
    provider = PaymentProvider(payment.provider)
    return BillingItem(
        id=str(payment.payment_id),
        user_id=payment.user_id,
        plan=plan_from_product(payment.product_id).value,
        amount=(payment.amount_cents or 0) / 100,
        currency=payment.currency or "USD",
        platform=payment.platform.value if payment.platform else "web",
        store=STORE_BY_PROVIDER.get(provider, "other"),
        store_transaction_id=payment.transaction_id,
        purchased_at=to_epoch_ms(payment.purchased_at),
        expires_at=to_epoch_ms(payment.expires_at),
    )


class LegacyBillingClient:
    """HTTP client for the legacy billing history API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
    ):
        self.base_url = (base_url if base_url is not None else settings.LEGACY_BILLING_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.LEGACY_BILLING_API_KEY
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def _get_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def fetch_history(self, user_id: str) -> list[BillingItem]:
        """
        Fetch a user's legacy payment items.

        Raises:
            UpstreamServiceError: on transport errors, non-2xx responses or
                an unreadable body.
        """
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.get(
                    f"{self.base_url}/billing/history",
                    params={"userId": user_id},
                    headers=self._get_headers(),
                )
            except httpx.HTTPError as e:
                logger.error("Legacy billing request failed for user %s: %s", mask_id(user_id), e)
                raise UpstreamServiceError("legacy_billing", str(e)) from e

        if response.status_code != 200:
            logger.error(
                "Legacy billing returned status %d for user %s: %s",
                response.status_code,
                mask_id(user_id),
                response.text[:200],
            )
            raise UpstreamServiceError(
                "legacy_billing", f"unexpected status {response.status_code}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamServiceError("legacy_billing", "invalid JSON body") from e

        raw_items: Any = payload.get("items") if isinstance(payload, dict) else payload
        if not isinstance(raw_items, list):
            raise UpstreamServiceError("legacy_billing", "missing items")

        items: list[BillingItem] = []
        for raw in raw_items:
            try:
                items.append(BillingItem.model_validate(raw))
            except PydanticValidationError:
                logger.warning("Dropping malformed legacy billing item for user %s", mask_id(user_id))
        return items


class BillingService:
    """Builds the merged billing history for a user."""

    def __init__(self, db: AsyncSession, legacy_client: Optional[LegacyBillingClient] = None):
        self.db = db
        self.legacy_client = legacy_client or LegacyBillingClient()

    async def get_ledger_items(self, user_id: str) -> list[BillingItem]:
        result = await self.db.execute(
            select(PaymentRecord)
            .where(PaymentRecord.user_id == user_id)
            .order_by(PaymentRecord.purchased_at.desc())
        )
        return [payment_to_item(p) for p in result.scalars().all()]

    async def get_history(self, user_id: str) -> list[BillingItem]:
        """Ledger plus legacy items, newest first."""
        items = await self.get_ledger_items(user_id)

        if self.legacy_client.enabled:
            seen = {item.store_transaction_id for item in items if item.store_transaction_id}
            for legacy in await self.legacy_client.fetch_history(user_id):
                if legacy.store_transaction_id and legacy.store_transaction_id in seen:
                    continue
                items.append(legacy)

        items.sort(key=lambda item: item.purchased_at, reverse=True)
        return items
