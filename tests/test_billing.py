"""
Billing History Tests
=====================
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from affirm.core.errors import UpstreamServiceError
from affirm.models.payment import PaymentProvider, PaymentRecord, Platform
from affirm.schemas.billing import BillingItem
from affirm.services.billing import BillingService, LegacyBillingClient, payment_to_item
from affirm.services.entitlements import EntitlementAction, PurchaseEvent
from affirm.services.reconciliation import ReconciliationEngine
from affirm.utils.helpers import from_epoch_ms


def _mock_async_client(handler):
    real_client = httpx.AsyncClient

    def factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real_client(*args, **kwargs)

    return factory


def _legacy_item(transaction_id: str, purchased_at: int) -> dict:
    return {
        "id": f"legacy-{transaction_id}",
        "userId": "u1",
        "plan": "yearly",
        "amount": 29.99,
        "currency": "USD",
        "platform": "android",
        "store": "google",
        "storeTransactionId": transaction_id,
        "purchasedAt": purchased_at,
        "expiresAt": None,
        "status": "paid",
    }


def test_payment_to_item():
    payment = PaymentRecord(
        payment_id=uuid.UUID("6f1c2a7e-0000-4000-8000-000000000001"),
        transaction_id="t1",
        user_id="u1",
        platform=Platform.IOS,
        provider=PaymentProvider.APP_STORE,
        product_id="com.affirm.pro.lifetime",
        amount_cents=4999,
        currency="EUR",
        purchased_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        expires_at=None,
    )

    item = payment_to_item(payment)

    assert item.model_dump(by_alias=True) == {
        "id": "6f1c2a7e-0000-4000-8000-000000000001",
        "userId": "u1",
        "plan": "lifetime",
        "amount": 49.99,
        "currency": "EUR",
        "platform": "ios",
        "store": "apple",
        "storeTransactionId": "t1",
        "purchasedAt": 1704067200000,
        "expiresAt": None,
        "status": "paid",
    }


class TestLegacyBillingClient:

    @pytest.mark.asyncio
    async def test_fetch_history(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(
                200,
                json={"items": [_legacy_item("GPA.1", 1000), {"id": "broken"}]},
            )

        client = LegacyBillingClient(base_url="https://legacy.example/", api_key="key")
        with patch("httpx.AsyncClient", _mock_async_client(handler)):
            items = await client.fetch_history("u1")

        assert seen == {
            "url": "https://legacy.example/billing/history?userId=u1",
            "auth": "Bearer key",
        }
        # malformed items are dropped
        assert [item.store_transaction_id for item in items] == ["GPA.1"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(502),
            httpx.Response(200, content=b"<html>"),
            httpx.Response(200, json={"rows": []}),
        ],
    )
    async def test_bad_responses_raise(self, response):
        client = LegacyBillingClient(base_url="https://legacy.example", api_key="")
        with patch("httpx.AsyncClient", _mock_async_client(lambda r: response)):
            with pytest.raises(UpstreamServiceError):
                await client.fetch_history("u1")

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ReadTimeout("timeout", request=request)

        client = LegacyBillingClient(base_url="https://legacy.example", api_key="")
        with patch("httpx.AsyncClient", _mock_async_client(handler)):
            with pytest.raises(UpstreamServiceError):
                await client.fetch_history("u1")


class TestBillingService:

    @pytest.fixture
    def legacy(self):
        legacy = MagicMock(spec=LegacyBillingClient)
        legacy.enabled = True
        legacy.fetch_history = AsyncMock(
            return_value=[
                BillingItem.model_validate(_legacy_item("t1", 500)),
                BillingItem.model_validate(_legacy_item("GPA.old", 1500)),
            ]
        )
        return legacy

    async def _seed(self, db_session):
        engine = ReconciliationEngine(db_session)
        for transaction_id, purchased_at in (("t1", 1000), ("t2", 3000)):
            await engine.apply(
                "u1",
                EntitlementAction.PURCHASE_LIKE,
                PurchaseEvent(
                    product_id="pkg.monthly",
                    transaction_id=transaction_id,
                    provider=PaymentProvider.GOOGLE_PLAY,
                    amount_cents=499,
                    purchased_at=from_epoch_ms(purchased_at),
                ),
            )

    @pytest.mark.asyncio
    async def test_ledger_only(self, db_session):
        await self._seed(db_session)
        disabled = LegacyBillingClient(base_url="")

        items = await BillingService(db_session, disabled).get_history("u1")

        assert [item.store_transaction_id for item in items] == ["t2", "t1"]
        assert items[0].store == "google"
        assert items[0].amount == 4.99

    @pytest.mark.asyncio
    async def test_merge_prefers_ledger(self, db_session, legacy):
        await self._seed(db_session)

        items = await BillingService(db_session, legacy).get_history("u1")

        assert [item.store_transaction_id for item in items] == ["t2", "GPA.old", "t1"]
        # t1 comes from the ledger, not the legacy copy
        assert items[2].plan == "monthly"
        legacy.fetch_history.assert_awaited_once_with("u1")

    @pytest.mark.asyncio
    async def test_other_users_are_excluded(self, db_session):
        await self._seed(db_session)

        items = await BillingService(db_session, LegacyBillingClient(base_url="")).get_history("u2")

        assert items == []


class TestBillingEndpoint:

    @pytest.mark.asyncio
    async def test_empty_history(self, client):
        response = await client.get("/api/v1/billing/history")

        assert response.status_code == 200
        assert response.json() == {"items": []}

    @pytest.mark.asyncio
    async def test_legacy_failure_is_503(self, client):
        with patch.object(
            BillingService,
            "get_history",
            AsyncMock(side_effect=UpstreamServiceError("legacy_billing", "down")),
        ):
            response = await client.get("/api/v1/billing/history")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "BILLING_001"
