"""
RevenueCat Service Tests
========================
"""

import pytest
from sqlalchemy import func, select

from affirm.config import settings
from affirm.core.errors import ErrorCodes, ValidationError
from affirm.models.payment import PaymentProvider, PaymentRecord
from affirm.models.subscription import SubscriptionState, SubscriptionStatus
from affirm.models.webhook_event import WebhookEvent
from affirm.services.projection import to_client
from affirm.services.revenuecat import RevenueCatService


def _event(**overrides) -> dict:
    event = {
        "id": "evt_1",
        "type": "INITIAL_PURCHASE",
        "app_user_id": "u1",
        "product_id": "pkg.monthly",
        "transaction_id": "t1",
        "store": "APP_STORE",
        "price": 4.99,
        "currency": "USD",
        "purchased_at_ms": 1000,
        "expiration_at_ms": 2000,
    }
    event.update(overrides)
    return event


async def _count(db, model) -> int:
    result = await db.execute(select(func.count()).select_from(model))
    return result.scalar_one()


class TestParseWebhookPayload:

    @pytest.mark.parametrize("payload", [None, [], "x", {}, {"event": None}, {"event": "x"}])
    def test_missing_event(self, payload):
        with pytest.raises(ValidationError) as exc_info:
            RevenueCatService.parse_webhook_payload(payload)

        assert exc_info.value.status_code == 400
        assert exc_info.value.code == ErrorCodes.WEBHOOK_INVALID_BODY

    @pytest.mark.parametrize("event", [{}, {"type": ""}, {"type": 42}, {"type": None}])
    def test_missing_type(self, event):
        with pytest.raises(ValidationError) as exc_info:
            RevenueCatService.parse_webhook_payload({"event": event})

        assert exc_info.value.field == "event.type"

    def test_type_is_upper_cased(self):
        event = RevenueCatService.parse_webhook_payload({"event": {"type": " renewal "}})
        assert event.type == "RENEWAL"

    def test_malformed_optional_fields_are_dropped(self):
        event = RevenueCatService.parse_webhook_payload({
            "event": {
                "type": "RENEWAL",
                "app_user_id": "  ",
                "expiration_at_ms": "never",
                "purchased_at_ms": True,
                "unknown_field": {"nested": 1},
            }
        })

        assert event.app_user_id is None
        assert event.expiration_at_ms is None
        assert event.purchased_at_ms is None

    @pytest.mark.parametrize("value", [1e20, -1e20, "9" * 30])
    def test_unrepresentable_timestamps_are_dropped(self, value):
        event = RevenueCatService.parse_webhook_payload({
            "event": _event(expiration_at_ms=value, purchased_at_ms=value)
        })

        assert event.expiration_at_ms is None
        assert event.purchased_at_ms is None
        assert RevenueCatService.to_purchase_event(event).expires_at is None

    def test_to_purchase_event(self):
        event = RevenueCatService.parse_webhook_payload({"event": _event(price=None, revenue="3.5", currency=None, price_currency="eur")})
        purchase = RevenueCatService.to_purchase_event(event)

        assert purchase.provider == PaymentProvider.APP_STORE
        assert purchase.amount_cents == 350
        assert purchase.currency == "EUR"
        assert purchase.expires_at is not None

    def test_to_purchase_event_without_store(self):
        event = RevenueCatService.parse_webhook_payload({"event": _event(store=None)})

        assert RevenueCatService.to_purchase_event(event).provider is None

    def test_delivered_body_is_kept_as_raw_payload(self):
        payload = {"api_version": "1.0", "event": _event()}
        event = RevenueCatService.parse_webhook_payload(payload)

        assert RevenueCatService.to_purchase_event(event, payload).raw_payload == payload


class TestWebhookAuthorization:

    @pytest.fixture
    def service(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "REVENUECAT_WEBHOOK_AUTH", "s3cret")
        return RevenueCatService(db_session)

    def test_raw_secret(self, service):
        assert service.verify_webhook_authorization("s3cret") is True

    def test_bearer_secret(self, service):
        assert service.verify_webhook_authorization("Bearer s3cret") is True
        assert service.verify_webhook_authorization("bearer s3cret") is True

    @pytest.mark.parametrize("header", [None, "", "Bearer ", "wrong", "Bearer wrong", "s3cret2"])
    def test_rejected(self, service, header):
        assert service.verify_webhook_authorization(header) is False

    def test_configured_with_bearer_prefix(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "REVENUECAT_WEBHOOK_AUTH", "Bearer s3cret")
        service = RevenueCatService(db_session)

        assert service.verify_webhook_authorization("s3cret") is True

    def test_unset_secret_skips_check(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "REVENUECAT_WEBHOOK_AUTH", "")
        service = RevenueCatService(db_session)

        assert service.verify_webhook_authorization(None) is True


class TestProcessEvent:

    async def _process(self, db_session, **overrides) -> dict:
        service = RevenueCatService(db_session)
        event = service.parse_webhook_payload({"event": _event(**overrides)})
        return await service.process_event(event)

    @pytest.mark.asyncio
    async def test_purchase(self, db_session):
        result = await self._process(db_session)

        assert result == {"ok": True}
        state = await RevenueCatService(db_session).engine.get_state("u1")
        assert to_client(state) == {
            "plan": "monthly",
            "status": "active",
            "autoRenew": True,
            "periodEnd": 2000,
        }
        assert await _count(db_session, WebhookEvent) == 1

    @pytest.mark.asyncio
    async def test_ledger_and_audit_keep_delivered_body(self, db_session):
        service = RevenueCatService(db_session)
        payload = {"api_version": "1.0", "event": _event()}

        await service.process_event(service.parse_webhook_payload(payload), payload)

        payment = (await db_session.execute(select(PaymentRecord))).scalar_one()
        audit = (await db_session.execute(select(WebhookEvent))).scalar_one()
        assert payment.raw_payload["api_version"] == "1.0"
        assert payment.raw_payload["event"]["transaction_id"] == "t1"
        assert audit.raw_payload == payload

    @pytest.mark.asyncio
    async def test_refund_marker(self, db_session):
        await self._process(db_session)

        result = await self._process(db_session, id="evt_2", type="REFUND")

        assert result == {"ok": True, "revoked": True}

    @pytest.mark.asyncio
    async def test_customer_support_cancellation_is_revocation(self, db_session):
        await self._process(db_session)

        result = await self._process(
            db_session,
            id="evt_2",
            type="CANCELLATION",
            cancel_reason="CUSTOMER_SUPPORT",
        )

        assert result == {"ok": True, "revoked": True}
        state = await RevenueCatService(db_session).engine.get_state("u1")
        assert to_client(state) == {
            "plan": "free",
            "status": "inactive",
            "autoRenew": False,
            "periodEnd": None,
        }

    @pytest.mark.asyncio
    async def test_cancellation_marker(self, db_session):
        await self._process(db_session)

        result = await self._process(
            db_session,
            id="evt_2",
            type="CANCELLATION",
            cancel_reason="UNSUBSCRIBE",
        )

        assert result == {"ok": True, "canceled": True}
        state = await RevenueCatService(db_session).engine.get_state("u1")
        assert state.status == SubscriptionStatus.CANCELED

    @pytest.mark.asyncio
    async def test_expiration_marker(self, db_session):
        result = await self._process(db_session, type="EXPIRATION")

        assert result == {"ok": True, "expired": True}

    @pytest.mark.asyncio
    async def test_unknown_type_is_ignored(self, db_session):
        result = await self._process(db_session, type="BILLING_ISSUE")

        assert result == {"ok": True, "ignored": "BILLING_ISSUE"}
        assert await _count(db_session, SubscriptionState) == 0
        # still audited
        assert await _count(db_session, WebhookEvent) == 1

    @pytest.mark.asyncio
    async def test_duplicate_event_id(self, db_session):
        first = await self._process(db_session)
        second = await self._process(db_session, price=9.99)

        assert first == {"ok": True}
        assert second == {"ok": True, "duplicate": True}
        payment = (await db_session.execute(select(PaymentRecord))).scalar_one()
        assert payment.amount_cents == 499

    @pytest.mark.asyncio
    async def test_events_without_id_are_reapplied(self, db_session):
        await self._process(db_session, id=None)
        result = await self._process(db_session, id=None)

        assert result == {"ok": True}
        assert await _count(db_session, WebhookEvent) == 0
        assert await _count(db_session, PaymentRecord) == 1

    @pytest.mark.asyncio
    async def test_missing_user_writes_nothing(self, db_session):
        result = await self._process(db_session, app_user_id=None)

        assert result == {"ok": True, "skipped": "missing app_user_id"}
        assert await _count(db_session, WebhookEvent) == 0
        assert await _count(db_session, SubscriptionState) == 0
        assert await _count(db_session, PaymentRecord) == 0
