"""
Reconciliation Engine Tests
===========================

Runs the engine against a real (SQLite) session so the upsert statements
are exercised end to end.
"""

import pytest
from sqlalchemy import func, select

from affirm.core.errors import ErrorCodes, NotFoundError, ValidationError
from affirm.models.payment import (
    PAYMENT_IDENTITY_FIELDS,
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
from affirm.services.projection import to_client
from affirm.services.reconciliation import ReconciliationEngine
from affirm.utils.helpers import from_epoch_ms


def _purchase(**overrides) -> PurchaseEvent:
    values = dict(
        product_id="pkg.monthly",
        transaction_id="t1",
        provider=PaymentProvider.APP_STORE,
        amount_cents=499,
        currency="USD",
        purchased_at=from_epoch_ms(1000),
        expires_at=from_epoch_ms(2000),
    )
    values.update(overrides)
    return PurchaseEvent(**values)


def _activate_request(**overrides) -> ActivateRequest:
    body = {
        "productId": "com.affirm.pro.yearly",
        "transactionId": "GPA.1234",
        "amountCents": 2999,
        "currency": "usd",
        "platform": "android",
        "provider": "google_play",
        "periodEnd": 1900000000000,
    }
    body.update(overrides)
    return ActivateRequest.model_validate(body)


async def _count(db, model) -> int:
    result = await db.execute(select(func.count()).select_from(model))
    return result.scalar_one()


class TestEventApplication:

    @pytest.mark.asyncio
    async def test_initial_purchase_creates_active_state(self, db_session):
        engine = ReconciliationEngine(db_session)

        state = await engine.apply("u1", EntitlementAction.PURCHASE_LIKE, _purchase())
        await db_session.commit()

        assert to_client(state) == {
            "plan": "monthly",
            "status": "active",
            "autoRenew": True,
            "periodEnd": 2000,
        }
        assert state.source == SubscriptionSource.APP_STORE
        assert state.latest_payment_id is not None

    @pytest.mark.asyncio
    async def test_refund_like_revokes_to_free(self, db_session):
        engine = ReconciliationEngine(db_session)
        await engine.apply("u1", EntitlementAction.PURCHASE_LIKE, _purchase())

        state = await engine.apply(
            "u1",
            EntitlementAction.REFUND_LIKE,
            PurchaseEvent(product_id="pkg.monthly"),
        )
        await db_session.commit()

        assert to_client(state) == {
            "plan": "free",
            "status": "inactive",
            "autoRenew": False,
            "periodEnd": None,
        }
        assert state.canceled_at is not None

    @pytest.mark.asyncio
    async def test_cancellation_keeps_plan_and_period(self, db_session):
        engine = ReconciliationEngine(db_session)
        await engine.apply("u1", EntitlementAction.PURCHASE_LIKE, _purchase())

        state = await engine.apply("u1", EntitlementAction.CANCELLATION, PurchaseEvent())
        await db_session.commit()

        assert to_client(state) == {
            "plan": "monthly",
            "status": "canceled",
            "autoRenew": False,
            "periodEnd": 2000,
        }
        assert state.canceled_at is not None

    @pytest.mark.asyncio
    async def test_cancellation_without_prior_state_creates_row(self, db_session):
        engine = ReconciliationEngine(db_session)

        state = await engine.apply(
            "u1",
            EntitlementAction.CANCELLATION,
            PurchaseEvent(product_id="pkg.yearly", expires_at=from_epoch_ms(5000)),
        )

        assert state.plan == Plan.YEARLY
        assert state.status == SubscriptionStatus.CANCELED
        assert to_client(state)["periodEnd"] == 5000

    @pytest.mark.asyncio
    async def test_expiration_sets_expired_free(self, db_session):
        engine = ReconciliationEngine(db_session)
        await engine.apply("u1", EntitlementAction.PURCHASE_LIKE, _purchase())

        state = await engine.apply("u1", EntitlementAction.EXPIRATION, PurchaseEvent())

        assert state.plan == Plan.FREE
        assert state.status == SubscriptionStatus.EXPIRED
        assert state.renews_at is None
        # No store on the event: source untouched
        assert state.source == SubscriptionSource.APP_STORE

    @pytest.mark.asyncio
    async def test_ignored_and_missing_user_write_nothing(self, db_session):
        engine = ReconciliationEngine(db_session)

        assert await engine.apply("u1", EntitlementAction.IGNORED, _purchase()) is None
        assert await engine.apply(None, EntitlementAction.PURCHASE_LIKE, _purchase()) is None
        assert await engine.apply("", EntitlementAction.PURCHASE_LIKE, _purchase()) is None

        assert await _count(db_session, SubscriptionState) == 0
        assert await _count(db_session, PaymentRecord) == 0

    @pytest.mark.asyncio
    async def test_purchase_reactivates_after_cancellation(self, db_session):
        engine = ReconciliationEngine(db_session)
        await engine.apply("u1", EntitlementAction.PURCHASE_LIKE, _purchase())
        await engine.apply("u1", EntitlementAction.CANCELLATION, PurchaseEvent())

        state = await engine.apply(
            "u1",
            EntitlementAction.PURCHASE_LIKE,
            _purchase(transaction_id="t2", expires_at=from_epoch_ms(9000)),
        )

        assert state.status == SubscriptionStatus.ACTIVE
        assert state.canceled_at is None
        assert to_client(state)["periodEnd"] == 9000

    @pytest.mark.asyncio
    async def test_purchase_without_transaction_skips_ledger(self, db_session):
        engine = ReconciliationEngine(db_session)

        state = await engine.apply(
            "u1",
            EntitlementAction.PURCHASE_LIKE,
            _purchase(transaction_id=None),
        )

        assert state.status == SubscriptionStatus.ACTIVE
        assert state.latest_payment_id is None
        assert await _count(db_session, PaymentRecord) == 0

    @pytest.mark.asyncio
    async def test_lifetime_purchase_drops_expiration(self, db_session):
        engine = ReconciliationEngine(db_session)

        state = await engine.apply(
            "u1",
            EntitlementAction.PURCHASE_LIKE,
            _purchase(product_id="pkg.lifetime", expires_at=from_epoch_ms(2000)),
        )

        assert state.plan == Plan.LIFETIME
        assert state.renews_at is None
        data = to_client(state)
        assert data["autoRenew"] is False
        assert data["periodEnd"] is None
        payment = (await db_session.execute(select(PaymentRecord))).scalar_one()
        assert payment.expires_at is None


class TestLedger:

    @pytest.mark.asyncio
    async def test_replays_converge_on_one_row(self, db_session):
        engine = ReconciliationEngine(db_session)

        for _ in range(3):
            state = await engine.apply("u1", EntitlementAction.PURCHASE_LIKE, _purchase())
        await db_session.commit()

        assert await _count(db_session, PaymentRecord) == 1
        assert await _count(db_session, SubscriptionState) == 1
        assert state.status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_identity_fields_keep_first_value(self, db_session):
        engine = ReconciliationEngine(db_session)

        await engine.apply("u1", EntitlementAction.PURCHASE_LIKE, _purchase())
        await engine.apply(
            "u1",
            EntitlementAction.PURCHASE_LIKE,
            _purchase(
                product_id="pkg.yearly",
                provider=PaymentProvider.GOOGLE_PLAY,
                amount_cents=999,
                currency="EUR",
            ),
        )
        await db_session.commit()

        result = await db_session.execute(
            select(PaymentRecord).execution_options(populate_existing=True)
        )
        rows = result.scalars().all()

        assert len(rows) == 1
        payment = rows[0]
        assert payment.transaction_id == "t1"
        assert payment.product_id == "pkg.monthly"
        assert payment.provider == PaymentProvider.APP_STORE
        assert payment.platform == Platform.IOS
        assert payment.amount_cents == 999
        assert payment.currency == "EUR"

    @pytest.mark.asyncio
    async def test_later_delivery_never_rewrites_identity(self, db_session):
        engine = ReconciliationEngine(db_session)
        first = _purchase(original_transaction_id="orig-1")
        await engine.record_payment("u1", first)
        await engine.record_payment(
            "u2",
            _purchase(
                product_id="pkg.lifetime",
                provider=PaymentProvider.STRIPE,
                original_transaction_id="orig-2",
            ),
        )

        result = await db_session.execute(
            select(PaymentRecord).execution_options(populate_existing=True)
        )
        payment = result.scalar_one()
        expected = {
            "user_id": "u1",
            "platform": Platform.IOS,
            "provider": PaymentProvider.APP_STORE,
            "product_id": "pkg.monthly",
            "transaction_id": "t1",
            "original_transaction_id": "orig-1",
        }
        assert {name: getattr(payment, name) for name in PAYMENT_IDENTITY_FIELDS} == expected
        assert not set(PAYMENT_IDENTITY_FIELDS) & set(PAYMENT_MUTABLE_FIELDS)

    @pytest.mark.asyncio
    async def test_record_payment_returns_same_id(self, db_session):
        engine = ReconciliationEngine(db_session)

        first = await engine.record_payment("u1", _purchase())
        second = await engine.record_payment("u1", _purchase(amount_cents=1))

        assert first == second

    @pytest.mark.asyncio
    async def test_missing_product_is_recorded_as_unknown(self, db_session):
        engine = ReconciliationEngine(db_session)

        await engine.record_payment("u1", _purchase(product_id=None, provider=None))

        payment = (await db_session.execute(select(PaymentRecord))).scalar_one()
        assert payment.product_id == "unknown"
        assert payment.provider == PaymentProvider.PROMO
        assert payment.platform == Platform.WEB


class TestActivate:

    @pytest.mark.asyncio
    async def test_activate_derives_plan_from_product(self, db_session):
        engine = ReconciliationEngine(db_session)

        state = await engine.activate("u1", _activate_request(plan="free"))
        await db_session.commit()

        assert state.plan == Plan.YEARLY
        assert state.status == SubscriptionStatus.ACTIVE
        assert state.source == SubscriptionSource.GOOGLE_PLAY
        assert to_client(state)["periodEnd"] == 1900000000000

        payment = (await db_session.execute(select(PaymentRecord))).scalar_one()
        assert payment.currency == "USD"
        assert payment.amount_cents == 2999
        assert payment.platform == Platform.ANDROID

    @pytest.mark.asyncio
    async def test_lifetime_has_no_period_end(self, db_session):
        engine = ReconciliationEngine(db_session)

        state = await engine.activate(
            "u1",
            _activate_request(productId="com.affirm.pro.lifetime"),
        )

        assert state.plan == Plan.LIFETIME
        assert state.renews_at is None
        data = to_client(state)
        assert data["autoRenew"] is False
        assert data["storageLimitGb"] == 10

    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"transactionId": None}, "transactionId"),
            ({"productId": "  "}, "productId"),
            ({"currency": 5}, "currency"),
            ({"provider": "paypal"}, "provider"),
            ({"platform": "windows"}, "platform"),
            ({"amountCents": -1}, "amountCents"),
            ({"amountCents": "100"}, "amountCents"),
            ({"amountCents": True}, "amountCents"),
            ({"amountCents": 1e300}, "amountCents"),
            ({"amountCents": 2**31}, "amountCents"),
            ({"periodEnd": "soon"}, "periodEnd"),
            ({"periodEnd": 1e20}, "periodEnd"),
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_activation_writes_nothing(self, db_session, overrides, field):
        engine = ReconciliationEngine(db_session)

        with pytest.raises(ValidationError) as exc_info:
            await engine.activate("u1", _activate_request(**overrides))

        assert exc_info.value.status_code == 400
        assert exc_info.value.code == ErrorCodes.SUB_INVALID_ACTIVATION
        assert exc_info.value.field == field
        assert await _count(db_session, SubscriptionState) == 0
        assert await _count(db_session, PaymentRecord) == 0


class TestClientOperations:

    @pytest.mark.asyncio
    async def test_cancel_without_row_is_not_found(self, db_session):
        engine = ReconciliationEngine(db_session)

        with pytest.raises(NotFoundError) as exc_info:
            await engine.cancel_auto_renew("u1")

        assert exc_info.value.code == ErrorCodes.SUB_NOT_FOUND

    @pytest.mark.asyncio
    async def test_resume_without_row_does_not_create_one(self, db_session):
        engine = ReconciliationEngine(db_session)

        with pytest.raises(NotFoundError):
            await engine.resume_auto_renew("u1")

        assert await _count(db_session, SubscriptionState) == 0

    @pytest.mark.asyncio
    async def test_cancel_then_resume(self, db_session):
        engine = ReconciliationEngine(db_session)
        await engine.apply("u1", EntitlementAction.PURCHASE_LIKE, _purchase())

        canceled = await engine.cancel_auto_renew("u1", period_end_ms=7000)
        assert canceled.status == SubscriptionStatus.CANCELED
        assert to_client(canceled)["periodEnd"] == 7000
        assert to_client(canceled)["autoRenew"] is False

        resumed = await engine.resume_auto_renew("u1")
        assert resumed.status == SubscriptionStatus.ACTIVE
        assert resumed.canceled_at is None
        assert to_client(resumed)["autoRenew"] is True
        assert to_client(resumed)["periodEnd"] == 7000

    @pytest.mark.asyncio
    async def test_switch_to_free_creates_row(self, db_session):
        engine = ReconciliationEngine(db_session)

        state = await engine.switch_to_free("u1")

        assert state.plan == Plan.FREE
        assert state.status == SubscriptionStatus.INACTIVE
        assert state.source == SubscriptionSource.ADMIN
        assert await _count(db_session, SubscriptionState) == 1

    @pytest.mark.asyncio
    async def test_switch_to_free_clears_paid_plan(self, db_session):
        engine = ReconciliationEngine(db_session)
        await engine.apply("u1", EntitlementAction.PURCHASE_LIKE, _purchase())

        state = await engine.switch_to_free("u1")

        assert to_client(state) == {
            "plan": "free",
            "status": "inactive",
            "autoRenew": False,
            "periodEnd": None,
        }
