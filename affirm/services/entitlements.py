"""
Entitlement Rules
=================

Pure functions that turn purchase-lifecycle events into engine inputs:

- Event classification (type + cancel reason → action)
- Plan derivation from catalog product ids
- Provider / platform / source inference from store names
- Amount and currency normalisation

Nothing in this module touches the database.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from affirm.models.payment import MAX_AMOUNT_CENTS, PaymentProvider, Platform
from affirm.models.subscription import Plan, SubscriptionSource


class EntitlementAction(str, Enum):
    """What an event does to a user's subscription state."""

    PURCHASE_LIKE = "purchase_like"
    REFUND_LIKE = "refund_like"
    CANCELLATION = "cancellation"
    EXPIRATION = "expiration"
    IGNORED = "ignored"


PURCHASE_LIKE_TYPES = frozenset({
    "INITIAL_PURCHASE",
    "RENEWAL",
    "NON_RENEWING_PURCHASE",
    "UNCANCELLATION",
    "PRODUCT_CHANGE",
})

REFUND_LIKE_TYPES = frozenset({"REFUND", "REVOCATION"})

# A support-issued cancellation is a refund
REFUND_CANCEL_REASONS = frozenset({"CUSTOMER_SUPPORT"})

# Checked in order; first match wins
PLAN_MARKERS = (
    (".monthly", Plan.MONTHLY),
    (".yearly", Plan.YEARLY),
    (".lifetime", Plan.LIFETIME),
)

AMOUNT_FIELDS = (
    "price",
    "price_in_purchased_currency",
    "price_in_local_currency",
    "revenue",
)

CURRENCY_FIELDS = (
    "currency",
    "price_currency",
    "price_currency_code",
    "presented_currency",
)

DEFAULT_CURRENCY = "USD"


@dataclass
class PurchaseEvent:
    """Normalised purchase metadata handed to the reconciliation engine."""

    product_id: Optional[str] = None
    transaction_id: Optional[str] = None
    original_transaction_id: Optional[str] = None
    # None when the event named no store
    provider: Optional[PaymentProvider] = None
    platform: Optional[Platform] = None
    amount_cents: int = 0
    currency: str = DEFAULT_CURRENCY
    purchased_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    declared_plan: Optional[str] = None
    raw_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def plan(self) -> Plan:
        return derive_plan(self.product_id, self.declared_plan)

    @property
    def resolved_provider(self) -> PaymentProvider:
        return self.provider or PaymentProvider.PROMO

    @property
    def resolved_platform(self) -> Platform:
        return self.platform or platform_from_provider(self.resolved_provider)

    @property
    def source(self) -> SubscriptionSource:
        return source_from_provider(self.resolved_provider)


def classify_event(event_type: Optional[str], cancel_reason: Optional[str] = None) -> EntitlementAction:
    """
    Map an event type (and cancel reason) to an action.

    Never raises; anything unrecognised is IGNORED.
    """
    if not event_type:
        return EntitlementAction.IGNORED

    event_type = event_type.strip().upper()

    if event_type in PURCHASE_LIKE_TYPES:
        return EntitlementAction.PURCHASE_LIKE
    if event_type in REFUND_LIKE_TYPES:
        return EntitlementAction.REFUND_LIKE
    if event_type == "CANCELLATION":
        reason = (cancel_reason or "").strip().upper()
        if reason in REFUND_CANCEL_REASONS:
            return EntitlementAction.REFUND_LIKE
        return EntitlementAction.CANCELLATION
    if event_type == "EXPIRATION":
        return EntitlementAction.EXPIRATION
    return EntitlementAction.IGNORED


def plan_from_product(product_id: Optional[str]) -> Plan:
    """
    Derive the plan from product id markers; no marker means free.

    Markers are case-sensitive: catalog ids are lower-case.
    """
    if not product_id:
        return Plan.FREE
    for marker, plan in PLAN_MARKERS:
        if marker in product_id:
            return plan
    return Plan.FREE


def derive_plan(product_id: Optional[str], declared_plan: Optional[str] = None) -> Plan:
    """
    Resolve the plan for a purchase.

    The product id always wins. A caller-declared plan is only consulted
    when there is no product id at all, so a client cannot self-upgrade by
    sending ``plan`` alongside a lower-tier product.
    """
    if product_id:
        return plan_from_product(product_id)
    if declared_plan:
        try:
            return Plan(declared_plan.strip().lower())
        except ValueError:
            return Plan.FREE
    return Plan.FREE


def provider_from_store(store: Optional[str]) -> PaymentProvider:
    """Infer the payment provider from a RevenueCat store name."""
    s = (store or "").lower()
    if "play" in s or "google" in s:
        return PaymentProvider.GOOGLE_PLAY
    if "app_store" in s or "apple" in s or "ios" in s:
        return PaymentProvider.APP_STORE
    if "stripe" in s:
        return PaymentProvider.STRIPE
    return PaymentProvider.PROMO


def platform_from_provider(provider: PaymentProvider) -> Platform:
    if provider == PaymentProvider.APP_STORE:
        return Platform.IOS
    if provider == PaymentProvider.GOOGLE_PLAY:
        return Platform.ANDROID
    return Platform.WEB


def source_from_provider(provider: PaymentProvider) -> SubscriptionSource:
    if provider == PaymentProvider.GOOGLE_PLAY:
        return SubscriptionSource.GOOGLE_PLAY
    if provider == PaymentProvider.APP_STORE:
        return SubscriptionSource.APP_STORE
    if provider == PaymentProvider.STRIPE:
        return SubscriptionSource.STRIPE
    return SubscriptionSource.ADMIN


def _finite_non_negative(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return number


def extract_amount_cents(payload: dict[str, Any], fields: Iterable[str] = AMOUNT_FIELDS) -> int:
    """
    First finite non-negative amount among ``fields`` (currency units),
    converted to cents. Amounts the ledger cannot store are skipped.
    Returns 0 when none qualifies.
    """
    for name in fields:
        number = _finite_non_negative(payload.get(name))
        if number is None:
            continue
        # Half-up rounding
        cents = math.floor(number * 100 + 0.5)
        if cents <= MAX_AMOUNT_CENTS:
            return int(cents)
    return 0


def pick_currency(payload: dict[str, Any], fields: Iterable[str] = CURRENCY_FIELDS) -> str:
    """First non-empty currency code among ``fields``, upper-cased."""
    for name in fields:
        value = payload.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip().upper()
    return DEFAULT_CURRENCY
