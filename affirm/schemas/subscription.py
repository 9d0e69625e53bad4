"""
Subscription Schemas
====================

Pydantic schemas for the RevenueCat webhook payload and the
client-facing subscription endpoints.
"""

import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from affirm.utils.helpers import is_valid_epoch_ms


# ─── RevenueCat Webhook Event ────────────────────────────────────────────────


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _optional_ms(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or not is_valid_epoch_ms(number):
        return None
    return number


class RevenueCatEvent(BaseModel):
    """
    The ``event`` object inside a RevenueCat webhook body:
    ``{ "api_version": "1.0", "event": { ... } }``

    Only ``type`` is required. Optional fields are parsed leniently: a
    malformed optional field becomes ``None`` instead of rejecting the
    delivery. ``type`` is kept as a plain string so unknown event types
    reach the classifier and are acknowledged as ignored.
    """

    model_config = ConfigDict(extra="allow")

    type: str
    id: Optional[str] = None
    app_user_id: Optional[str] = None
    product_id: Optional[str] = None
    transaction_id: Optional[str] = None
    original_transaction_id: Optional[str] = None
    store: Optional[str] = None
    cancel_reason: Optional[str] = None
    environment: Optional[str] = None
    plan: Optional[str] = None
    purchased_at_ms: Optional[float] = None
    expiration_at_ms: Optional[float] = None

    # Amount / currency candidates, resolved by the classifier helpers
    price: Any = None
    price_in_purchased_currency: Any = None
    price_in_local_currency: Any = None
    revenue: Any = None
    currency: Any = None
    price_currency: Any = None
    price_currency_code: Any = None
    presented_currency: Any = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("event.type must be a non-empty string")
        return v.strip().upper()

    @field_validator(
        "id",
        "app_user_id",
        "product_id",
        "transaction_id",
        "original_transaction_id",
        "store",
        "cancel_reason",
        "environment",
        "plan",
        mode="before",
    )
    @classmethod
    def coerce_optional_str(cls, v: Any) -> Optional[str]:
        return _optional_str(v)

    @field_validator("purchased_at_ms", "expiration_at_ms", mode="before")
    @classmethod
    def coerce_optional_ms(cls, v: Any) -> Optional[float]:
        return _optional_ms(v)


# ─── Request / Response Schemas ──────────────────────────────────────────────


class ActivateRequest(BaseModel):
    """
    Request body for ``POST /subscription/activate``.

    All fields are optional at parse time so that a missing or malformed
    field is reported by the activation validator as a 400, not a 422.
    """

    model_config = ConfigDict(populate_by_name=True)

    plan: Optional[str] = None
    period_end: Any = Field(default=None, alias="periodEnd")
    amount_cents: Any = Field(default=None, alias="amountCents")
    currency: Any = None
    product_id: Any = Field(default=None, alias="productId")
    transaction_id: Any = Field(default=None, alias="transactionId")
    platform: Any = None
    provider: Any = None


class CancelAutoRenewRequest(BaseModel):
    """Request body for ``POST /subscription/cancel-auto-renew``."""

    model_config = ConfigDict(populate_by_name=True)

    period_end: Optional[float] = Field(default=None, alias="periodEnd")

    @field_validator("period_end", mode="before")
    @classmethod
    def coerce_period_end(cls, v: Any) -> Optional[float]:
        return _optional_ms(v)


class ClientSubscription(BaseModel):
    """Client-facing subscription shape."""

    model_config = ConfigDict(populate_by_name=True)

    plan: str
    status: str
    auto_renew: bool = Field(alias="autoRenew")
    period_end: Optional[int] = Field(default=None, alias="periodEnd")
    storage_limit_gb: Optional[int] = Field(default=None, alias="storageLimitGb")

    def to_client(self) -> dict[str, Any]:
        """Dump with camelCase keys; ``storageLimitGb`` only when set."""
        data = self.model_dump(by_alias=True)
        if data["storageLimitGb"] is None:
            data.pop("storageLimitGb")
        return data
