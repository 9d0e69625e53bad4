"""
Billing Schemas
===============

Billing history items shown in the app's "Payments" screen.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


BillingStore = Literal["apple", "google", "stripe", "promo", "other"]


class BillingItem(BaseModel):
    """A single historical payment."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str = Field(alias="userId")
    plan: str
    amount: float  # currency units, not cents
    currency: str
    platform: str
    store: BillingStore
    store_transaction_id: Optional[str] = Field(default=None, alias="storeTransactionId")
    purchased_at: int = Field(alias="purchasedAt")  # epoch millis
    expires_at: Optional[int] = Field(default=None, alias="expiresAt")
    status: Literal["paid"] = "paid"


class BillingHistoryResponse(BaseModel):
    """Response for ``GET /billing/history``."""

    items: list[BillingItem]
