"""
Payment Models
==============

Payment ledger: one row per store transaction, keyed by ``transaction_id``.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from sqlalchemy import (
    DateTime,
    Enum as SQLEnum,
    Integer,
    String,
    Uuid,
    func,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from affirm.db.base import Base, JSONType


class Platform(str, Enum):
    """Purchase platform."""
    ANDROID = "android"
    IOS = "ios"
    WEB = "web"


class PaymentProvider(str, Enum):
    """Payment provider that issued the transaction."""
    GOOGLE_PLAY = "google_play"
    APP_STORE = "app_store"
    STRIPE = "stripe"
    PROMO = "promo"


# Written with insert-only semantics; never overwritten by a redelivery
PAYMENT_IDENTITY_FIELDS = (
    "user_id",
    "platform",
    "provider",
    "product_id",
    "transaction_id",
    "original_transaction_id",
)

# Overwritten on every delivery of the same transaction
PAYMENT_MUTABLE_FIELDS = (
    "amount_cents",
    "currency",
    "purchased_at",
    "expires_at",
    "raw_payload",
)

# Upper bound of the INTEGER amount_cents column
MAX_AMOUNT_CENTS = 2**31 - 1


class PaymentRecord(Base):
    """
    Ledger entry for a single purchase transaction.
    """

    __tablename__ = "payments"

    # Primary Key
    payment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Identity fields
    transaction_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    platform: Mapped[Platform] = mapped_column(
        SQLEnum(Platform),
        nullable=False,
    )
    provider: Mapped[PaymentProvider] = mapped_column(
        SQLEnum(PaymentProvider),
        nullable=False,
    )
    product_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    original_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    # Mutable fields
    amount_cents: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    currency: Mapped[str] = mapped_column(
        String(8),
        default="USD",
        nullable=False,
    )
    purchased_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,  # Null for lifetime
    )
    raw_payload: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_payment_user_purchased", "user_id", "purchased_at"),
    )

    def __repr__(self) -> str:
        return f"<PaymentRecord(transaction_id={self.transaction_id}, user_id={self.user_id})>"
