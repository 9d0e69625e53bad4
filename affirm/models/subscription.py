"""
Subscription Models
===================

Current entitlement state, one row per user.

The row is written only by the reconciliation engine, always through a
single keyed upsert/update statement. A missing row means
``{plan: free, status: inactive}``.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from sqlalchemy import (
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    String,
    Uuid,
    func,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from affirm.db.base import Base


class Plan(str, Enum):
    """Entitlement tiers."""
    FREE = "free"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    LIFETIME = "lifetime"


class SubscriptionStatus(str, Enum):
    """Subscription status values. Only ACTIVE grants entitlement."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELED = "canceled"
    EXPIRED = "expired"


class SubscriptionSource(str, Enum):
    """Where the current state came from."""
    GOOGLE_PLAY = "google_play"
    APP_STORE = "app_store"
    STRIPE = "stripe"
    ADMIN = "admin"


class SubscriptionState(Base):
    """
    Current subscription state for a user.
    """

    __tablename__ = "subscriptions"

    # Primary Key
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Identity-provider user id (natural key)
    user_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )

    plan: Mapped[Plan] = mapped_column(
        SQLEnum(Plan),
        default=Plan.FREE,
        nullable=False,
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        SQLEnum(SubscriptionStatus),
        default=SubscriptionStatus.INACTIVE,
        nullable=False,
    )
    source: Mapped[SubscriptionSource] = mapped_column(
        SQLEnum(SubscriptionSource),
        default=SubscriptionSource.ADMIN,
        nullable=False,
    )

    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    renews_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,  # Null for free and lifetime
    )
    canceled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Payment that last changed this state (reference only)
    latest_payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("payments.payment_id"),
        nullable=True,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_subscription_status_renews", "status", "renews_at"),
    )

    def __repr__(self) -> str:
        return f"<SubscriptionState(user_id={self.user_id}, plan={self.plan}, status={self.status})>"

    @property
    def is_entitled(self) -> bool:
        """Entitlement is derived from status alone."""
        return self.status == SubscriptionStatus.ACTIVE
