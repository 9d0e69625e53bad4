"""
Database Models
===============

SQLAlchemy ORM models for all database entities.

All models are imported here to ensure they are registered
with SQLAlchemy's metadata for migrations and relationships.
"""

from affirm.models.user import User
from affirm.models.affirmation import Affirmation
from affirm.models.payment import (
    PaymentRecord,
    PaymentProvider,
    Platform,
    PAYMENT_IDENTITY_FIELDS,
    PAYMENT_MUTABLE_FIELDS,
)
from affirm.models.subscription import (
    SubscriptionState,
    Plan,
    SubscriptionStatus,
    SubscriptionSource,
)
from affirm.models.webhook_event import WebhookEvent

__all__ = [
    # User
    "User",
    # Content
    "Affirmation",
    # Ledger
    "PaymentRecord",
    "PaymentProvider",
    "Platform",
    "PAYMENT_IDENTITY_FIELDS",
    "PAYMENT_MUTABLE_FIELDS",
    # Subscription
    "SubscriptionState",
    "Plan",
    "SubscriptionStatus",
    "SubscriptionSource",
    # Webhooks
    "WebhookEvent",
]
