"""
Pydantic Schemas
================

Request/response schemas for API validation.
"""

from affirm.schemas.affirmation import (
    AffirmationDeleteRequest,
    AffirmationMeta,
    AffirmationSaveRequest,
)
from affirm.schemas.billing import BillingHistoryResponse, BillingItem
from affirm.schemas.profile import (
    AvatarUploadResponse,
    ProfileDto,
    ProfileUpdateRequest,
)
from affirm.schemas.subscription import (
    ActivateRequest,
    CancelAutoRenewRequest,
    ClientSubscription,
    RevenueCatEvent,
)

__all__ = [
    # Affirmations
    "AffirmationDeleteRequest",
    "AffirmationMeta",
    "AffirmationSaveRequest",
    # Billing
    "BillingHistoryResponse",
    "BillingItem",
    # Profile
    "AvatarUploadResponse",
    "ProfileDto",
    "ProfileUpdateRequest",
    # Subscription
    "ActivateRequest",
    "CancelAutoRenewRequest",
    "ClientSubscription",
    "RevenueCatEvent",
]
