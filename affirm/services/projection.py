"""
Entitlement Projection
======================

Renders a subscription state row into the client-facing shape. Pure and
read-only.
"""

from typing import Any, Optional

from affirm.config import settings
from affirm.models.subscription import Plan, SubscriptionState, SubscriptionStatus
from affirm.schemas.subscription import ClientSubscription
from affirm.utils.helpers import to_epoch_ms

# Plans that never auto-renew
NON_RENEWING_PLANS = frozenset({Plan.FREE, Plan.LIFETIME})


def project_subscription(state: Optional[SubscriptionState]) -> ClientSubscription:
    """
    Absent state is ``{plan: free, status: inactive, autoRenew: false,
    periodEnd: null}``. ``storageLimitGb`` is only set for lifetime plans.
    """
    if state is None:
        return ClientSubscription(
            plan=Plan.FREE.value,
            status=SubscriptionStatus.INACTIVE.value,
            auto_renew=False,
            period_end=None,
        )

    plan = Plan(state.plan)
    status = SubscriptionStatus(state.status)

    return ClientSubscription(
        plan=plan.value,
        status=status.value,
        auto_renew=plan not in NON_RENEWING_PLANS and status == SubscriptionStatus.ACTIVE,
        period_end=to_epoch_ms(state.renews_at),
        storage_limit_gb=settings.LIFETIME_STORAGE_LIMIT_GB if plan == Plan.LIFETIME else None,
    )


def to_client(state: Optional[SubscriptionState]) -> dict[str, Any]:
    """JSON-ready projection."""
    return project_subscription(state).to_client()
