from autopay.models.redemption_order import (
    RedemptionOrder,
    RedemptionState,
    RetryStrategy,
)
from autopay.models.subscription import (
    AmountType,
    AuthWorkflowType,
    Subscription,
    SubscriptionFrequency,
    SubscriptionStatus,
    UnknownStatus,
)

__all__ = [
    "AmountType",
    "AuthWorkflowType",
    "RedemptionOrder",
    "RedemptionState",
    "RetryStrategy",
    "Subscription",
    "SubscriptionFrequency",
    "SubscriptionStatus",
    "UnknownStatus",
]
