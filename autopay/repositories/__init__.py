from autopay.repositories.redemption_order_repository import RedemptionOrderRepository
from autopay.repositories.subscription_repository import SubscriptionRepository

__all__ = [
    "RedemptionOrderRepository",
    "SubscriptionRepository",
]
