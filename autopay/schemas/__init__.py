from autopay.schemas.redemption import (
    ExecuteRedemptionRequest,
    MetaInfo,
    NotifyRedemptionRequest,
    RedemptionOrderCreate,
    RedemptionOrderRead,
    RedemptionOrderUpdate,
)
from autopay.schemas.subscription import (
    BatchReconcileResponse,
    ClassifiedSubscriptionsResponse,
    PauseRequest,
    ReconcileItemResponse,
    SubscriptionRead,
    SubscriptionSetupRequest,
    SubscriptionSetupResponse,
    SubscriptionUpsert,
)
from autopay.schemas.webhook import WebhookEvent, WebhookResponse

__all__ = [
    "BatchReconcileResponse",
    "ClassifiedSubscriptionsResponse",
    "ExecuteRedemptionRequest",
    "MetaInfo",
    "NotifyRedemptionRequest",
    "PauseRequest",
    "ReconcileItemResponse",
    "RedemptionOrderCreate",
    "RedemptionOrderRead",
    "RedemptionOrderUpdate",
    "SubscriptionRead",
    "SubscriptionSetupRequest",
    "SubscriptionSetupResponse",
    "SubscriptionUpsert",
    "WebhookEvent",
    "WebhookResponse",
]
