from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from autopay.models.subscription import (
    AmountType,
    AuthWorkflowType,
    ParsedStatus,
    SubscriptionFrequency,
    SubscriptionStatus,
    parse_status,
)


class SubscriptionRead(BaseModel):
    """Detached snapshot of a stored subscription."""

    merchant_subscription_id: str
    order_id: str | None = None
    merchant_order_id: str | None = None
    user_id: str | None = None
    status: str
    amount: int
    max_amount: int | None = None
    amount_type: str = AmountType.FIXED.value
    auth_workflow_type: str = AuthWorkflowType.TRANSACTION.value
    frequency: str
    start_date: datetime | None = None
    end_date: datetime | None = None
    pause_start: datetime | None = None
    pause_end: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def parsed_status(self) -> ParsedStatus:
        return parse_status(self.status)

    @property
    def is_active(self) -> bool:
        return self.parsed_status == SubscriptionStatus.ACTIVE


class SubscriptionUpsert(BaseModel):
    """Fields to write for a subscription. Unset fields are left untouched on update."""

    merchant_subscription_id: str = Field(..., min_length=1, max_length=64)
    order_id: str | None = None
    merchant_order_id: str | None = None
    user_id: str | None = None
    status: str | None = None
    amount: int | None = None
    max_amount: int | None = None
    amount_type: str | None = None
    auth_workflow_type: str | None = None
    frequency: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    pause_start: datetime | None = None
    pause_end: datetime | None = None


class SubscriptionSetupRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=255)
    amount: int = Field(..., description="Amount in minor currency units (paise)")
    frequency: SubscriptionFrequency = SubscriptionFrequency.MONTHLY
    amount_type: AmountType = AmountType.FIXED
    max_amount: int | None = None
    auth_workflow_type: AuthWorkflowType = AuthWorkflowType.TRANSACTION


class SubscriptionSetupResponse(BaseModel):
    subscription: SubscriptionRead
    merchant_order_id: str
    intent_url: str | None = None
    state: str | None = None


class PauseRequest(BaseModel):
    pause_start: datetime
    pause_end: datetime

    @model_validator(mode="after")
    def check_window(self) -> "PauseRequest":
        if self.pause_start >= self.pause_end:
            raise ValueError("pause_start must be before pause_end")
        return self


class ClassifiedSubscriptionsResponse(BaseModel):
    active: list[SubscriptionRead]
    pending: list[SubscriptionRead]
    cancelled: list[SubscriptionRead]


class ReconcileItemResponse(BaseModel):
    merchant_subscription_id: str
    status: str | None = None
    changed: bool = False
    error: dict | None = None


class BatchReconcileResponse(BaseModel):
    debounced: bool
    items: list[ReconcileItemResponse] = []
