from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from autopay.models.redemption_order import (
    FINAL_REDEMPTION_STATES,
    RedemptionState,
    RetryStrategy,
    parse_redemption_state,
)


class RedemptionOrderRead(BaseModel):
    merchant_order_id: str
    gateway_order_id: str | None = None
    merchant_subscription_id: str | None = None
    amount: int
    state: str
    transaction_id: str | None = None
    expire_at: datetime | None = None
    retry_strategy: str = RetryStrategy.STANDARD.value
    auto_debit: bool = False
    meta_info: dict[str, Any] | None = None
    error_code: str | None = None
    detailed_error_code: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def parsed_state(self) -> RedemptionState:
        return parse_redemption_state(self.state)

    @property
    def is_final(self) -> bool:
        return self.parsed_state in FINAL_REDEMPTION_STATES


class RedemptionOrderCreate(BaseModel):
    merchant_order_id: str
    merchant_subscription_id: str
    amount: int
    state: RedemptionState = RedemptionState.NOTIFICATION_IN_PROGRESS
    gateway_order_id: str | None = None
    expire_at: datetime | None = None
    retry_strategy: RetryStrategy = RetryStrategy.STANDARD
    auto_debit: bool = False
    meta_info: dict[str, Any] | None = None
    error_code: str | None = None


class RedemptionOrderUpdate(BaseModel):
    gateway_order_id: str | None = None
    state: RedemptionState | None = None
    transaction_id: str | None = None
    expire_at: datetime | None = None
    error_code: str | None = None
    detailed_error_code: str | None = None


class MetaInfo(BaseModel):
    udf1: str | None = None
    udf2: str | None = None
    udf3: str | None = None
    udf4: str | None = None
    udf5: str | None = None


class NotifyRedemptionRequest(BaseModel):
    merchant_subscription_id: str = Field(..., min_length=1)
    amount: int = Field(..., description="Amount in minor currency units (paise)")
    expire_at: datetime | None = None
    meta_info: MetaInfo | None = None
    retry_strategy: RetryStrategy = RetryStrategy.STANDARD
    auto_debit: bool = False


class ExecuteRedemptionRequest(BaseModel):
    merchant_subscription_id: str = Field(..., min_length=1)
