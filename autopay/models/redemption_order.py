"""Redemption order model for charge-on-mandate attempts."""

from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, func

from autopay.core.database import Base


class RedemptionState(str, Enum):
    NOTIFICATION_IN_PROGRESS = "NOTIFICATION_IN_PROGRESS"
    NOTIFIED = "NOTIFIED"
    EXECUTION_IN_PROGRESS = "EXECUTION_IN_PROGRESS"
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


FINAL_REDEMPTION_STATES = frozenset(
    {RedemptionState.COMPLETED, RedemptionState.FAILED, RedemptionState.EXPIRED}
)


def parse_redemption_state(raw: str | None) -> RedemptionState:
    """Map a gateway order state onto RedemptionState.

    Anything unrecognised is treated as PENDING: the order is unresolved and
    should be polled again.
    """
    if not raw:
        return RedemptionState.PENDING
    try:
        return RedemptionState(raw.strip().upper())
    except ValueError:
        return RedemptionState.PENDING


class RetryStrategy(str, Enum):
    STANDARD = "STANDARD"
    CUSTOM = "CUSTOM"


class RedemptionOrder(Base):
    """One redemption attempt. Rows are never reused for a second notify."""

    __tablename__ = "redemption_orders"

    merchant_order_id = Column(String(64), primary_key=True)
    gateway_order_id = Column(String(64), nullable=True, index=True)
    merchant_subscription_id = Column(
        String(64),
        ForeignKey("subscriptions.merchant_subscription_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount = Column(Integer, nullable=False)
    state = Column(
        String(40), nullable=False, default=RedemptionState.NOTIFICATION_IN_PROGRESS.value
    )
    transaction_id = Column(String(64), nullable=True)
    expire_at = Column(DateTime(timezone=True), nullable=True)
    retry_strategy = Column(String(20), nullable=False, default=RetryStrategy.STANDARD.value)
    auto_debit = Column(Boolean, nullable=False, default=False)
    meta_info = Column(JSON, nullable=True)
    error_code = Column(String(64), nullable=True)
    detailed_error_code = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
