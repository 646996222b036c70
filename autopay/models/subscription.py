from dataclasses import dataclass
from enum import Enum

from sqlalchemy import Column, DateTime, Integer, String, func

from autopay.core.database import Base


class SubscriptionStatus(str, Enum):
    """Mandate states reported by the gateway.

    The gateway may introduce states this enum does not know about. Those are
    never rejected: :func:`parse_status` wraps them in :class:`UnknownStatus`,
    the raw string is stored verbatim, and classification places them in the
    pending bucket so they stay visible until a later reconciliation resolves
    them.
    """

    PENDING = "PENDING"
    ACTIVATION_IN_PROGRESS = "ACTIVATION_IN_PROGRESS"
    ACTIVE = "ACTIVE"
    PAUSE_IN_PROGRESS = "PAUSE_IN_PROGRESS"
    PAUSED = "PAUSED"
    UNPAUSE_IN_PROGRESS = "UNPAUSE_IN_PROGRESS"
    CANCEL_IN_PROGRESS = "CANCEL_IN_PROGRESS"
    CANCELLED = "CANCELLED"
    REVOKE_IN_PROGRESS = "REVOKE_IN_PROGRESS"
    REVOKED = "REVOKED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class UnknownStatus:
    """A status string the gateway sent that is not a known SubscriptionStatus."""

    raw: str

    @property
    def value(self) -> str:
        return self.raw


ParsedStatus = SubscriptionStatus | UnknownStatus

TERMINAL_STATUSES = frozenset(
    {
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.REVOKED,
        SubscriptionStatus.FAILED,
        SubscriptionStatus.EXPIRED,
    }
)


def parse_status(raw: str | SubscriptionStatus | UnknownStatus | None) -> ParsedStatus:
    """Parse a gateway or stored status string. Never raises."""
    if isinstance(raw, SubscriptionStatus | UnknownStatus):
        return raw
    if raw is None:
        return UnknownStatus("")
    normalized = raw.strip().upper()
    try:
        return SubscriptionStatus(normalized)
    except ValueError:
        return UnknownStatus(raw)


def is_terminal(status: ParsedStatus) -> bool:
    return isinstance(status, SubscriptionStatus) and status in TERMINAL_STATUSES


class SubscriptionFrequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    BI_MONTHLY = "BI_MONTHLY"
    QUARTERLY = "QUARTERLY"
    HALFYEARLY = "HALFYEARLY"
    SEMI_ANNUALLY = "SEMI_ANNUALLY"
    YEARLY = "YEARLY"
    ONCE = "ONCE"
    ON_DEMAND = "ON_DEMAND"


class AmountType(str, Enum):
    FIXED = "FIXED"
    VARIABLE = "VARIABLE"


class AuthWorkflowType(str, Enum):
    TRANSACTION = "TRANSACTION"
    PENNY_DROP = "PENNY_DROP"


class Subscription(Base):
    __tablename__ = "subscriptions"

    merchant_subscription_id = Column(String(64), primary_key=True)
    order_id = Column(String(64), nullable=True, index=True)
    merchant_order_id = Column(String(64), nullable=True)
    user_id = Column(String(255), nullable=True, index=True)
    # Raw status string; see parse_status for the enum boundary.
    status = Column(
        String(40), nullable=False, default=SubscriptionStatus.PENDING.value, index=True
    )
    amount = Column(Integer, nullable=False)
    max_amount = Column(Integer, nullable=True)
    amount_type = Column(String(20), nullable=False, default=AmountType.FIXED.value)
    auth_workflow_type = Column(
        String(20), nullable=False, default=AuthWorkflowType.TRANSACTION.value
    )
    frequency = Column(String(20), nullable=False, default=SubscriptionFrequency.MONTHLY.value)
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    pause_start = Column(DateTime(timezone=True), nullable=True)
    pause_end = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
