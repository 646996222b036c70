"""Redemption orchestration: notify, execute and status checks against an active mandate."""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from autopay.core.config import settings
from autopay.core.errors import (
    AutopayError,
    ErrorAction,
    ErrorCode,
    GatewayError,
    PreconditionError,
    Result,
    ValidationError,
)
from autopay.core.identifiers import new_redemption_order_id
from autopay.models.redemption_order import (
    RedemptionState,
    RetryStrategy,
    parse_redemption_state,
)
from autopay.models.subscription import SubscriptionStatus, is_terminal, parse_status
from autopay.repositories.redemption_order_repository import RedemptionOrderRepository
from autopay.repositories.subscription_repository import SubscriptionRepository
from autopay.schemas.redemption import (
    RedemptionOrderCreate,
    RedemptionOrderRead,
    RedemptionOrderUpdate,
)
from autopay.services.gateway_client import (
    ExecuteCompleted,
    ExecuteFailed,
    GatewayClient,
    NotifyRequest,
    OrderStatusResponse,
)

logger = logging.getLogger(__name__)

# States in which the execute call has not been issued yet.
EXECUTABLE_STATES = frozenset(
    {RedemptionState.NOTIFICATION_IN_PROGRESS, RedemptionState.NOTIFIED}
)


class RedemptionService:
    """Drives charge-on-mandate transactions.

    Every redemption attempt gets a fresh merchant order id which is recorded
    before the gateway is contacted, so an id is never handed to the gateway
    twice. Execution is issued at most once per order; anything after that
    goes through :meth:`check_status`.
    """

    def __init__(
        self,
        gateway: GatewayClient,
        subscription_repository: SubscriptionRepository | None = None,
        order_repository: RedemptionOrderRepository | None = None,
        verify_before_execute: bool | None = None,
    ):
        self.gateway = gateway
        self.subscription_repo = subscription_repository or SubscriptionRepository()
        self.order_repo = order_repository or RedemptionOrderRepository()
        self.verify_before_execute = (
            settings.verify_subscription_before_execute
            if verify_before_execute is None
            else verify_before_execute
        )

    async def notify(
        self,
        merchant_subscription_id: str,
        amount: int,
        expire_at: datetime | None = None,
        meta_info: dict[str, Any] | None = None,
        retry_strategy: RetryStrategy = RetryStrategy.STANDARD,
        auto_debit: bool = False,
    ) -> Result[RedemptionOrderRead]:
        """Announce an upcoming debit to the payer."""
        if amount <= 0:
            return Result.failure(
                ValidationError(ErrorCode.INVALID_AMOUNT, "Amount must be positive")
            )

        subscription = self.subscription_repo.get(merchant_subscription_id)
        if subscription is None:
            return Result.failure(
                PreconditionError(
                    ErrorCode.SUBSCRIPTION_NOT_FOUND,
                    f"Subscription {merchant_subscription_id} not found",
                )
            )
        if is_terminal(subscription.parsed_status):
            return Result.failure(
                PreconditionError(
                    ErrorCode.SUBSCRIPTION_TERMINAL,
                    f"Subscription {merchant_subscription_id} is {subscription.status}",
                )
            )
        if subscription.max_amount is not None and amount > subscription.max_amount:
            return Result.failure(
                ValidationError(
                    ErrorCode.INVALID_AMOUNT,
                    "Amount exceeds the mandate's maximum amount",
                    details={"amount": amount, "max_amount": subscription.max_amount},
                )
            )

        merchant_order_id = new_redemption_order_id()
        expire_at = expire_at or datetime.now(UTC) + timedelta(
            hours=settings.redemption_notify_ttl_hours
        )
        self.order_repo.create(
            RedemptionOrderCreate(
                merchant_order_id=merchant_order_id,
                merchant_subscription_id=merchant_subscription_id,
                amount=amount,
                expire_at=expire_at,
                retry_strategy=retry_strategy,
                auto_debit=auto_debit,
                meta_info=meta_info,
            )
        )

        try:
            response = await self.gateway.notify_redemption(
                NotifyRequest(
                    merchant_order_id=merchant_order_id,
                    merchant_subscription_id=merchant_subscription_id,
                    amount=amount,
                    expire_at=expire_at,
                    retry_strategy=RetryStrategy(retry_strategy).value,
                    auto_debit=auto_debit,
                    meta_info=meta_info,
                )
            )
        except GatewayError as exc:
            logger.error("Redemption notify %s failed: %s", merchant_order_id, exc.message)
            self.order_repo.update(
                merchant_order_id,
                RedemptionOrderUpdate(state=RedemptionState.FAILED, error_code=exc.code),
            )
            return Result.failure(exc)

        state = parse_redemption_state(response.state)
        if state == RedemptionState.PENDING:
            state = RedemptionState.NOTIFIED
        order = self.order_repo.update(
            merchant_order_id,
            RedemptionOrderUpdate(
                gateway_order_id=response.order_id,
                state=state,
                expire_at=response.expire_at or expire_at,
            ),
        )
        logger.info(
            "Notified redemption %s on subscription %s", merchant_order_id, merchant_subscription_id
        )
        assert order is not None
        return Result.success(order)

    async def execute(
        self, merchant_order_id: str, merchant_subscription_id: str
    ) -> Result[RedemptionOrderRead]:
        """Debit a notified order.

        All local preconditions are checked before the gateway is contacted.
        An ambiguous execute outcome is resolved by a single order status
        check; if that fails too the order is left PENDING for a later poll.
        """
        subscription = self.subscription_repo.get(merchant_subscription_id)
        if subscription is None:
            return Result.failure(
                PreconditionError(
                    ErrorCode.SUBSCRIPTION_NOT_FOUND,
                    f"Subscription {merchant_subscription_id} not found",
                )
            )
        if subscription.parsed_status != SubscriptionStatus.ACTIVE:
            return Result.failure(_not_active(merchant_subscription_id, subscription.status))

        order = self.order_repo.get(merchant_order_id)
        if order is None:
            return Result.failure(
                PreconditionError(
                    ErrorCode.ORDER_NOT_FOUND, f"Redemption order {merchant_order_id} not found"
                )
            )
        if order.merchant_subscription_id != merchant_subscription_id:
            return Result.failure(
                PreconditionError(
                    ErrorCode.ORDER_SUBSCRIPTION_MISMATCH,
                    f"Order {merchant_order_id} does not belong to {merchant_subscription_id}",
                )
            )
        state = order.parsed_state
        if state == RedemptionState.COMPLETED:
            return Result.success(order)
        if state in (RedemptionState.FAILED, RedemptionState.EXPIRED):
            return Result.failure(
                PreconditionError(
                    ErrorCode.ORDER_NOT_EXECUTABLE,
                    f"Order {merchant_order_id} is {order.state}",
                    details={"state": order.state},
                )
            )
        if state not in EXECUTABLE_STATES:
            logger.info("Order %s already executed; checking status instead", merchant_order_id)
            return await self.check_status(merchant_order_id)

        # Claim before the first await so a concurrent caller cannot execute too.
        claimed = self.order_repo.transition_state(
            merchant_order_id, EXECUTABLE_STATES, RedemptionState.EXECUTION_IN_PROGRESS
        )
        if claimed is None:
            logger.info("Order %s claimed by another caller; checking status", merchant_order_id)
            return await self.check_status(merchant_order_id)

        if self.verify_before_execute:
            error = await self._verify_active(merchant_subscription_id)
            if error:
                self.order_repo.transition_state(
                    merchant_order_id, {RedemptionState.EXECUTION_IN_PROGRESS}, state
                )
                return Result.failure(error)

        outcome = await self.gateway.execute_redemption(merchant_order_id)

        if isinstance(outcome, ExecuteCompleted):
            updated = self.order_repo.update(
                merchant_order_id,
                RedemptionOrderUpdate(
                    state=parse_redemption_state(outcome.state),
                    transaction_id=outcome.transaction_id,
                ),
            )
            logger.info("Executed redemption %s: %s", merchant_order_id, outcome.state)
            return Result.success(updated or order)

        if isinstance(outcome, ExecuteFailed):
            error = outcome.error
            logger.error("Redemption execute %s failed: %s", merchant_order_id, error.message)
            # A retryable failure never reached the gateway, so the order stays executable.
            next_state = (
                RedemptionState.NOTIFIED
                if error.action == ErrorAction.RETRY
                else RedemptionState.FAILED
            )
            self.order_repo.update(
                merchant_order_id,
                RedemptionOrderUpdate(state=next_state, error_code=error.code),
            )
            return Result.failure(error)

        logger.warning(
            "Execute outcome for %s is ambiguous (%s); checking order status",
            merchant_order_id,
            outcome.reason,
        )
        try:
            status = await self.gateway.get_order_status(merchant_order_id)
        except GatewayError as exc:
            logger.warning(
                "Status check for %s failed: %s; leaving order pending",
                merchant_order_id,
                exc.message,
            )
            pending = self.order_repo.update(
                merchant_order_id, RedemptionOrderUpdate(state=RedemptionState.PENDING)
            )
            return Result.success(pending or order)
        return Result.success(self._apply_order_status(status, order))

    async def check_status(self, merchant_order_id: str) -> Result[RedemptionOrderRead]:
        """Read the order state from the gateway and refresh the stored copy."""
        try:
            status = await self.gateway.get_order_status(merchant_order_id)
        except GatewayError as exc:
            return Result.failure(exc)
        return Result.success(
            self._apply_order_status(status, self.order_repo.get(merchant_order_id))
        )

    def get_order(self, merchant_order_id: str) -> Result[RedemptionOrderRead]:
        order = self.order_repo.get(merchant_order_id)
        if order is None:
            return Result.failure(
                PreconditionError(
                    ErrorCode.ORDER_NOT_FOUND, f"Redemption order {merchant_order_id} not found"
                )
            )
        return Result.success(order)

    async def _verify_active(self, merchant_subscription_id: str) -> AutopayError | None:
        """Confirm with the gateway that the mandate is ACTIVE, refreshing the store."""
        try:
            remote = await self.gateway.get_subscription_status(merchant_subscription_id)
        except GatewayError as exc:
            return exc
        refreshed = self.subscription_repo.update_status(merchant_subscription_id, remote.state)
        current = refreshed.parsed_status if refreshed else parse_status(remote.state)
        if current != SubscriptionStatus.ACTIVE:
            return _not_active(merchant_subscription_id, current.value)
        return None

    def _apply_order_status(
        self, status: OrderStatusResponse, order: RedemptionOrderRead | None
    ) -> RedemptionOrderRead:
        state = parse_redemption_state(status.state)
        if order is None:
            return RedemptionOrderRead(
                merchant_order_id=status.merchant_order_id,
                gateway_order_id=status.order_id,
                amount=status.amount or 0,
                state=state.value,
                transaction_id=status.transaction_id,
                error_code=status.error_code,
                detailed_error_code=status.detailed_error_code,
            )

        if order.parsed_state not in EXECUTABLE_STATES and state in EXECUTABLE_STATES:
            # An order past execution never becomes executable again.
            state = order.parsed_state
        update = RedemptionOrderUpdate(state=state)
        if status.transaction_id:
            update.transaction_id = status.transaction_id
        if status.order_id and not order.gateway_order_id:
            update.gateway_order_id = status.order_id
        if status.error_code:
            update.error_code = status.error_code
            update.detailed_error_code = status.detailed_error_code
        updated = self.order_repo.update(status.merchant_order_id, update)
        return updated or order


def _not_active(merchant_subscription_id: str, status: str) -> PreconditionError:
    return PreconditionError(
        ErrorCode.SUBSCRIPTION_NOT_ACTIVE,
        f"Subscription {merchant_subscription_id} must be ACTIVE to execute a redemption",
        details={"merchant_subscription_id": merchant_subscription_id, "status": status},
    )
