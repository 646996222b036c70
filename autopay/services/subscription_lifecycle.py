"""Service for mandate lifecycle management: setup, reconciliation, cancel, pause, revoke."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from autopay.core.config import settings
from autopay.core.errors import (
    AutopayError,
    ErrorCode,
    GatewayError,
    PreconditionError,
    Result,
    ValidationError,
)
from autopay.core.identifiers import new_setup_order_id, new_subscription_id
from autopay.core.rate_limiter import Debouncer
from autopay.models.subscription import (
    AmountType,
    AuthWorkflowType,
    ParsedStatus,
    SubscriptionFrequency,
    SubscriptionStatus,
    UnknownStatus,
    is_terminal,
    parse_status,
)
from autopay.repositories.subscription_repository import SubscriptionRepository
from autopay.schemas.subscription import SubscriptionRead, SubscriptionUpsert
from autopay.services.gateway_client import GatewayClient, SetupRequest

logger = logging.getLogger(__name__)

ACTIVE_BUCKET = frozenset({SubscriptionStatus.ACTIVE})
PENDING_BUCKET = frozenset(
    {
        SubscriptionStatus.PENDING,
        SubscriptionStatus.ACTIVATION_IN_PROGRESS,
        SubscriptionStatus.PAUSE_IN_PROGRESS,
        SubscriptionStatus.UNPAUSE_IN_PROGRESS,
    }
)
CANCELLED_BUCKET = frozenset(
    {
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.CANCEL_IN_PROGRESS,
        SubscriptionStatus.REVOKED,
        SubscriptionStatus.REVOKE_IN_PROGRESS,
        SubscriptionStatus.FAILED,
        SubscriptionStatus.EXPIRED,
        SubscriptionStatus.PAUSED,
    }
)


@dataclass
class SetupOutcome:
    subscription: SubscriptionRead
    merchant_order_id: str
    intent_url: str | None
    state: str | None


@dataclass
class ClassifiedSubscriptions:
    active: list[SubscriptionRead] = field(default_factory=list)
    pending: list[SubscriptionRead] = field(default_factory=list)
    cancelled: list[SubscriptionRead] = field(default_factory=list)


@dataclass
class ReconcileOutcome:
    merchant_subscription_id: str
    status: ParsedStatus
    changed: bool


@dataclass
class BatchReconcileItem:
    merchant_subscription_id: str
    result: Result[ReconcileOutcome]


@dataclass
class BatchReconcileResult:
    debounced: bool
    items: list[BatchReconcileItem] = field(default_factory=list)

    @property
    def failures(self) -> list[BatchReconcileItem]:
        return [item for item in self.items if not item.result.ok]


def classify(subscriptions: list[SubscriptionRead]) -> ClassifiedSubscriptions:
    """Partition subscriptions into active, pending and cancelled buckets.

    Input order is preserved inside each bucket. A status this service does
    not recognise lands in ``pending`` so it stays visible.
    """
    buckets = ClassifiedSubscriptions()
    for subscription in subscriptions:
        status = subscription.parsed_status
        if isinstance(status, UnknownStatus):
            logger.warning(
                "Unknown status %r on subscription %s; treating as pending",
                status.raw,
                subscription.merchant_subscription_id,
            )
            buckets.pending.append(subscription)
        elif status in ACTIVE_BUCKET:
            buckets.active.append(subscription)
        elif status in PENDING_BUCKET:
            buckets.pending.append(subscription)
        elif status in CANCELLED_BUCKET:
            buckets.cancelled.append(subscription)
        else:
            logger.warning(
                "Unclassified status %s on subscription %s; treating as pending",
                status.value,
                subscription.merchant_subscription_id,
            )
            buckets.pending.append(subscription)
    return buckets


class SubscriptionLifecycleService:
    """Service for managing mandate lifecycle events against the gateway."""

    def __init__(
        self,
        gateway: GatewayClient,
        repository: SubscriptionRepository | None = None,
        debouncer: Debouncer | None = None,
        max_concurrency: int | None = None,
    ):
        self.gateway = gateway
        self.subscription_repo = repository or SubscriptionRepository()
        self.debouncer = debouncer or Debouncer(settings.reconcile_debounce_seconds)
        self.max_concurrency = max(1, max_concurrency or settings.reconcile_max_concurrency)

    async def setup(
        self,
        user_id: str,
        amount: int,
        frequency: SubscriptionFrequency = SubscriptionFrequency.MONTHLY,
        amount_type: AmountType = AmountType.FIXED,
        max_amount: int | None = None,
        auth_workflow_type: AuthWorkflowType = AuthWorkflowType.TRANSACTION,
        merchant_subscription_id: str | None = None,
    ) -> Result[SetupOutcome]:
        """Create a mandate at the gateway and cache it locally as PENDING.

        Nothing is persisted when the gateway rejects the request.
        """
        if amount <= 0:
            return Result.failure(
                ValidationError(ErrorCode.INVALID_AMOUNT, "Amount must be positive")
            )
        if max_amount is None:
            max_amount = amount
        if max_amount < amount:
            return Result.failure(
                ValidationError(
                    ErrorCode.INVALID_AMOUNT,
                    "Maximum amount must not be lower than the amount",
                    details={"amount": amount, "max_amount": max_amount},
                )
            )

        merchant_subscription_id = merchant_subscription_id or new_subscription_id()
        if self.subscription_repo.exists(merchant_subscription_id):
            return Result.failure(
                PreconditionError(
                    ErrorCode.DUPLICATE_SUBSCRIPTION,
                    f"Subscription {merchant_subscription_id} already exists",
                )
            )

        merchant_order_id = new_setup_order_id()
        now = datetime.now(UTC)
        end_date = now + timedelta(days=settings.subscription_validity_days)
        request = SetupRequest(
            merchant_order_id=merchant_order_id,
            merchant_subscription_id=merchant_subscription_id,
            amount=amount,
            max_amount=max_amount,
            amount_type=AmountType(amount_type).value,
            auth_workflow_type=AuthWorkflowType(auth_workflow_type).value,
            frequency=SubscriptionFrequency(frequency).value,
            order_expire_at=now + timedelta(seconds=settings.setup_order_ttl_seconds),
            subscription_expire_at=end_date,
            target_app=settings.setup_target_app,
        )

        try:
            response = await self.gateway.create_subscription(request)
        except GatewayError as exc:
            logger.error("Mandate setup %s failed: %s", merchant_subscription_id, exc.message)
            return Result.failure(exc)

        subscription = self.subscription_repo.upsert(
            SubscriptionUpsert(
                merchant_subscription_id=merchant_subscription_id,
                order_id=response.order_id,
                merchant_order_id=merchant_order_id,
                user_id=user_id,
                status=SubscriptionStatus.PENDING.value,
                amount=amount,
                max_amount=max_amount,
                amount_type=request.amount_type,
                auth_workflow_type=request.auth_workflow_type,
                frequency=request.frequency,
                start_date=now,
                end_date=end_date,
            )
        )
        logger.info("Created mandate %s for user %s", merchant_subscription_id, user_id)
        return Result.success(
            SetupOutcome(
                subscription=subscription,
                merchant_order_id=merchant_order_id,
                intent_url=response.intent_url,
                state=response.state,
            )
        )

    def classify(
        self, subscriptions: list[SubscriptionRead] | None = None
    ) -> ClassifiedSubscriptions:
        if subscriptions is None:
            subscriptions = self.subscription_repo.get_all()
        return classify(subscriptions)

    def list_subscriptions(self, only_active: bool = False) -> list[SubscriptionRead]:
        if only_active:
            return self.subscription_repo.get_active_only()
        return self.subscription_repo.get_all()

    def get_subscription(self, merchant_subscription_id: str) -> Result[SubscriptionRead]:
        subscription = self.subscription_repo.get(merchant_subscription_id)
        if subscription is None:
            return Result.failure(_not_found(merchant_subscription_id))
        return Result.success(subscription)

    async def reconcile_one(self, merchant_subscription_id: str) -> Result[ReconcileOutcome]:
        """Refresh one cached status from the gateway. Safe to repeat."""
        cached = self.subscription_repo.get(merchant_subscription_id)
        if cached is None:
            return Result.failure(_not_found(merchant_subscription_id))

        try:
            response = await self.gateway.get_subscription_status(merchant_subscription_id)
        except GatewayError as exc:
            logger.warning(
                "Could not reconcile subscription %s: %s", merchant_subscription_id, exc.message
            )
            return Result.failure(exc)

        reported = parse_status(response.state)
        if reported == cached.parsed_status:
            return Result.success(
                ReconcileOutcome(merchant_subscription_id, cached.parsed_status, changed=False)
            )

        updated = self.subscription_repo.update_status(merchant_subscription_id, reported)
        stored = updated.parsed_status if updated else cached.parsed_status
        return Result.success(
            ReconcileOutcome(
                merchant_subscription_id, stored, changed=stored != cached.parsed_status
            )
        )

    async def reconcile_batch(
        self, merchant_subscription_ids: list[str] | None = None
    ) -> BatchReconcileResult:
        """Reconcile many subscriptions with at most ``max_concurrency`` calls in flight.

        Defaults to every non-terminal stored subscription. A call arriving
        inside the debounce window does nothing and reports ``debounced``.
        """
        if not self.debouncer.try_acquire():
            logger.info(
                "Batch reconciliation debounced; ready in %.1fs",
                self.debouncer.seconds_until_ready(),
            )
            return BatchReconcileResult(debounced=True)

        if merchant_subscription_ids is None:
            merchant_subscription_ids = [
                s.merchant_subscription_id for s in self.subscription_repo.get_non_terminal()
            ]

        items: list[BatchReconcileItem] = []
        for start in range(0, len(merchant_subscription_ids), self.max_concurrency):
            chunk = merchant_subscription_ids[start : start + self.max_concurrency]
            results = await asyncio.gather(*(self.reconcile_one(key) for key in chunk))
            items.extend(
                BatchReconcileItem(key, result) for key, result in zip(chunk, results, strict=True)
            )

        failed = sum(1 for item in items if not item.result.ok)
        logger.info("Reconciled %d subscriptions (%d failed)", len(items), failed)
        return BatchReconcileResult(debounced=False, items=items)

    async def cancel(self, merchant_subscription_id: str) -> Result[SubscriptionRead]:
        return await self._terminate(
            merchant_subscription_id,
            "cancel",
            target=SubscriptionStatus.CANCELLED,
            in_progress=SubscriptionStatus.CANCEL_IN_PROGRESS,
        )

    async def revoke(self, merchant_subscription_id: str) -> Result[SubscriptionRead]:
        return await self._terminate(
            merchant_subscription_id,
            "revoke",
            target=SubscriptionStatus.REVOKED,
            in_progress=SubscriptionStatus.REVOKE_IN_PROGRESS,
        )

    async def pause(
        self, merchant_subscription_id: str, pause_start: datetime, pause_end: datetime
    ) -> Result[SubscriptionRead]:
        if pause_start >= pause_end:
            return Result.failure(
                ValidationError(
                    ErrorCode.INVALID_PAUSE_WINDOW,
                    "Pause start must be before pause end",
                    details={
                        "pause_start": pause_start.isoformat(),
                        "pause_end": pause_end.isoformat(),
                    },
                )
            )

        subscription = self.subscription_repo.get(merchant_subscription_id)
        error = _check_actionable(subscription, merchant_subscription_id)
        if error:
            return Result.failure(error)
        assert subscription is not None

        status = subscription.parsed_status
        if status in (SubscriptionStatus.PAUSED, SubscriptionStatus.PAUSE_IN_PROGRESS):
            return Result.success(subscription)
        if status != SubscriptionStatus.ACTIVE:
            return Result.failure(_invalid_transition(subscription, "pause"))

        try:
            state = await self.gateway.pause_subscription(
                merchant_subscription_id, pause_start, pause_end
            )
        except GatewayError as exc:
            return Result.failure(exc)

        return Result.success(
            self.subscription_repo.upsert(
                SubscriptionUpsert(
                    merchant_subscription_id=merchant_subscription_id,
                    status=parse_status(state or SubscriptionStatus.PAUSED).value,
                    pause_start=pause_start,
                    pause_end=pause_end,
                )
            )
        )

    async def unpause(self, merchant_subscription_id: str) -> Result[SubscriptionRead]:
        subscription = self.subscription_repo.get(merchant_subscription_id)
        error = _check_actionable(subscription, merchant_subscription_id)
        if error:
            return Result.failure(error)
        assert subscription is not None

        status = subscription.parsed_status
        if status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.UNPAUSE_IN_PROGRESS):
            return Result.success(subscription)
        if status != SubscriptionStatus.PAUSED:
            return Result.failure(_invalid_transition(subscription, "unpause"))

        try:
            state = await self.gateway.unpause_subscription(merchant_subscription_id)
        except GatewayError as exc:
            return Result.failure(exc)

        return Result.success(
            self.subscription_repo.upsert(
                SubscriptionUpsert(
                    merchant_subscription_id=merchant_subscription_id,
                    status=parse_status(state or SubscriptionStatus.ACTIVE).value,
                    pause_start=None,
                    pause_end=None,
                )
            )
        )

    async def _terminate(
        self,
        merchant_subscription_id: str,
        action: str,
        target: SubscriptionStatus,
        in_progress: SubscriptionStatus,
    ) -> Result[SubscriptionRead]:
        subscription = self.subscription_repo.get(merchant_subscription_id)
        if subscription is None:
            return Result.failure(_not_found(merchant_subscription_id))
        if subscription.parsed_status in (target, in_progress):
            return Result.success(subscription)
        error = _check_actionable(subscription, merchant_subscription_id)
        if error:
            return Result.failure(error)

        call = (
            self.gateway.cancel_subscription
            if action == "cancel"
            else self.gateway.revoke_subscription
        )
        try:
            state = await call(merchant_subscription_id)
        except GatewayError as exc:
            logger.error("Failed to %s subscription %s: %s", action, merchant_subscription_id, exc)
            return Result.failure(exc)

        updated = self.subscription_repo.update_status(merchant_subscription_id, state or target)
        logger.info("Subscription %s %s requested", merchant_subscription_id, action)
        return Result.success(updated or subscription)


def _not_found(merchant_subscription_id: str) -> PreconditionError:
    return PreconditionError(
        ErrorCode.SUBSCRIPTION_NOT_FOUND,
        f"Subscription {merchant_subscription_id} not found",
        details={"merchant_subscription_id": merchant_subscription_id},
    )


def _check_actionable(
    subscription: SubscriptionRead | None, merchant_subscription_id: str
) -> AutopayError | None:
    if subscription is None:
        return _not_found(merchant_subscription_id)
    if is_terminal(subscription.parsed_status):
        return PreconditionError(
            ErrorCode.SUBSCRIPTION_TERMINAL,
            f"Subscription {merchant_subscription_id} is {subscription.status}",
            details={
                "merchant_subscription_id": merchant_subscription_id,
                "status": subscription.status,
            },
        )
    return None


def _invalid_transition(subscription: SubscriptionRead, action: str) -> PreconditionError:
    return PreconditionError(
        ErrorCode.INVALID_TRANSITION,
        f"Cannot {action} a subscription in status {subscription.status}",
        details={
            "merchant_subscription_id": subscription.merchant_subscription_id,
            "status": subscription.status,
        },
    )
