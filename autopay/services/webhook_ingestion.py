"""Inbound gateway webhooks: authentication, parsing and store updates."""

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from autopay.core.config import settings
from autopay.core.errors import ErrorCode, Result, ValidationError
from autopay.models.redemption_order import RedemptionState, parse_redemption_state
from autopay.models.subscription import SubscriptionStatus
from autopay.repositories.redemption_order_repository import RedemptionOrderRepository
from autopay.repositories.subscription_repository import SubscriptionRepository
from autopay.schemas.redemption import RedemptionOrderUpdate
from autopay.schemas.subscription import SubscriptionUpsert
from autopay.schemas.webhook import WebhookEvent, WebhookResponse

logger = logging.getLogger(__name__)

NOTIFICATION_EVENTS = frozenset(
    {"SUBSCRIPTION_NOTIFICATION_COMPLETED", "SUBSCRIPTION_NOTIFICATION_FAILED"}
)
REDEMPTION_COMPLETED_EVENTS = frozenset(
    {
        "SUBSCRIPTION_REDEMPTION_ORDER_COMPLETED",
        "SUBSCRIPTION_REDEMPTION_TRANSACTION_COMPLETED",
    }
)
REDEMPTION_FAILED_EVENTS = frozenset(
    {
        "SUBSCRIPTION_REDEMPTION_ORDER_FAILED",
        "SUBSCRIPTION_REDEMPTION_TRANSACTION_FAILED",
    }
)
# The payload state describes the event's order, not the mandate, so the
# resulting subscription status follows from the event type.
EVENT_SUBSCRIPTION_STATUS = {
    "SUBSCRIPTION_PAUSED": SubscriptionStatus.PAUSED,
    "SUBSCRIPTION_UNPAUSED": SubscriptionStatus.ACTIVE,
    "SUBSCRIPTION_REVOKED": SubscriptionStatus.REVOKED,
    "SUBSCRIPTION_CANCELLED": SubscriptionStatus.CANCELLED,
    "SUBSCRIPTION_SETUP_ORDER_COMPLETED": SubscriptionStatus.ACTIVE,
    "SUBSCRIPTION_SETUP_ORDER_FAILED": SubscriptionStatus.FAILED,
}
SUBSCRIPTION_STATE_EVENTS = frozenset(EVENT_SUBSCRIPTION_STATUS)

EVENT_MESSAGES = {
    "SUBSCRIPTION_NOTIFICATION_COMPLETED": "Notification completed successfully",
    "SUBSCRIPTION_NOTIFICATION_FAILED": "Notification failed",
    "SUBSCRIPTION_REDEMPTION_ORDER_COMPLETED": "Redemption order completed successfully",
    "SUBSCRIPTION_REDEMPTION_ORDER_FAILED": "Redemption order failed",
    "SUBSCRIPTION_REDEMPTION_TRANSACTION_COMPLETED": "Redemption transaction completed",
    "SUBSCRIPTION_REDEMPTION_TRANSACTION_FAILED": "Redemption transaction failed",
    "SUBSCRIPTION_PAUSED": "Subscription paused successfully",
    "SUBSCRIPTION_UNPAUSED": "Subscription unpaused successfully",
    "SUBSCRIPTION_REVOKED": "Subscription revoked by user",
    "SUBSCRIPTION_CANCELLED": "Subscription cancelled",
}


@dataclass
class WebhookApplyOutcome:
    applied: bool
    message: str
    extras: dict[str, Any] = field(default_factory=dict)


def expected_credential(username: str, password: str) -> str:
    """Hex SHA-256 of ``username:password``, as the gateway sends it."""
    return hashlib.sha256(f"{username}:{password}".encode()).hexdigest()


def _epoch_millis_to_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=UTC)
    except (TypeError, ValueError, OverflowError):
        return None


class WebhookIngestionService:
    """Applies gateway callbacks to the local stores, independent of polling."""

    def __init__(
        self,
        subscription_repository: SubscriptionRepository | None = None,
        order_repository: RedemptionOrderRepository | None = None,
        username: str | None = None,
        password: str | None = None,
        allow_unauthenticated: bool | None = None,
    ):
        self.subscription_repo = subscription_repository or SubscriptionRepository()
        self.order_repo = order_repository or RedemptionOrderRepository()
        self.username = username if username is not None else settings.webhook_username
        self.password = password if password is not None else settings.webhook_password
        self.allow_unauthenticated = (
            settings.webhook_allow_unauthenticated
            if allow_unauthenticated is None
            else allow_unauthenticated
        )

    def authenticate(self, auth_header: str | None) -> bool:
        """Check the Authorization header against the configured credentials.

        Without configured credentials every request is rejected, unless
        unauthenticated webhooks have been explicitly allowed.
        """
        if not auth_header:
            logger.warning("Webhook rejected: missing Authorization header")
            return False

        if not self.username or not self.password:
            if self.allow_unauthenticated:
                logger.warning(
                    "Webhook credentials are not configured; accepting UNAUTHENTICATED webhook"
                )
                return True
            logger.error("Webhook rejected: credentials are not configured")
            return False

        expected = expected_credential(self.username, self.password)
        received = auth_header.strip().lower()
        if not hmac.compare_digest(expected.encode(), received.encode()):
            logger.warning("Webhook rejected: credential mismatch")
            return False
        return True

    def parse(self, raw: Any) -> Result[WebhookEvent]:
        if not isinstance(raw, dict):
            return Result.failure(_invalid("Webhook body must be a JSON object"))

        event_type = raw.get("type") or raw.get("event")
        payload = raw.get("payload")
        if not event_type or not isinstance(event_type, str):
            return Result.failure(_invalid("Webhook event type is missing"))
        if not isinstance(payload, dict):
            return Result.failure(_invalid("Webhook payload is missing"))

        state = payload.get("state")
        if not state or not isinstance(state, str):
            return Result.failure(_invalid("Webhook payload has no state"))

        payment_flow = payload.get("paymentFlow")
        merchant_subscription_id = payload.get("merchantSubscriptionId")
        if not merchant_subscription_id and isinstance(payment_flow, dict):
            merchant_subscription_id = payment_flow.get("merchantSubscriptionId")
        if not merchant_subscription_id:
            return Result.failure(_invalid("Webhook payload has no merchant subscription id"))

        return Result.success(
            WebhookEvent(
                event_type=event_type,
                merchant_subscription_id=str(merchant_subscription_id),
                state=state,
                merchant_order_id=payload.get("merchantOrderId"),
                payload=payload,
            )
        )

    def apply(self, event: WebhookEvent) -> Result[WebhookApplyOutcome]:
        event_type = event.event_type
        message = EVENT_MESSAGES.get(event_type, f"Processed webhook event: {event_type}")
        extras: dict[str, Any] = {}
        logger.info(
            "Processing %s webhook for subscription %s (state %s)",
            event_type,
            event.merchant_subscription_id,
            event.state,
        )

        if event_type in NOTIFICATION_EVENTS:
            applied = self._update_order(event)
            return Result.success(WebhookApplyOutcome(applied, message))

        if event_type in REDEMPTION_COMPLETED_EVENTS or event_type in REDEMPTION_FAILED_EVENTS:
            # Only the order changes; a debit says nothing about the mandate's status.
            applied = self._update_order(event)
            if event_type in REDEMPTION_COMPLETED_EVENTS:
                extras = {
                    "merchantSubscriptionId": event.merchant_subscription_id,
                    "state": event.state,
                    "transactionDetails": _first_payment(event.payload),
                }
            else:
                extras = {
                    "merchantSubscriptionId": event.merchant_subscription_id,
                    "state": event.state,
                    "errorCode": event.payload.get("errorCode"),
                    "detailedErrorCode": event.payload.get("detailedErrorCode"),
                }
            return Result.success(WebhookApplyOutcome(applied, message, extras))

        if event_type in SUBSCRIPTION_STATE_EVENTS:
            data = SubscriptionUpsert(
                merchant_subscription_id=event.merchant_subscription_id,
                status=EVENT_SUBSCRIPTION_STATUS[event_type].value,
            )
            if event_type == "SUBSCRIPTION_PAUSED":
                data.pause_start = _epoch_millis_to_datetime(event.payload.get("pauseStartDate"))
                data.pause_end = _epoch_millis_to_datetime(event.payload.get("pauseEndDate"))
                extras = {
                    "pauseStartDate": data.pause_start.isoformat() if data.pause_start else None,
                    "pauseEndDate": data.pause_end.isoformat() if data.pause_end else None,
                }
            elif event_type == "SUBSCRIPTION_UNPAUSED":
                data.pause_start = None
                data.pause_end = None

            if not self.subscription_repo.exists(event.merchant_subscription_id):
                logger.warning(
                    "Ignoring %s for unknown subscription %s",
                    event_type,
                    event.merchant_subscription_id,
                )
                return Result.success(WebhookApplyOutcome(False, message, extras))

            self.subscription_repo.upsert(data)
            return Result.success(WebhookApplyOutcome(True, message, extras))

        logger.warning("Ignoring unknown webhook event type %s", event_type)
        return Result.success(WebhookApplyOutcome(False, message))

    def process(self, body: Any, auth_header: str | None) -> WebhookResponse:
        """Authenticate, parse and apply one webhook, producing the HTTP reply."""
        if not self.authenticate(auth_header):
            return WebhookResponse(
                status_code=401,
                body={"success": False, "message": "Invalid webhook data or authentication"},
            )

        parsed = self.parse(body)
        if not parsed.ok:
            assert parsed.error is not None
            logger.warning("Invalid webhook payload: %s", parsed.error.message)
            return WebhookResponse(
                status_code=400,
                body={"success": False, "message": parsed.error.message},
            )
        event = parsed.unwrap()

        try:
            outcome = self.apply(event).unwrap()
        except SQLAlchemyError:
            logger.exception("Failed to apply %s webhook", event.event_type)
            return WebhookResponse(
                status_code=500,
                body={"success": False, "message": "Failed to process webhook"},
            )

        return WebhookResponse(
            status_code=200,
            body={
                "success": True,
                "message": outcome.message,
                "merchantSubscriptionId": event.merchant_subscription_id,
                "eventType": event.event_type,
                "state": event.state,
                **outcome.extras,
            },
        )

    def _update_order(self, event: WebhookEvent) -> bool:
        if not event.merchant_order_id:
            return False
        state = parse_redemption_state(event.state)
        if event.event_type == "SUBSCRIPTION_NOTIFICATION_COMPLETED" and state not in (
            RedemptionState.NOTIFIED,
            RedemptionState.COMPLETED,
        ):
            state = RedemptionState.NOTIFIED
        update = RedemptionOrderUpdate(state=state)
        payment = _first_payment(event.payload)
        if payment.get("transactionId"):
            update.transaction_id = payment["transactionId"]
        if event.payload.get("orderId"):
            update.gateway_order_id = event.payload["orderId"]
        if event.payload.get("errorCode"):
            update.error_code = event.payload["errorCode"]
            update.detailed_error_code = event.payload.get("detailedErrorCode")

        order = self.order_repo.update(event.merchant_order_id, update)
        if order is None:
            logger.warning(
                "Ignoring %s for unknown redemption order %s",
                event.event_type,
                event.merchant_order_id,
            )
            return False
        return True


def _first_payment(payload: dict[str, Any]) -> dict[str, Any]:
    details = payload.get("paymentDetails") or []
    first = details[0] if details else {}
    return first if isinstance(first, dict) else {}


def _invalid(message: str) -> ValidationError:
    return ValidationError(ErrorCode.INVALID_WEBHOOK_PAYLOAD, message)
