"""Payment gateway abstraction for recurring mandates.

`GatewayClient` is the seam the orchestrators depend on. `HttpGatewayClient`
talks to the gateway's subscriptions v2 API over httpx and normalizes its
responses into the dataclasses below. Failures are raised as
:class:`~autopay.core.errors.GatewayError` subclasses, except for redemption
execution, whose outcome is returned as an explicit union so that an
ambiguous result cannot be mistaken for a failure.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx

from autopay.core.config import settings
from autopay.core.errors import (
    ErrorAction,
    ErrorCode,
    GatewayError,
    GatewayResponseError,
    GatewayTimeoutError,
    GatewayTransportError,
)
from autopay.services.token_provider import TokenGrant, TokenProvider

logger = logging.getLogger(__name__)


@dataclass
class SetupRequest:
    merchant_order_id: str
    merchant_subscription_id: str
    amount: int
    max_amount: int
    amount_type: str
    auth_workflow_type: str
    frequency: str
    order_expire_at: datetime
    subscription_expire_at: datetime
    target_app: str = "com.phonepe.app"


@dataclass
class SetupResponse:
    order_id: str | None
    state: str | None
    intent_url: str | None


@dataclass
class SubscriptionStatusResponse:
    merchant_subscription_id: str
    state: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class NotifyRequest:
    merchant_order_id: str
    merchant_subscription_id: str
    amount: int
    expire_at: datetime
    retry_strategy: str = "STANDARD"
    auto_debit: bool = False
    meta_info: dict[str, Any] | None = None


@dataclass
class NotifyResponse:
    order_id: str | None
    state: str | None
    expire_at: datetime | None


@dataclass
class OrderStatusResponse:
    merchant_order_id: str
    state: str
    order_id: str | None = None
    amount: int | None = None
    transaction_id: str | None = None
    error_code: str | None = None
    detailed_error_code: str | None = None


@dataclass
class ExecuteCompleted:
    """The gateway accepted the execute call and reported a state."""

    state: str
    transaction_id: str | None = None


@dataclass
class ExecuteFailed:
    """The gateway definitively rejected the execute call."""

    error: GatewayError


@dataclass
class ExecuteAmbiguous:
    """No usable answer; the order status must be checked before concluding anything."""

    reason: str
    error: GatewayError | None = None


ExecuteOutcome = ExecuteCompleted | ExecuteFailed | ExecuteAmbiguous


class GatewayClient(ABC):
    """Abstract base class for mandate gateways."""

    @abstractmethod
    async def obtain_token(self) -> TokenGrant:
        pass  # pragma: no cover

    @abstractmethod
    async def create_subscription(self, request: SetupRequest) -> SetupResponse:
        pass  # pragma: no cover

    @abstractmethod
    async def get_subscription_status(
        self, merchant_subscription_id: str
    ) -> SubscriptionStatusResponse:
        pass  # pragma: no cover

    @abstractmethod
    async def cancel_subscription(self, merchant_subscription_id: str) -> str | None:
        """Cancel a mandate. Returns the reported state, if the gateway sent one."""
        pass  # pragma: no cover

    @abstractmethod
    async def pause_subscription(
        self, merchant_subscription_id: str, pause_start: datetime, pause_end: datetime
    ) -> str | None:
        pass  # pragma: no cover

    @abstractmethod
    async def unpause_subscription(self, merchant_subscription_id: str) -> str | None:
        pass  # pragma: no cover

    @abstractmethod
    async def revoke_subscription(self, merchant_subscription_id: str) -> str | None:
        pass  # pragma: no cover

    @abstractmethod
    async def notify_redemption(self, request: NotifyRequest) -> NotifyResponse:
        pass  # pragma: no cover

    @abstractmethod
    async def execute_redemption(self, merchant_order_id: str) -> ExecuteOutcome:
        """Ask the gateway to debit a notified order. Never raises GatewayError."""
        pass  # pragma: no cover

    @abstractmethod
    async def get_order_status(self, merchant_order_id: str) -> OrderStatusResponse:
        pass  # pragma: no cover


def to_epoch_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)


def from_epoch_millis(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=UTC)
    except (TypeError, ValueError):
        return None


class HttpGatewayClient(GatewayClient):
    """Gateway client over HTTP using the subscriptions v2 API."""

    def __init__(
        self,
        base_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        client_version: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        token_provider: TokenProvider | None = None,
    ):
        self.base_url = (base_url or settings.gateway_base_url).rstrip("/")
        self.client_id = client_id if client_id is not None else settings.gateway_client_id
        self.client_secret = (
            client_secret if client_secret is not None else settings.gateway_client_secret
        )
        self.client_version = client_version or settings.gateway_client_version
        self._timeout = timeout if timeout is not None else settings.gateway_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.tokens = token_provider or TokenProvider(self.obtain_token)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, timeout=self._timeout, transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        try:
            return await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("Gateway %s %s timed out", method, path)
            raise GatewayTimeoutError(f"Gateway request timed out: {exc}") from exc
        except httpx.ConnectError as exc:
            logger.warning("Gateway %s %s unreachable: %s", method, path, exc)
            raise GatewayTransportError(f"Gateway unreachable: {exc}") from exc
        except httpx.HTTPError as exc:
            logger.warning("Gateway %s %s failed: %s", method, path, exc)
            raise GatewayTransportError(
                f"Gateway request failed: {exc}", code=ErrorCode.GATEWAY_ERROR
            ) from exc

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Send an authorized request and return the decoded body (None when empty)."""
        token = await self.tokens.get_valid_token()
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"O-Bearer {token}",
        }
        resp = await self._send(method, path, json=json, params=params, headers=headers)

        if resp.status_code == 401:
            self.tokens.invalidate()
        if not 200 <= resp.status_code < 300:
            raise _response_error(resp)
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            body = resp.json()
        except ValueError as exc:
            raise GatewayResponseError(
                ErrorCode.INVALID_GATEWAY_RESPONSE.value,
                "Gateway returned a non-JSON body",
                status_code=resp.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise GatewayResponseError(
                ErrorCode.INVALID_GATEWAY_RESPONSE.value,
                "Gateway returned an unexpected body",
                status_code=resp.status_code,
            )
        return body

    async def obtain_token(self) -> TokenGrant:
        resp = await self._send(
            "POST",
            "/v1/oauth/token",
            data={
                "client_id": self.client_id,
                "client_version": self.client_version,
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if not 200 <= resp.status_code < 300:
            raise _response_error(resp, default_code=ErrorCode.GATEWAY_UNAUTHORIZED.value)
        try:
            body = resp.json()
        except ValueError as exc:
            raise GatewayResponseError(
                ErrorCode.INVALID_GATEWAY_RESPONSE.value,
                "Token endpoint returned a non-JSON body",
                status_code=resp.status_code,
            ) from exc
        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not access_token:
            raise GatewayResponseError(
                ErrorCode.GATEWAY_UNAUTHORIZED.value,
                "Token endpoint returned no access token",
                status_code=resp.status_code,
            )
        expires_at = body.get("expires_at")
        if not expires_at:
            expires_at = datetime.now(UTC).timestamp() + settings.gateway_token_default_ttl_seconds
        return TokenGrant(access_token=access_token, expires_at=float(expires_at))

    async def create_subscription(self, request: SetupRequest) -> SetupResponse:
        payload = {
            "merchantOrderId": request.merchant_order_id,
            "amount": request.amount,
            "expireAt": to_epoch_millis(request.order_expire_at),
            "paymentFlow": {
                "type": "SUBSCRIPTION_SETUP",
                "merchantSubscriptionId": request.merchant_subscription_id,
                "authWorkflowType": request.auth_workflow_type,
                "amountType": request.amount_type,
                "maxAmount": request.max_amount,
                "frequency": request.frequency,
                "expireAt": to_epoch_millis(request.subscription_expire_at),
                "paymentMode": {
                    "type": "UPI_INTENT",
                    "details": {"targetApp": request.target_app},
                },
            },
            "deviceContext": {"deviceOS": "ANDROID"},
        }
        body = await self._request("POST", "/subscriptions/v2/setup", json=payload) or {}
        intent_url = body.get("intentUrl") or (body.get("redirectInfo") or {}).get("url")
        return SetupResponse(
            order_id=body.get("orderId"), state=body.get("state"), intent_url=intent_url
        )

    async def get_subscription_status(
        self, merchant_subscription_id: str
    ) -> SubscriptionStatusResponse:
        body = await self._request(
            "GET",
            f"/subscriptions/v2/{merchant_subscription_id}/status",
            params={"details": "true"},
        )
        if not body or not body.get("state"):
            raise GatewayResponseError(
                ErrorCode.INVALID_GATEWAY_RESPONSE.value,
                "Subscription status response carried no state",
                details={"merchant_subscription_id": merchant_subscription_id},
            )
        return SubscriptionStatusResponse(
            merchant_subscription_id=merchant_subscription_id,
            state=str(body["state"]),
            details=body,
        )

    async def _subscription_action(
        self, merchant_subscription_id: str, action: str, json: dict[str, Any] | None = None
    ) -> str | None:
        body = await self._request(
            "POST", f"/subscriptions/v2/{merchant_subscription_id}/{action}", json=json
        )
        return body.get("state") if body else None

    async def cancel_subscription(self, merchant_subscription_id: str) -> str | None:
        return await self._subscription_action(merchant_subscription_id, "cancel")

    async def pause_subscription(
        self, merchant_subscription_id: str, pause_start: datetime, pause_end: datetime
    ) -> str | None:
        return await self._subscription_action(
            merchant_subscription_id,
            "pause",
            json={
                "pauseStartDate": to_epoch_millis(pause_start),
                "pauseEndDate": to_epoch_millis(pause_end),
            },
        )

    async def unpause_subscription(self, merchant_subscription_id: str) -> str | None:
        return await self._subscription_action(merchant_subscription_id, "unpause")

    async def revoke_subscription(self, merchant_subscription_id: str) -> str | None:
        return await self._subscription_action(merchant_subscription_id, "revoke")

    async def notify_redemption(self, request: NotifyRequest) -> NotifyResponse:
        payload = {
            "merchantOrderId": request.merchant_order_id,
            "amount": request.amount,
            "expireAt": to_epoch_millis(request.expire_at),
            "metaInfo": request.meta_info or {},
            "paymentFlow": {
                "type": "SUBSCRIPTION_REDEMPTION",
                "merchantSubscriptionId": request.merchant_subscription_id,
                "redemptionRetryStrategy": request.retry_strategy,
                "autoDebit": request.auto_debit,
            },
        }
        body = await self._request("POST", "/subscriptions/v2/notify", json=payload) or {}
        return NotifyResponse(
            order_id=body.get("orderId"),
            state=body.get("state"),
            expire_at=from_epoch_millis(body.get("expireAt")),
        )

    async def execute_redemption(self, merchant_order_id: str) -> ExecuteOutcome:
        try:
            body = await self._request(
                "POST", "/subscriptions/v2/redeem", json={"merchantOrderId": merchant_order_id}
            )
        except GatewayTimeoutError as exc:
            return ExecuteAmbiguous(reason="timeout", error=exc)
        except GatewayResponseError as exc:
            if exc.code == ErrorCode.ORDER_NOT_FOUND.value:
                return ExecuteAmbiguous(reason="order_not_found", error=exc)
            if exc.status_code is not None and exc.status_code >= 500:
                return ExecuteAmbiguous(reason="server_error", error=exc)
            return ExecuteFailed(error=exc)
        except GatewayTransportError as exc:
            if exc.code == ErrorCode.GATEWAY_UNREACHABLE.value:
                # Connection never established, so the debit was not requested.
                return ExecuteFailed(error=exc)
            return ExecuteAmbiguous(reason="transport", error=exc)

        if not body or not body.get("state"):
            return ExecuteAmbiguous(reason="empty_response")
        return ExecuteCompleted(state=str(body["state"]), transaction_id=body.get("transactionId"))

    async def get_order_status(self, merchant_order_id: str) -> OrderStatusResponse:
        body = await self._request(
            "GET",
            f"/subscriptions/v2/order/{merchant_order_id}/status",
            params={"details": "true"},
        )
        if not body or not body.get("state"):
            raise GatewayResponseError(
                ErrorCode.INVALID_GATEWAY_RESPONSE.value,
                "Empty response from order status API",
                details={"merchant_order_id": merchant_order_id},
            )
        payment_details = body.get("paymentDetails") or []
        first_payment = payment_details[0] if payment_details else {}
        return OrderStatusResponse(
            merchant_order_id=merchant_order_id,
            state=str(body["state"]),
            order_id=body.get("orderId"),
            amount=body.get("amount"),
            transaction_id=first_payment.get("transactionId"),
            error_code=body.get("errorCode"),
            detailed_error_code=body.get("detailedErrorCode"),
        )


def _response_error(resp: httpx.Response, default_code: str | None = None) -> GatewayResponseError:
    """Build a typed error from a non-2xx gateway response."""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        body = {}

    if resp.status_code == 401:
        code = ErrorCode.GATEWAY_UNAUTHORIZED.value
    else:
        code = body.get("code") or default_code or ErrorCode.GATEWAY_ERROR.value
    message = body.get("message") or f"Gateway returned HTTP {resp.status_code}"
    retryable = resp.status_code >= 500 or resp.status_code == 401
    action = ErrorAction.RETRY if retryable else ErrorAction.TERMINAL
    logger.error("Gateway error %s (HTTP %s): %s", code, resp.status_code, message)
    return GatewayResponseError(
        code, message, status_code=resp.status_code, details=body, action=action
    )
