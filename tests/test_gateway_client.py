"""Tests for the HTTP gateway client against a mocked transport."""

import json
from datetime import UTC, datetime

import httpx
import pytest

from autopay.core.errors import (
    ErrorAction,
    GatewayResponseError,
    GatewayTimeoutError,
    GatewayTransportError,
)
from autopay.services.gateway_client import (
    ExecuteAmbiguous,
    ExecuteCompleted,
    ExecuteFailed,
    HttpGatewayClient,
    NotifyRequest,
    SetupRequest,
    from_epoch_millis,
    to_epoch_millis,
)

TOKEN_BODY = {"access_token": "tok-123", "expires_at": 4102444800}


class Recorder:
    """Routes requests to canned handlers and keeps every request."""

    def __init__(self, routes: dict[tuple[str, str], object]):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/v1/oauth/token":
            return httpx.Response(200, json=TOKEN_BODY)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"code": "NOT_FOUND", "message": "no route"})
        if callable(handler):
            return handler(request)
        return handler  # type: ignore[return-value]

    def api_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path != "/v1/oauth/token"]


def make_client(recorder: Recorder) -> HttpGatewayClient:
    return HttpGatewayClient(
        base_url="https://gateway.test",
        client_id="client",
        client_secret="secret",
        client_version="1",
        transport=httpx.MockTransport(recorder),
    )


def raise_timeout(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadTimeout("timed out", request=request)


class TestEpochHelpers:
    def test_round_trip_millis(self):
        moment = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)
        assert from_epoch_millis(to_epoch_millis(moment)) == moment

    def test_invalid_millis(self):
        assert from_epoch_millis(None) is None
        assert from_epoch_millis("soon") is None


class TestToken:
    @pytest.mark.asyncio
    async def test_token_request_is_form_encoded(self):
        recorder = Recorder({})
        client = make_client(recorder)

        grant = await client.obtain_token()

        assert grant.access_token == "tok-123"
        assert grant.expires_at == 4102444800.0
        body = recorder.requests[0].content.decode()
        assert "grant_type=client_credentials" in body
        assert "client_id=client" in body
        assert "client_version=1" in body

    @pytest.mark.asyncio
    async def test_missing_expiry_uses_default_ttl(self):
        def token(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "abc"})

        client = HttpGatewayClient(
            base_url="https://gateway.test",
            transport=httpx.MockTransport(token),
        )
        grant = await client.obtain_token()
        assert grant.expires_at > datetime.now(UTC).timestamp()

    @pytest.mark.asyncio
    async def test_token_rejected(self):
        def token(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"message": "bad client"})

        client = HttpGatewayClient(
            base_url="https://gateway.test",
            transport=httpx.MockTransport(token),
        )
        with pytest.raises(GatewayResponseError) as exc_info:
            await client.obtain_token()
        assert exc_info.value.code == "GATEWAY_UNAUTHORIZED"


class TestSubscriptionCalls:
    @pytest.mark.asyncio
    async def test_create_subscription_payload(self):
        recorder = Recorder(
            {
                ("POST", "/subscriptions/v2/setup"): httpx.Response(
                    200, json={"orderId": "OMO1", "state": "PENDING", "intentUrl": "upi://pay"}
                )
            }
        )
        client = make_client(recorder)
        request = SetupRequest(
            merchant_order_id="MO1",
            merchant_subscription_id="MS1",
            amount=10000,
            max_amount=20000,
            amount_type="FIXED",
            auth_workflow_type="TRANSACTION",
            frequency="MONTHLY",
            order_expire_at=datetime(2025, 1, 1, tzinfo=UTC),
            subscription_expire_at=datetime(2030, 1, 1, tzinfo=UTC),
        )

        response = await client.create_subscription(request)

        assert response.order_id == "OMO1"
        assert response.intent_url == "upi://pay"
        sent = recorder.api_requests()[0]
        assert sent.headers["Authorization"] == "O-Bearer tok-123"
        payload = json.loads(sent.content)
        assert payload["merchantOrderId"] == "MO1"
        assert payload["paymentFlow"]["type"] == "SUBSCRIPTION_SETUP"
        assert payload["paymentFlow"]["merchantSubscriptionId"] == "MS1"
        assert payload["paymentFlow"]["maxAmount"] == 20000
        assert payload["paymentFlow"]["paymentMode"]["type"] == "UPI_INTENT"
        assert payload["expireAt"] == 1735689600000

    @pytest.mark.asyncio
    async def test_intent_url_falls_back_to_redirect_info(self):
        recorder = Recorder(
            {
                ("POST", "/subscriptions/v2/setup"): httpx.Response(
                    200, json={"orderId": "OMO1", "redirectInfo": {"url": "https://pay"}}
                )
            }
        )
        request = SetupRequest(
            merchant_order_id="MO1",
            merchant_subscription_id="MS1",
            amount=100,
            max_amount=100,
            amount_type="FIXED",
            auth_workflow_type="TRANSACTION",
            frequency="DAILY",
            order_expire_at=datetime(2025, 1, 1, tzinfo=UTC),
            subscription_expire_at=datetime(2030, 1, 1, tzinfo=UTC),
        )
        response = await make_client(recorder).create_subscription(request)
        assert response.intent_url == "https://pay"

    @pytest.mark.asyncio
    async def test_status(self):
        recorder = Recorder(
            {
                ("GET", "/subscriptions/v2/MS1/status"): httpx.Response(
                    200, json={"merchantSubscriptionId": "MS1", "state": "ACTIVE"}
                )
            }
        )
        client = make_client(recorder)

        status = await client.get_subscription_status("MS1")

        assert status.state == "ACTIVE"
        assert recorder.api_requests()[0].url.params["details"] == "true"

    @pytest.mark.asyncio
    async def test_status_without_state_is_invalid(self):
        recorder = Recorder({("GET", "/subscriptions/v2/MS1/status"): httpx.Response(200)})
        with pytest.raises(GatewayResponseError) as exc_info:
            await make_client(recorder).get_subscription_status("MS1")
        assert exc_info.value.code == "INVALID_GATEWAY_RESPONSE"

    @pytest.mark.asyncio
    async def test_cancel_no_content(self):
        recorder = Recorder({("POST", "/subscriptions/v2/MS1/cancel"): httpx.Response(204)})
        assert await make_client(recorder).cancel_subscription("MS1") is None

    @pytest.mark.asyncio
    async def test_pause_sends_window(self):
        recorder = Recorder(
            {("POST", "/subscriptions/v2/MS1/pause"): httpx.Response(200, json={"state": "PAUSED"})}
        )
        state = await make_client(recorder).pause_subscription(
            "MS1", datetime(2025, 1, 1, tzinfo=UTC), datetime(2025, 2, 1, tzinfo=UTC)
        )
        assert state == "PAUSED"
        payload = json.loads(recorder.api_requests()[0].content)
        assert payload == {"pauseStartDate": 1735689600000, "pauseEndDate": 1738368000000}

    @pytest.mark.asyncio
    async def test_error_body_code_is_surfaced(self):
        recorder = Recorder(
            {
                ("POST", "/subscriptions/v2/MS1/revoke"): httpx.Response(
                    400, json={"code": "INVALID_STATE", "message": "already revoked"}
                )
            }
        )
        with pytest.raises(GatewayResponseError) as exc_info:
            await make_client(recorder).revoke_subscription("MS1")
        assert exc_info.value.code == "INVALID_STATE"
        assert exc_info.value.status_code == 400
        assert exc_info.value.action == ErrorAction.TERMINAL

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self):
        recorder = Recorder({("POST", "/subscriptions/v2/MS1/unpause"): httpx.Response(503)})
        with pytest.raises(GatewayResponseError) as exc_info:
            await make_client(recorder).unpause_subscription("MS1")
        assert exc_info.value.action == ErrorAction.RETRY

    @pytest.mark.asyncio
    async def test_timeout_is_typed(self):
        recorder = Recorder({("GET", "/subscriptions/v2/MS1/status"): raise_timeout})
        with pytest.raises(GatewayTimeoutError):
            await make_client(recorder).get_subscription_status("MS1")

    @pytest.mark.asyncio
    async def test_connect_error_is_typed(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = HttpGatewayClient(
            base_url="https://gateway.test", transport=httpx.MockTransport(refuse)
        )
        with pytest.raises(GatewayTransportError) as exc_info:
            await client.get_subscription_status("MS1")
        assert exc_info.value.code == "GATEWAY_UNREACHABLE"

    @pytest.mark.asyncio
    async def test_unauthorized_invalidates_token(self):
        recorder = Recorder(
            {("GET", "/subscriptions/v2/MS1/status"): lambda request: httpx.Response(401)}
        )
        client = make_client(recorder)

        for _ in range(2):
            with pytest.raises(GatewayResponseError):
                await client.get_subscription_status("MS1")

        token_requests = [r for r in recorder.requests if r.url.path == "/v1/oauth/token"]
        assert len(token_requests) == 2


class TestRedemptionCalls:
    @pytest.mark.asyncio
    async def test_notify_payload(self):
        recorder = Recorder(
            {
                ("POST", "/subscriptions/v2/notify"): httpx.Response(
                    200,
                    json={"orderId": "OMO9", "state": "NOTIFIED", "expireAt": 1735689600000},
                )
            }
        )
        response = await make_client(recorder).notify_redemption(
            NotifyRequest(
                merchant_order_id="RO1",
                merchant_subscription_id="MS1",
                amount=5000,
                expire_at=datetime(2025, 1, 1, tzinfo=UTC),
                auto_debit=True,
                meta_info={"udf1": "gold"},
            )
        )
        assert response.order_id == "OMO9"
        assert response.expire_at == datetime(2025, 1, 1, tzinfo=UTC)
        payload = json.loads(recorder.api_requests()[0].content)
        assert payload["paymentFlow"] == {
            "type": "SUBSCRIPTION_REDEMPTION",
            "merchantSubscriptionId": "MS1",
            "redemptionRetryStrategy": "STANDARD",
            "autoDebit": True,
        }
        assert payload["metaInfo"] == {"udf1": "gold"}

    @pytest.mark.asyncio
    async def test_execute_completed(self):
        recorder = Recorder(
            {
                ("POST", "/subscriptions/v2/redeem"): httpx.Response(
                    200, json={"state": "COMPLETED", "transactionId": "TX1"}
                )
            }
        )
        outcome = await make_client(recorder).execute_redemption("RO1")
        assert outcome == ExecuteCompleted(state="COMPLETED", transaction_id="TX1")
        assert json.loads(recorder.api_requests()[0].content) == {"merchantOrderId": "RO1"}

    @pytest.mark.asyncio
    async def test_execute_timeout_is_ambiguous(self):
        recorder = Recorder({("POST", "/subscriptions/v2/redeem"): raise_timeout})
        outcome = await make_client(recorder).execute_redemption("RO1")
        assert isinstance(outcome, ExecuteAmbiguous)
        assert outcome.reason == "timeout"

    @pytest.mark.asyncio
    async def test_execute_order_not_found_is_ambiguous(self):
        recorder = Recorder(
            {
                ("POST", "/subscriptions/v2/redeem"): httpx.Response(
                    404, json={"code": "ORDER_NOT_FOUND", "message": "unknown order"}
                )
            }
        )
        outcome = await make_client(recorder).execute_redemption("RO1")
        assert isinstance(outcome, ExecuteAmbiguous)
        assert outcome.reason == "order_not_found"

    @pytest.mark.asyncio
    async def test_execute_empty_body_is_ambiguous(self):
        recorder = Recorder({("POST", "/subscriptions/v2/redeem"): httpx.Response(200)})
        outcome = await make_client(recorder).execute_redemption("RO1")
        assert isinstance(outcome, ExecuteAmbiguous)
        assert outcome.reason == "empty_response"

    @pytest.mark.asyncio
    async def test_execute_rejection_is_failed(self):
        recorder = Recorder(
            {
                ("POST", "/subscriptions/v2/redeem"): httpx.Response(
                    400, json={"code": "SUBSCRIPTION_NOT_ACTIVE", "message": "paused"}
                )
            }
        )
        outcome = await make_client(recorder).execute_redemption("RO1")
        assert isinstance(outcome, ExecuteFailed)
        assert outcome.error.code == "SUBSCRIPTION_NOT_ACTIVE"

    @pytest.mark.asyncio
    async def test_order_status_reads_first_payment(self):
        recorder = Recorder(
            {
                ("GET", "/subscriptions/v2/order/RO1/status"): httpx.Response(
                    200,
                    json={
                        "orderId": "OMO1",
                        "state": "FAILED",
                        "amount": 5000,
                        "errorCode": "PAYMENT_FAILED",
                        "detailedErrorCode": "INSUFFICIENT_FUNDS",
                        "paymentDetails": [{"transactionId": "TX9"}, {"transactionId": "TX10"}],
                    },
                )
            }
        )
        status = await make_client(recorder).get_order_status("RO1")
        assert status.state == "FAILED"
        assert status.transaction_id == "TX9"
        assert status.error_code == "PAYMENT_FAILED"
        assert status.detailed_error_code == "INSUFFICIENT_FUNDS"
