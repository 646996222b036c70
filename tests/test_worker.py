"""Tests for worker background tasks."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from autopay.core.errors import GatewayTimeoutError
from autopay.core.rate_limiter import Debouncer
from autopay.models.redemption_order import RedemptionState
from autopay.repositories.redemption_order_repository import RedemptionOrderRepository
from autopay.schemas.redemption import RedemptionOrderCreate
from autopay.services.gateway_client import HttpGatewayClient, OrderStatusResponse
from autopay.services.redemption_service import RedemptionService
from autopay.services.subscription_lifecycle import SubscriptionLifecycleService
from autopay.worker import (
    WorkerSettings,
    check_redemption_status_task,
    reconcile_subscription_task,
    reconcile_subscriptions_task,
    shutdown,
    startup,
)
from tests.conftest import make_subscription


@pytest.fixture
def lifecycle(gateway):
    return SubscriptionLifecycleService(gateway, debouncer=Debouncer(60.0), max_concurrency=2)


class TestReconcileSubscriptionsTask:
    """Tests for the reconcile_subscriptions_task worker function."""

    @pytest.mark.asyncio
    async def test_returns_changed_count(self, gateway, lifecycle):
        """Test that the task reports how many cached statuses moved."""
        make_subscription("MS1", status="PENDING")
        make_subscription("MS2", status="PENDING")
        make_subscription("MS3", status="ACTIVE")
        gateway.states.update({"MS1": "ACTIVE", "MS2": "PENDING", "MS3": "ACTIVE"})

        with patch("autopay.worker.get_lifecycle_service", return_value=lifecycle):
            result = await reconcile_subscriptions_task({})

        assert result == 1

    @pytest.mark.asyncio
    async def test_failures_are_not_counted(self, gateway, lifecycle):
        make_subscription("MS1", status="PENDING")
        gateway.status_errors["MS1"] = GatewayTimeoutError("slow")

        with patch("autopay.worker.get_lifecycle_service", return_value=lifecycle):
            result = await reconcile_subscriptions_task({})

        assert result == 0

    @pytest.mark.asyncio
    async def test_debounced_run_returns_zero(self, gateway, lifecycle):
        """Test that a second run inside the window does nothing."""
        make_subscription("MS1", status="PENDING")
        gateway.states["MS1"] = "ACTIVE"

        with patch("autopay.worker.get_lifecycle_service", return_value=lifecycle):
            await reconcile_subscriptions_task({})
            calls = gateway.network_calls
            result = await reconcile_subscriptions_task({})

        assert result == 0
        assert gateway.network_calls == calls


class TestReconcileSubscriptionTask:
    @pytest.mark.asyncio
    async def test_returns_status(self, gateway, lifecycle):
        make_subscription("MS1", status="PENDING")
        gateway.states["MS1"] = "ACTIVE"

        with patch("autopay.worker.get_lifecycle_service", return_value=lifecycle):
            result = await reconcile_subscription_task({}, "MS1")

        assert result == "ACTIVE"

    @pytest.mark.asyncio
    async def test_unknown_subscription(self, gateway, lifecycle):
        with patch("autopay.worker.get_lifecycle_service", return_value=lifecycle):
            result = await reconcile_subscription_task({}, "MS404")

        assert result == ""
        assert gateway.network_calls == 0


class TestCheckRedemptionStatusTask:
    @pytest.mark.asyncio
    async def test_resolves_pending_order(self, gateway):
        make_subscription("MS1")
        RedemptionOrderRepository().create(
            RedemptionOrderCreate(
                merchant_order_id="RO1",
                merchant_subscription_id="MS1",
                amount=100,
                state=RedemptionState.PENDING,
            )
        )
        gateway.order_status = OrderStatusResponse("RO1", "COMPLETED", transaction_id="TX1")
        service = RedemptionService(gateway)

        with patch("autopay.worker.get_redemption_service", return_value=service):
            result = await check_redemption_status_task({}, "RO1")

        assert result == "COMPLETED"
        assert RedemptionOrderRepository().get("RO1").transaction_id == "TX1"

    @pytest.mark.asyncio
    async def test_gateway_error_returns_empty(self, gateway):
        gateway.order_status_error = GatewayTimeoutError("slow")
        service = RedemptionService(gateway)

        with patch("autopay.worker.get_redemption_service", return_value=service):
            result = await check_redemption_status_task({}, "RO1")

        assert result == ""


class TestWorkerLifecycle:
    @pytest.mark.asyncio
    async def test_startup_creates_tables(self):
        with patch("autopay.worker.init_db") as mock_init:
            await startup({})
        mock_init.assert_called_once()

    @pytest.mark.asyncio
    async def test_shutdown_closes_http_gateway(self):
        gateway = MagicMock(spec=HttpGatewayClient)
        gateway.close = AsyncMock()

        with patch("autopay.worker.get_gateway_client", return_value=gateway):
            await shutdown({})

        gateway.close.assert_called_once()


class TestWorkerSettings:
    def test_functions_registered(self):
        names = {f.__name__ for f in WorkerSettings.functions}
        assert names == {
            "reconcile_subscriptions_task",
            "reconcile_subscription_task",
            "check_redemption_status_task",
        }

    def test_hooks(self):
        assert WorkerSettings.on_startup is startup
        assert WorkerSettings.on_shutdown is shutdown
