"""Shared test fixtures for all test modules."""

import asyncio
import contextlib
from datetime import datetime

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import autopay.models  # noqa: F401
from autopay.core import database as db_module
from autopay.core.database import Base
from autopay.core.errors import GatewayError
from autopay.repositories.subscription_repository import SubscriptionRepository
from autopay.schemas.subscription import SubscriptionRead, SubscriptionUpsert
from autopay.services.gateway_client import (
    ExecuteCompleted,
    ExecuteOutcome,
    GatewayClient,
    NotifyRequest,
    NotifyResponse,
    OrderStatusResponse,
    SetupRequest,
    SetupResponse,
    SubscriptionStatusResponse,
)
from autopay.services.token_provider import TokenGrant

# Create an in-memory SQLite engine with StaticPool so all connections
# share the same database state and there are no file-locking issues.
_test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and truncate all data after.

    Patches the module-level engine and SessionLocal so all application code
    uses the in-memory test database.
    """
    original_engine = db_module.engine
    original_session = db_module.SessionLocal
    db_module.engine = _test_engine
    db_module.SessionLocal = _TestSessionLocal

    Base.metadata.create_all(bind=_test_engine)

    yield
    with _test_engine.connect() as conn:
        conn.execute(text("PRAGMA foreign_keys = OFF"))
        for table in reversed(Base.metadata.sorted_tables):
            with contextlib.suppress(OperationalError):
                conn.execute(table.delete())
        conn.execute(text("PRAGMA foreign_keys = ON"))
        conn.commit()

    db_module.engine = original_engine
    db_module.SessionLocal = original_session


class FakeGateway(GatewayClient):
    """In-process gateway that records every call.

    Subscription states are served from ``states``; failures are injected by
    setting the ``*_error`` attributes. ``max_in_flight`` tracks the highest
    number of overlapping status calls.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: list[tuple[str, tuple]] = []
        self.states: dict[str, str] = {}
        self.setup_response = SetupResponse(
            order_id="OMO-1", state="PENDING", intent_url="upi://mandate?pa=merchant"
        )
        self.setup_error: GatewayError | None = None
        self.status_errors: dict[str, GatewayError] = {}
        self.action_state: str | None = None
        self.action_error: GatewayError | None = None
        self.notify_state = "NOTIFIED"
        self.notify_error: GatewayError | None = None
        self.execute_outcome: ExecuteOutcome = ExecuteCompleted("COMPLETED", "TXN-1")
        self.order_status: OrderStatusResponse | None = None
        self.order_status_error: GatewayError | None = None
        self.in_flight = 0
        self.max_in_flight = 0

    def calls_to(self, name: str) -> list[tuple]:
        return [args for call, args in self.calls if call == name]

    async def obtain_token(self) -> TokenGrant:
        self.calls.append(("obtain_token", ()))
        return TokenGrant(access_token="token", expires_at=4102444800.0)

    async def create_subscription(self, request: SetupRequest) -> SetupResponse:
        self.calls.append(("create_subscription", (request,)))
        if self.setup_error:
            raise self.setup_error
        self.states[request.merchant_subscription_id] = "PENDING"
        return self.setup_response

    async def get_subscription_status(
        self, merchant_subscription_id: str
    ) -> SubscriptionStatusResponse:
        self.calls.append(("get_subscription_status", (merchant_subscription_id,)))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        if merchant_subscription_id in self.status_errors:
            raise self.status_errors[merchant_subscription_id]
        return SubscriptionStatusResponse(
            merchant_subscription_id, self.states.get(merchant_subscription_id, "PENDING")
        )

    async def _action(self, name: str, merchant_subscription_id: str, *args) -> str | None:
        self.calls.append((name, (merchant_subscription_id, *args)))
        if self.action_error:
            raise self.action_error
        return self.action_state

    async def cancel_subscription(self, merchant_subscription_id: str) -> str | None:
        return await self._action("cancel_subscription", merchant_subscription_id)

    async def pause_subscription(
        self, merchant_subscription_id: str, pause_start: datetime, pause_end: datetime
    ) -> str | None:
        return await self._action(
            "pause_subscription", merchant_subscription_id, pause_start, pause_end
        )

    async def unpause_subscription(self, merchant_subscription_id: str) -> str | None:
        return await self._action("unpause_subscription", merchant_subscription_id)

    async def revoke_subscription(self, merchant_subscription_id: str) -> str | None:
        return await self._action("revoke_subscription", merchant_subscription_id)

    async def notify_redemption(self, request: NotifyRequest) -> NotifyResponse:
        self.calls.append(("notify_redemption", (request,)))
        if self.notify_error:
            raise self.notify_error
        return NotifyResponse(
            order_id=f"OMO-{request.merchant_order_id}",
            state=self.notify_state,
            expire_at=None,
        )

    async def execute_redemption(self, merchant_order_id: str) -> ExecuteOutcome:
        self.calls.append(("execute_redemption", (merchant_order_id,)))
        return self.execute_outcome

    async def get_order_status(self, merchant_order_id: str) -> OrderStatusResponse:
        self.calls.append(("get_order_status", (merchant_order_id,)))
        if self.order_status_error:
            raise self.order_status_error
        if self.order_status is None:
            return OrderStatusResponse(merchant_order_id=merchant_order_id, state="PENDING")
        return self.order_status

    @property
    def network_calls(self) -> int:
        return len(self.calls)


@pytest.fixture
def gateway():
    """Return a fresh in-process gateway."""
    return FakeGateway()


@pytest.fixture
def subscription_repo():
    return SubscriptionRepository()


def make_subscription(
    merchant_subscription_id: str = "MS1",
    status: str = "ACTIVE",
    amount: int = 10000,
    max_amount: int | None = 20000,
    frequency: str = "MONTHLY",
) -> SubscriptionRead:
    """Insert a subscription straight into the store."""
    return SubscriptionRepository().upsert(
        SubscriptionUpsert(
            merchant_subscription_id=merchant_subscription_id,
            status=status,
            amount=amount,
            max_amount=max_amount,
            frequency=frequency,
            user_id="user-1",
        )
    )
