"""FastAPI dependency providers and Result-to-HTTP translation.

Services are process-wide singletons: the batch debouncer and the gateway
token cache must outlive a single request. Tests swap them out through
``app.dependency_overrides``.
"""

from functools import lru_cache
from typing import TypeVar

from fastapi import HTTPException

from autopay.core.errors import AutopayError, ErrorCategory, ErrorCode, Result
from autopay.services.gateway_client import GatewayClient, HttpGatewayClient
from autopay.services.redemption_service import RedemptionService
from autopay.services.subscription_lifecycle import SubscriptionLifecycleService
from autopay.services.webhook_ingestion import WebhookIngestionService

T = TypeVar("T")

NOT_FOUND_CODES = frozenset(
    {ErrorCode.SUBSCRIPTION_NOT_FOUND.value, ErrorCode.ORDER_NOT_FOUND.value}
)


@lru_cache
def get_gateway_client() -> GatewayClient:
    return HttpGatewayClient()


@lru_cache
def get_lifecycle_service() -> SubscriptionLifecycleService:
    return SubscriptionLifecycleService(get_gateway_client())


@lru_cache
def get_redemption_service() -> RedemptionService:
    return RedemptionService(get_gateway_client())


def get_webhook_service() -> WebhookIngestionService:
    return WebhookIngestionService()


def status_code_for(error: AutopayError) -> int:
    if error.category == ErrorCategory.VALIDATION:
        return 422
    if error.category == ErrorCategory.PRECONDITION:
        return 404 if error.code in NOT_FOUND_CODES else 409
    if error.category == ErrorCategory.AUTHENTICATION:
        return 401
    return 502


def unwrap_or_raise(result: Result[T]) -> T:
    """Return the result value, or raise the matching HTTPException."""
    if result.error is not None:
        raise HTTPException(
            status_code=status_code_for(result.error), detail=result.error.to_dict()
        )
    return result.unwrap()
