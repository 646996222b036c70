import logging
from typing import Any

from autopay.core.database import init_db
from autopay.core.dependencies import (
    get_gateway_client,
    get_lifecycle_service,
    get_redemption_service,
)
from autopay.services.gateway_client import HttpGatewayClient
from autopay.tasks import redis_settings

logger = logging.getLogger(__name__)


async def reconcile_subscriptions_task(ctx: dict[str, Any]) -> int:
    """Background task: refresh every non-terminal subscription from the gateway.

    Returns the number of subscriptions whose cached status changed, or 0 when
    the run was debounced.
    """
    service = get_lifecycle_service()
    result = await service.reconcile_batch()
    if result.debounced:
        logger.info("Skipped reconciliation run: debounced")
        return 0

    changed = sum(1 for item in result.items if item.result.value and item.result.value.changed)
    for item in result.failures:
        assert item.result.error is not None
        logger.warning(
            "Reconciliation of %s failed: %s",
            item.merchant_subscription_id,
            item.result.error.message,
        )
    if changed > 0:
        logger.info("Reconciliation updated %d subscriptions", changed)
    return changed


async def reconcile_subscription_task(ctx: dict[str, Any], merchant_subscription_id: str) -> str:
    """Background task: refresh one subscription. Returns the stored status."""
    result = await get_lifecycle_service().reconcile_one(merchant_subscription_id)
    if not result.ok:
        assert result.error is not None
        logger.warning(
            "Reconciliation of %s failed: %s", merchant_subscription_id, result.error.message
        )
        return ""
    return result.unwrap().status.value


async def check_redemption_status_task(ctx: dict[str, Any], merchant_order_id: str) -> str:
    """Background task: poll a redemption order left unresolved by execute."""
    result = await get_redemption_service().check_status(merchant_order_id)
    if not result.ok:
        assert result.error is not None
        logger.warning(
            "Status check for redemption %s failed: %s", merchant_order_id, result.error.message
        )
        return ""
    order = result.unwrap()
    logger.info("Redemption %s is %s", merchant_order_id, order.state)
    return order.state


async def startup(ctx: dict[str, Any]) -> None:
    init_db()


async def shutdown(ctx: dict[str, Any]) -> None:
    gateway = get_gateway_client()
    if isinstance(gateway, HttpGatewayClient):
        await gateway.close()


class WorkerSettings:
    functions = [
        reconcile_subscriptions_task,
        reconcile_subscription_task,
        check_redemption_status_task,
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = redis_settings
