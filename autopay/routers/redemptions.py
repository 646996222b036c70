"""Redemption API endpoints."""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends

from autopay.core.dependencies import get_redemption_service, unwrap_or_raise
from autopay.models.redemption_order import RedemptionState
from autopay.schemas.redemption import (
    ExecuteRedemptionRequest,
    NotifyRedemptionRequest,
    RedemptionOrderRead,
)
from autopay.services.redemption_service import RedemptionService
from autopay.tasks import enqueue_redemption_status_check

logger = logging.getLogger(__name__)

router = APIRouter()


async def _enqueue_status_check(merchant_order_id: str) -> None:
    """Enqueue a background status poll for an order left PENDING."""
    try:
        await enqueue_redemption_status_check(merchant_order_id)
    except Exception:
        logger.exception("Failed to enqueue status check for redemption %s", merchant_order_id)


@router.post(
    "/notify",
    response_model=RedemptionOrderRead,
    status_code=201,
    summary="Notify upcoming debit",
    responses={
        404: {"description": "Subscription not found"},
        422: {"description": "Invalid amount"},
        502: {"description": "Payment gateway error"},
    },
)
async def notify_redemption(
    data: NotifyRedemptionRequest,
    service: RedemptionService = Depends(get_redemption_service),
) -> RedemptionOrderRead:
    return unwrap_or_raise(
        await service.notify(
            merchant_subscription_id=data.merchant_subscription_id,
            amount=data.amount,
            expire_at=data.expire_at,
            meta_info=data.meta_info.model_dump(exclude_none=True) if data.meta_info else None,
            retry_strategy=data.retry_strategy,
            auto_debit=data.auto_debit,
        )
    )


@router.post(
    "/{merchant_order_id}/execute",
    response_model=RedemptionOrderRead,
    summary="Execute redemption",
    responses={
        404: {"description": "Order or subscription not found"},
        409: {"description": "Subscription not active or order not executable"},
        502: {"description": "Payment gateway error"},
    },
)
async def execute_redemption(
    merchant_order_id: str,
    data: ExecuteRedemptionRequest,
    background_tasks: BackgroundTasks,
    service: RedemptionService = Depends(get_redemption_service),
) -> RedemptionOrderRead:
    """Debit a notified order. A PENDING state in the response means a poll has been queued."""
    order = unwrap_or_raise(await service.execute(merchant_order_id, data.merchant_subscription_id))
    if order.parsed_state == RedemptionState.PENDING:
        background_tasks.add_task(_enqueue_status_check, merchant_order_id)
    return order


@router.get(
    "/{merchant_order_id}/status",
    response_model=RedemptionOrderRead,
    summary="Check redemption status",
    responses={502: {"description": "Payment gateway error"}},
)
async def redemption_status(
    merchant_order_id: str,
    service: RedemptionService = Depends(get_redemption_service),
) -> RedemptionOrderRead:
    return unwrap_or_raise(await service.check_status(merchant_order_id))
