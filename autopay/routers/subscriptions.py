from fastapi import APIRouter, Depends

from autopay.core.dependencies import get_lifecycle_service, unwrap_or_raise
from autopay.schemas.subscription import (
    BatchReconcileResponse,
    ClassifiedSubscriptionsResponse,
    PauseRequest,
    ReconcileItemResponse,
    SubscriptionRead,
    SubscriptionSetupRequest,
    SubscriptionSetupResponse,
)
from autopay.services.subscription_lifecycle import SubscriptionLifecycleService

router = APIRouter()

_not_found = {404: {"description": "Subscription not found"}}
_gateway_error = {502: {"description": "Payment gateway error"}}


@router.post(
    "/setup",
    response_model=SubscriptionSetupResponse,
    status_code=201,
    summary="Set up mandate",
    responses={
        409: {"description": "Subscription already exists"},
        422: {"description": "Invalid amount"},
        **_gateway_error,
    },
)
async def setup_subscription(
    data: SubscriptionSetupRequest,
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> SubscriptionSetupResponse:
    """Create a mandate at the gateway and return the payer's intent URL."""
    outcome = unwrap_or_raise(
        await service.setup(
            user_id=data.user_id,
            amount=data.amount,
            frequency=data.frequency,
            amount_type=data.amount_type,
            max_amount=data.max_amount,
            auth_workflow_type=data.auth_workflow_type,
        )
    )
    return SubscriptionSetupResponse(
        subscription=outcome.subscription,
        merchant_order_id=outcome.merchant_order_id,
        intent_url=outcome.intent_url,
        state=outcome.state,
    )


@router.get(
    "/",
    response_model=ClassifiedSubscriptionsResponse,
    summary="List subscriptions by bucket",
)
async def list_subscriptions(
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> ClassifiedSubscriptionsResponse:
    """List stored subscriptions split into active, pending and cancelled."""
    buckets = service.classify()
    return ClassifiedSubscriptionsResponse(
        active=buckets.active, pending=buckets.pending, cancelled=buckets.cancelled
    )


@router.post(
    "/reconcile",
    response_model=BatchReconcileResponse,
    summary="Reconcile all open subscriptions",
)
async def reconcile_subscriptions(
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> BatchReconcileResponse:
    result = await service.reconcile_batch()
    return BatchReconcileResponse(
        debounced=result.debounced,
        items=[
            ReconcileItemResponse(
                merchant_subscription_id=item.merchant_subscription_id,
                status=item.result.value.status.value if item.result.value else None,
                changed=item.result.value.changed if item.result.value else False,
                error=item.result.error.to_dict() if item.result.error else None,
            )
            for item in result.items
        ],
    )


@router.get(
    "/{merchant_subscription_id}",
    response_model=SubscriptionRead,
    summary="Get subscription",
    responses=_not_found,
)
async def get_subscription(
    merchant_subscription_id: str,
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> SubscriptionRead:
    return unwrap_or_raise(service.get_subscription(merchant_subscription_id))


@router.post(
    "/{merchant_subscription_id}/reconcile",
    response_model=ReconcileItemResponse,
    summary="Reconcile one subscription",
    responses={**_not_found, **_gateway_error},
)
async def reconcile_subscription(
    merchant_subscription_id: str,
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> ReconcileItemResponse:
    outcome = unwrap_or_raise(await service.reconcile_one(merchant_subscription_id))
    return ReconcileItemResponse(
        merchant_subscription_id=merchant_subscription_id,
        status=outcome.status.value,
        changed=outcome.changed,
    )


@router.post(
    "/{merchant_subscription_id}/cancel",
    response_model=SubscriptionRead,
    summary="Cancel subscription",
    responses={**_not_found, 409: {"description": "Subscription is terminal"}, **_gateway_error},
)
async def cancel_subscription(
    merchant_subscription_id: str,
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> SubscriptionRead:
    return unwrap_or_raise(await service.cancel(merchant_subscription_id))


@router.post(
    "/{merchant_subscription_id}/pause",
    response_model=SubscriptionRead,
    summary="Pause subscription",
    responses={**_not_found, 409: {"description": "Subscription is not active"}, **_gateway_error},
)
async def pause_subscription(
    merchant_subscription_id: str,
    data: PauseRequest,
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> SubscriptionRead:
    return unwrap_or_raise(
        await service.pause(merchant_subscription_id, data.pause_start, data.pause_end)
    )


@router.post(
    "/{merchant_subscription_id}/unpause",
    response_model=SubscriptionRead,
    summary="Unpause subscription",
    responses={**_not_found, 409: {"description": "Subscription is not paused"}, **_gateway_error},
)
async def unpause_subscription(
    merchant_subscription_id: str,
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> SubscriptionRead:
    return unwrap_or_raise(await service.unpause(merchant_subscription_id))


@router.post(
    "/{merchant_subscription_id}/revoke",
    response_model=SubscriptionRead,
    summary="Revoke subscription",
    responses={**_not_found, 409: {"description": "Subscription is terminal"}, **_gateway_error},
)
async def revoke_subscription(
    merchant_subscription_id: str,
    service: SubscriptionLifecycleService = Depends(get_lifecycle_service),
) -> SubscriptionRead:
    return unwrap_or_raise(await service.revoke(merchant_subscription_id))
