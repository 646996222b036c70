"""Inbound gateway webhook endpoint."""

from typing import Any

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from autopay.core.dependencies import get_webhook_service
from autopay.services.webhook_ingestion import WebhookIngestionService

router = APIRouter()


@router.post("/gateway")
async def handle_gateway_webhook(
    request: Request,
    authorization: str | None = Header(None),
    service: WebhookIngestionService = Depends(get_webhook_service),
) -> JSONResponse:
    """Receive subscription and redemption callbacks from the payment gateway.

    Always answers with ``{"success": ..., "message": ...}``; the status code
    tells the gateway whether to redeliver.
    """
    body: Any
    try:
        body = await request.json()
    except ValueError:
        body = None

    result = service.process(body, authorization)
    return JSONResponse(status_code=result.status_code, content=result.body)
