from typing import Any

from pydantic import BaseModel


class WebhookEvent(BaseModel):
    """Inbound gateway event, consumed once and never stored."""

    event_type: str
    merchant_subscription_id: str
    state: str
    merchant_order_id: str | None = None
    payload: dict[str, Any]


class WebhookResponse(BaseModel):
    status_code: int
    body: dict[str, Any]
