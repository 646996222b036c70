from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from autopay.core.config import settings
from autopay.core.database import init_db
from autopay.core.dependencies import get_gateway_client
from autopay.routers import redemptions, subscriptions, webhooks
from autopay.services.gateway_client import HttpGatewayClient

OPENAPI_TAGS = [
    {"name": "Subscriptions", "description": "Set up, reconcile and manage autopay mandates."},
    {"name": "Redemptions", "description": "Notify and execute debits against active mandates."},
    {"name": "Webhooks", "description": "Receive payment gateway callbacks."},
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_db()
    yield
    gateway = get_gateway_client()
    if isinstance(gateway, HttpGatewayClient):
        await gateway.close()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.version,
    description=(
        "Recurring-mandate orchestration API. "
        "Create autopay subscriptions, keep them in sync with the payment gateway, "
        "and charge against them."
    ),
    openapi_tags=OPENAPI_TAGS,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(subscriptions.router, prefix="/v1/subscriptions", tags=["Subscriptions"])
app.include_router(redemptions.router, prefix="/v1/redemptions", tags=["Redemptions"])
app.include_router(webhooks.router, prefix="/v1/webhooks", tags=["Webhooks"])


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "app": settings.APP_NAME,
        "version": settings.version,
        "domain": settings.APP_DOMAIN,
        "status": "running",
    }
