"""FastAPI application entry point."""

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from billing_engine.core.config import settings
from billing_engine.core.logging import setup_logging
from billing_engine.core.metrics import get_content_type, get_metrics, set_app_info
from billing_engine.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
)
from billing_engine.modules.billing.router import router as billing_router
from billing_engine.modules.webhook.router import router as webhook_router

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## Billing Engine API

Receives payment provider webhooks and keeps organization subscriptions in
sync with them.

* **Webhooks** - Signed provider deliveries, deduplicated by event ID
* **Dead-letter queue** - Failed events, listing and replay
* **Billing** - Current subscription status per organization
    """,
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check endpoints",
        },
        {
            "name": "webhooks",
            "description": "Provider webhook ingestion and dead-letter queue management",
        },
        {
            "name": "billing",
            "description": "Subscription status queries",
        },
    ],
)

setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

set_app_info(
    version=settings.VERSION,
    environment="development" if settings.DEBUG else "production",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        dict: Health status with "healthy" or "unhealthy" value.
    """
    return {"status": "healthy"}


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type=get_content_type())


app.include_router(webhook_router)
app.include_router(billing_router)
