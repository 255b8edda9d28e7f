"""FastAPI application entry point."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from airtime_billing.core.config import settings
from airtime_billing.core.logging import setup_logging
from airtime_billing.core.metrics import get_content_type, get_metrics, set_app_info
from airtime_billing.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
)
from airtime_billing.core.tracing import setup_tracing
from airtime_billing.modules.subscription.router import router as subscription_router

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## Airtime Subscription Billing API

Subscription lifecycle engine for telco airtime billing.

* **Webhook** - Aggregator lifecycle notifications (activation, renewal, unsubscription, billing failure)
* **Subscriptions** - Current subscription, history, access status, cancellation
* **Admin** - Subscription statistics and active subscriptions
    """,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check endpoints",
        },
        {
            "name": "subscriptions",
            "description": "Airtime subscription lifecycle - aggregator webhook, queries, cancellation",
        },
    ],
)

setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

setup_tracing(
    service_name=settings.PROJECT_NAME,
    service_version=settings.VERSION,
    environment=settings.ENVIRONMENT,
    otlp_endpoint=settings.OTLP_ENDPOINT,
    enable_console_export=settings.DEBUG,
)

set_app_info(
    version=settings.VERSION,
    environment=settings.ENVIRONMENT,
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


app.include_router(subscription_router, prefix=settings.API_V1_PREFIX)
