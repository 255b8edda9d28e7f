"""Prometheus metrics for the billing backend.

Counts webhook deliveries by outcome, signature rejections and lazy
subscription expiries, alongside the usual HTTP request metrics.
"""

import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

REGISTRY = CollectorRegistry()

# Gunicorn workers share metrics through the multiprocess directory
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "airtime_billing_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ============================================
# Telco Webhook Metrics
# ============================================
TELCO_WEBHOOK_EVENTS_TOTAL = Counter(
    "telco_webhook_events_total",
    "Aggregator webhook deliveries by event type and outcome",
    ["event_type", "outcome"],
    registry=REGISTRY,
)

TELCO_WEBHOOK_SIGNATURE_FAILURES_TOTAL = Counter(
    "telco_webhook_signature_failures_total",
    "Aggregator webhook deliveries rejected for a bad or missing signature",
    registry=REGISTRY,
)


# ============================================
# Subscription Metrics
# ============================================
SUBSCRIPTION_LAZY_EXPIRIES_TOTAL = Counter(
    "subscription_lazy_expiries_total",
    "Users downgraded to expired on an access check",
    registry=REGISTRY,
)


def record_webhook_event(event_type: str, outcome: str) -> None:
    """Count one processed webhook delivery.

    Args:
        event_type: Aggregator event type (or "unknown")
        outcome: processed, ignored, duplicate or failed
    """
    TELCO_WEBHOOK_EVENTS_TOTAL.labels(event_type=event_type, outcome=outcome).inc()


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
