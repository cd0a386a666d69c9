"""Prometheus metrics for the billing pipeline.

Tracks HTTP traffic, webhook ingestion outcomes, dispatcher outcomes and
scheduled sweep results.
"""

import os

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    multiprocess,
)

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., with gunicorn)
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "billing_engine_app",
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
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ============================================
# Webhook Ingestion Metrics
# ============================================
WEBHOOK_EVENTS_TOTAL = Counter(
    "billing_webhook_events_total",
    "Webhook deliveries by ingestion outcome",
    ["event_type", "outcome"],
    registry=REGISTRY,
)

WEBHOOK_REJECTIONS_TOTAL = Counter(
    "billing_webhook_rejections_total",
    "Webhook deliveries rejected at the boundary",
    ["reason"],
    registry=REGISTRY,
)

WEBHOOK_REPLAYS_TOTAL = Counter(
    "billing_webhook_replays_total",
    "Dead-lettered webhook events re-enqueued by an operator",
    registry=REGISTRY,
)


# ============================================
# Job Dispatch Metrics
# ============================================
JOBS_TOTAL = Counter(
    "billing_jobs_total",
    "Dispatched billing jobs by job name and outcome",
    ["job_name", "outcome"],
    registry=REGISTRY,
)

JOB_DURATION_SECONDS = Histogram(
    "billing_job_duration_seconds",
    "Billing job handler duration in seconds",
    ["job_name"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)


# ============================================
# Scheduled Sweep Metrics
# ============================================
SWEEP_ITEMS_TOTAL = Counter(
    "billing_sweep_items_total",
    "Subscriptions visited by scheduled sweeps",
    ["sweep", "result"],
    registry=REGISTRY,
)

SWEEP_LAST_RUN_TIMESTAMP = Gauge(
    "billing_sweep_last_run_timestamp",
    "Unix time of the last completed sweep run",
    ["sweep"],
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format.
    
    Returns:
        bytes: Prometheus-formatted metrics
    """
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics.
    
    Args:
        version: Application version
        environment: Deployment environment
    """
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
