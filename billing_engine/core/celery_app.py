"""Celery application configuration."""

from celery import Celery

from billing_engine.core.config import settings

celery_app = Celery(
    "billing_engine",
    broker=settings.broker_url,
    backend=settings.result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.WORKER_CONCURRENCY,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_routes={
        "billing_engine.modules.job.tasks.*": {"queue": settings.WEBHOOK_QUEUE_NAME},
        "billing_engine.modules.audit.tasks.*": {"queue": settings.AUDIT_QUEUE_NAME},
    },
)

celery_app.autodiscover_tasks(
    [
        "billing_engine.modules.job",
        "billing_engine.modules.scheduler",
        "billing_engine.modules.audit",
    ]
)

# Imported after celery_app exists: the registry only needs settings
from billing_engine.modules.scheduler.registry import register_schedules  # noqa: E402

beat_schedule = dict(celery_app.conf.beat_schedule or {})
register_schedules(beat_schedule)
celery_app.conf.beat_schedule = beat_schedule
