"""Celery beat registration for the billing sweeps.

Registration is idempotent: every existing entry for a job's name or task
is removed before exactly one entry is added back.
"""

from dataclasses import dataclass, field
from typing import Any, MutableMapping, Optional, Sequence

from celery.schedules import crontab

from billing_engine.core.config import settings

TASK_PREFIX = "billing_engine.modules.scheduler.tasks"


@dataclass(frozen=True)
class ScheduledJob:
    """A repeatable job and its daily UTC run time."""
    name: str
    task: str
    hour: int
    minute: int = 0
    options: dict[str, Any] = field(default_factory=dict)

    def to_entry(self) -> dict[str, Any]:
        return {
            "task": self.task,
            "schedule": crontab(minute=self.minute, hour=self.hour),
            "options": dict(self.options),
        }


def default_jobs() -> list[ScheduledJob]:
    return [
        ScheduledJob(
            name="subscription-expiration-sweep",
            task=f"{TASK_PREFIX}.expire_due_subscriptions",
            hour=settings.BILLING_CRON_HOUR,
            minute=settings.BILLING_CRON_MINUTE,
        ),
        ScheduledJob(
            name="subscription-renewal-sweep",
            task=f"{TASK_PREFIX}.process_periodic_billing",
            hour=settings.BILLING_CRON_HOUR,
            minute=settings.BILLING_CRON_MINUTE,
        ),
        ScheduledJob(
            name="webhook-retention-sweep",
            task=f"{TASK_PREFIX}.purge_expired_webhook_events",
            hour=settings.RETENTION_CRON_HOUR,
        ),
        ScheduledJob(
            name="webhook-stranded-recovery",
            task=f"{TASK_PREFIX}.recover_stranded_webhook_events",
            hour=settings.RETENTION_CRON_HOUR,
            minute=30,
        ),
    ]


def register_schedules(
    beat_schedule: MutableMapping[str, Any],
    jobs: Optional[Sequence[ScheduledJob]] = None,
) -> list[str]:
    """Register each job exactly once in a beat schedule.

    Args:
        beat_schedule: ``celery_app.conf.beat_schedule`` or a copy of it
        jobs: Jobs to register, defaults to the billing sweeps

    Returns:
        Names of the removed entries
    """
    removed: list[str] = []
    for job in jobs if jobs is not None else default_jobs():
        stale = [
            key
            for key, entry in beat_schedule.items()
            if key == job.name or (isinstance(entry, dict) and entry.get("task") == job.task)
        ]
        for key in stale:
            del beat_schedule[key]
            removed.append(key)
        beat_schedule[job.name] = job.to_entry()
    return removed
