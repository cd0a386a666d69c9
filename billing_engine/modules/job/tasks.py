"""Celery tasks for billing jobs, with retry logic."""

import asyncio
import math
from typing import Any

from celery import Task

from billing_engine.core.celery_app import celery_app
from billing_engine.core.config import settings
from billing_engine.core.database import create_task_session_maker
from billing_engine.core.logging import clear_correlation_id, set_correlation_id
from billing_engine.modules.billing.unit_of_work import serializable_uow_factory
from billing_engine.modules.job.dispatcher import BillingJobDispatcher
from billing_engine.modules.subscription.events import CeleryAuditPublisher


class RetryConfig:
    """Configuration for retry behavior with exponential backoff."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 300.0,
        backoff_multiplier: float = 2.0,
    ):
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt using exponential backoff.

        Args:
            attempt: The current attempt number (1-indexed).

        Returns:
            The delay in seconds, capped at max_delay.
        """
        if attempt < 1:
            return self.initial_delay

        delay = self.initial_delay * math.pow(self.backoff_multiplier, attempt - 1)
        return min(delay, self.max_delay)


# Default retry configurations for different job types
RETRY_CONFIGS = {
    "webhook": RetryConfig(
        max_attempts=settings.WEBHOOK_MAX_ATTEMPTS,
        initial_delay=settings.WEBHOOK_RETRY_INITIAL_DELAY_SECONDS,
        max_delay=settings.WEBHOOK_RETRY_MAX_DELAY_SECONDS,
        backoff_multiplier=settings.WEBHOOK_RETRY_BACKOFF_MULTIPLIER,
    ),
    "default": RetryConfig(max_attempts=3, initial_delay=1.0, max_delay=60.0, backoff_multiplier=2),
}


class BaseTaskWithRetry(Task):
    """Base Celery task with exponential backoff retry logic."""

    abstract = True
    retry_config_name: str = "default"

    @property
    def retry_config(self) -> RetryConfig:
        """Get the retry configuration for this task."""
        return RETRY_CONFIGS.get(self.retry_config_name, RETRY_CONFIGS["default"])

    def retry_with_backoff(self, exc: Exception, attempt: int) -> None:
        """Retry the task with exponential backoff.

        Args:
            exc: The exception that caused the failure.
            attempt: The current attempt number (1-indexed).

        Raises:
            MaxRetriesExceededError: If max attempts have been reached.
        """
        config = self.retry_config

        if attempt >= config.max_attempts:
            raise self.MaxRetriesExceededError(
                f"Max retries ({config.max_attempts}) exceeded for task"
            ) from exc

        delay = config.calculate_delay(attempt)
        raise self.retry(exc=exc, countdown=delay, max_retries=config.max_attempts - 1)


class WebhookJobTask(BaseTaskWithRetry):
    """Base for billing webhook jobs."""

    abstract = True
    retry_config_name = "webhook"


async def _run_dispatcher(payload: dict[str, Any], attempt: int, max_attempts: int) -> str:
    session_maker = create_task_session_maker()
    dispatcher = BillingJobDispatcher(
        uow_factory=serializable_uow_factory(session_maker),
        audit_publisher=CeleryAuditPublisher(),
        timeout_seconds=settings.WEBHOOK_JOB_TIMEOUT_SECONDS,
    )
    outcome = await dispatcher.dispatch(payload, attempt=attempt, max_attempts=max_attempts)
    return outcome.value


@celery_app.task(
    bind=True,
    base=WebhookJobTask,
    name="billing_engine.modules.job.tasks.process_billing_event",
)
def process_billing_event(self: WebhookJobTask, payload: dict) -> dict:
    """Process one billing job.

    The provider event ID doubles as the correlation ID for every log line
    the job writes.
    """
    attempt = self.request.retries + 1
    max_attempts = self.retry_config.max_attempts
    set_correlation_id(str(payload.get("event_id")))

    try:
        outcome = asyncio.run(_run_dispatcher(payload, attempt, max_attempts))
    except Exception as exc:
        self.retry_with_backoff(exc, attempt)
    finally:
        clear_correlation_id()

    return {
        "event_id": payload.get("event_id"),
        "job_name": payload.get("job_name"),
        "outcome": outcome,
        "attempt": attempt,
    }
