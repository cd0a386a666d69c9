"""Job Queue module for reliable billing job processing with DLQ support."""

from billing_engine.modules.job.dispatcher import (
    HANDLERS,
    BillingJobDispatcher,
    DispatchOutcome,
)
from billing_engine.modules.job.tasks import RetryConfig, RETRY_CONFIGS, BaseTaskWithRetry
from billing_engine.modules.job.queue import CeleryJobQueue, JobQueue

__all__ = [
    # Dispatcher
    "HANDLERS",
    "BillingJobDispatcher",
    "DispatchOutcome",
    # Tasks
    "RetryConfig",
    "RETRY_CONFIGS",
    "BaseTaskWithRetry",
    # Queue
    "CeleryJobQueue",
    "JobQueue",
]
