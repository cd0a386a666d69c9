"""Durable job queue for billing jobs.

Jobs are keyed by an ID derived from the provider event ID. A Redis key set
before publishing keeps the same job from being queued twice while the
key lives; the ledger row remains the final arbiter.
"""

import asyncio
import functools
import logging
from typing import Optional

import redis.asyncio as redis

from billing_engine.core.config import settings
from billing_engine.core.logging import log_info
from billing_engine.modules.job.tasks import process_billing_event
from billing_engine.modules.webhook.schemas import JobPayload

logger = logging.getLogger(__name__)

DEDUP_KEY_PREFIX = "billing:job:"


class JobQueue:
    """Queue interface used by ingestion and replay."""

    async def enqueue(self, job_id: str, payload: JobPayload) -> bool:
        """Publish a job.

        Returns:
            False if a job with this ID was already queued
        """
        raise NotImplementedError


class CeleryJobQueue(JobQueue):
    """Publishes billing jobs to the Celery webhook queue."""

    def __init__(
        self,
        redis_client: redis.Redis,
        dedup_ttl_seconds: Optional[int] = None,
        queue_name: Optional[str] = None,
    ):
        self.redis = redis_client
        self.dedup_ttl_seconds = dedup_ttl_seconds or settings.JOB_DEDUP_TTL_SECONDS
        self.queue_name = queue_name or settings.WEBHOOK_QUEUE_NAME

    async def enqueue(self, job_id: str, payload: JobPayload) -> bool:
        key = f"{DEDUP_KEY_PREFIX}{job_id}"
        claimed = await self.redis.set(key, payload.event_id, nx=True, ex=self.dedup_ttl_seconds)
        if not claimed:
            log_info(logger, "Job already queued, skipping", job_id=job_id, event_id=payload.event_id)
            return False

        publish = functools.partial(
            process_billing_event.apply_async,
            args=[payload.model_dump(mode="json")],
            task_id=job_id,
            queue=self.queue_name,
        )
        try:
            # Broker publish blocks, so it runs in the default thread pool
            await asyncio.get_running_loop().run_in_executor(None, publish)
        except Exception:
            # Release the key so a later delivery or replay can publish again
            await self.redis.delete(key)
            raise

        log_info(
            logger,
            "Billing job queued",
            job_id=job_id,
            event_id=payload.event_id,
            job_name=payload.job_name.value,
        )
        return True
