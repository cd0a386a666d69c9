"""Dead-letter listing and replay of FAILED webhook events."""

import logging
from typing import Any, Callable

from pydantic import ValidationError

from billing_engine.core.logging import log_error, log_info
from billing_engine.core.metrics import WEBHOOK_REPLAYS_TOTAL
from billing_engine.modules.job.queue import JobQueue
from billing_engine.modules.subscription.models import utcnow
from billing_engine.modules.webhook.models import WebhookEvent, WebhookEventStatus
from billing_engine.modules.webhook.schemas import JobPayload

logger = logging.getLogger(__name__)


class ReplayError(Exception):
    """Base exception for replay errors."""
    pass


class EventNotFoundError(ReplayError):
    """Raised when no ledger row exists for the event ID."""
    pass


class EventNotReplayableError(ReplayError):
    """Raised when the row is not FAILED or has no usable payload."""
    pass


class ReplayEnqueueError(ReplayError):
    """Raised when the replayed job could not be published."""
    pass


def replay_job_id(event_id: str, now) -> str:
    """Fresh job ID so queue-level deduplication does not swallow the replay."""
    return f"{event_id}_replay_{int(now.timestamp() * 1000)}"


class ReplayService:
    """Operator access to the dead-letter queue."""

    def __init__(
        self,
        uow_factory: Callable[[], Any],
        queue: JobQueue,
        clock: Callable = utcnow,
    ):
        self.uow_factory = uow_factory
        self.queue = queue
        self.clock = clock

    async def list_dead_letters(self, limit: int = 100, offset: int = 0) -> tuple[list[WebhookEvent], int]:
        """FAILED events, most recent failure first, with the total count."""
        async with self.uow_factory() as uow:
            items = await uow.webhook_events.list_failed(limit=limit, offset=offset)
            total = await uow.webhook_events.count_failed()
        return items, total

    async def replay(self, event_id: str) -> str:
        """Reset a FAILED event to PENDING and re-enqueue its stored payload.

        Returns:
            The job ID of the replayed job

        Raises:
            EventNotFoundError: If the event is unknown.
            EventNotReplayableError: If the event is not FAILED or lacks a payload.
            ReplayEnqueueError: If publishing failed; the event is FAILED again.
        """
        async with self.uow_factory() as uow:
            event = await uow.webhook_events.get(event_id, for_update=True)
            if event is None:
                raise EventNotFoundError(f"Webhook event {event_id} not found")
            if event.status != WebhookEventStatus.FAILED.value:
                raise EventNotReplayableError(
                    f"Webhook event {event_id} is {event.status}, only FAILED events can be replayed"
                )
            if not event.payload:
                raise EventNotReplayableError(f"Webhook event {event_id} has no stored payload")
            try:
                payload = JobPayload.model_validate(event.payload)
            except ValidationError as e:
                raise EventNotReplayableError(
                    f"Webhook event {event_id} has an invalid stored payload: {e}"
                ) from e

            await uow.webhook_events.reset_for_replay(event_id)
            await uow.commit()

        job_id = replay_job_id(event_id, self.clock())
        try:
            await self.queue.enqueue(job_id, payload)
        except Exception as e:
            log_error(logger, "Failed to enqueue replayed job", exception=e, event_id=event_id, job_id=job_id)
            async with self.uow_factory() as uow:
                await uow.webhook_events.mark_failed(event_id, f"Replay enqueue failed: {e}", self.clock())
                await uow.commit()
            raise ReplayEnqueueError(f"Could not enqueue replay of {event_id}") from e

        WEBHOOK_REPLAYS_TOTAL.inc()
        log_info(logger, "Webhook event replayed", event_id=event_id, job_id=job_id)
        return job_id
