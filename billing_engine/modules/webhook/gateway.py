"""Webhook ingestion gateway.

Turns a raw provider delivery into at most one ledger row and at most one
queued job per provider event ID. The ledger row is committed before the
job is published, so a job can always find its row.
"""

import json
import logging
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import ValidationError

from billing_engine.core.logging import log_error, log_info, log_warning
from billing_engine.core.metrics import WEBHOOK_EVENTS_TOTAL, WEBHOOK_REJECTIONS_TOTAL
from billing_engine.modules.job.queue import JobQueue
from billing_engine.modules.subscription.models import utcnow
from billing_engine.modules.webhook.models import WebhookEventStatus
from billing_engine.modules.webhook.parser import (
    CommandParseError,
    parse_command,
    resolve_job_name,
)
from billing_engine.modules.webhook.schemas import JobPayload, WebhookEnvelope
from billing_engine.modules.webhook.signature import SignatureVerifier

logger = logging.getLogger(__name__)


class WebhookIngestionError(Exception):
    """Base exception for deliveries rejected at the boundary."""
    pass


class EmptyPayloadError(WebhookIngestionError):
    """Raised when the request body is empty."""
    pass


class InvalidSignatureError(WebhookIngestionError):
    """Raised when the signature does not match the payload."""
    pass


class MalformedEventError(WebhookIngestionError):
    """Raised when the body is not a provider event envelope."""
    pass


class IngestionResult(str, Enum):
    """Accepted delivery outcomes. All of them are acknowledged to the provider."""
    ENQUEUED = "enqueued"
    DUPLICATE = "duplicate"
    UNHANDLED = "unhandled"
    IGNORED = "ignored"
    ENQUEUE_FAILED = "enqueue_failed"


class IngestionGateway:
    """Verifies, records and enqueues provider deliveries.

    Args:
        verifier: Signature verifier for the provider's shared secret
        uow_factory: Callable returning a fresh unit of work
        queue: Job queue to publish to
        clock: Source of the current time
    """

    def __init__(
        self,
        verifier: SignatureVerifier,
        uow_factory: Callable[[], Any],
        queue: JobQueue,
        clock: Callable = utcnow,
    ):
        self.verifier = verifier
        self.uow_factory = uow_factory
        self.queue = queue
        self.clock = clock

    async def ingest(self, raw_body: bytes, signature: Optional[str]) -> IngestionResult:
        """Ingest one delivery.

        Raises:
            EmptyPayloadError: If the body is empty.
            InvalidSignatureError: If the signature check fails.
            MalformedEventError: If the body is not a valid envelope.
        """
        if not raw_body:
            WEBHOOK_REJECTIONS_TOTAL.labels(reason="empty_body").inc()
            raise EmptyPayloadError("Webhook body is empty")

        if not self.verifier.verify(raw_body, signature):
            WEBHOOK_REJECTIONS_TOTAL.labels(reason="invalid_signature").inc()
            log_warning(logger, "Webhook signature verification failed", body_size=len(raw_body))
            raise InvalidSignatureError("Invalid webhook signature")

        envelope = self._parse_envelope(raw_body)
        result = await self._record_and_enqueue(envelope)
        WEBHOOK_EVENTS_TOTAL.labels(event_type=envelope.type, outcome=result.value).inc()
        return result

    def _parse_envelope(self, raw_body: bytes) -> WebhookEnvelope:
        try:
            return WebhookEnvelope.model_validate(json.loads(raw_body))
        except (ValueError, ValidationError) as e:
            WEBHOOK_REJECTIONS_TOTAL.labels(reason="malformed").inc()
            raise MalformedEventError(f"Invalid webhook payload: {e}") from e

    async def _record_and_enqueue(self, envelope: WebhookEnvelope) -> IngestionResult:
        event_id = envelope.id
        now = self.clock()

        async with self.uow_factory() as uow:
            if await uow.webhook_events.get(event_id) is not None:
                log_info(logger, "Duplicate webhook event, skipping", event_id=event_id)
                return IngestionResult.DUPLICATE

        job_name = resolve_job_name(envelope.type)
        if job_name is None:
            inserted = await self._record_terminal(
                envelope, WebhookEventStatus.UNHANDLED, now, None
            )
            log_info(logger, "Unhandled webhook event type", event_id=event_id, event_type=envelope.type)
            return IngestionResult.UNHANDLED if inserted else IngestionResult.DUPLICATE

        try:
            command = parse_command(job_name, envelope.data.object)
        except CommandParseError as e:
            inserted = await self._record_terminal(
                envelope, WebhookEventStatus.IGNORED, now, f"Malformed event object: {e}"
            )
            log_warning(
                logger,
                "Webhook event object malformed, ignoring",
                event_id=event_id,
                event_type=envelope.type,
                error=str(e),
            )
            return IngestionResult.IGNORED if inserted else IngestionResult.DUPLICATE

        payload = JobPayload(
            event_id=event_id,
            event_type=envelope.type,
            job_name=job_name,
            command=command,
        )

        async with self.uow_factory() as uow:
            inserted = await uow.webhook_events.create_if_absent(
                event_id=event_id,
                event_type=envelope.type,
                status=WebhookEventStatus.PENDING,
                received_at=now,
                payload=payload.model_dump(mode="json"),
            )
            await uow.commit()

        if not inserted:
            log_info(logger, "Webhook event recorded concurrently, skipping", event_id=event_id)
            return IngestionResult.DUPLICATE

        try:
            await self.queue.enqueue(event_id, payload)
        except Exception as e:
            log_error(
                logger,
                "Failed to enqueue webhook job, moving event to dead-letter queue",
                exception=e,
                event_id=event_id,
                job_name=job_name.value,
            )
            async with self.uow_factory() as uow:
                await uow.webhook_events.mark_failed(event_id, f"Enqueue failed: {e}", self.clock())
                await uow.commit()
            return IngestionResult.ENQUEUE_FAILED

        log_info(
            logger,
            "Webhook event accepted",
            event_id=event_id,
            event_type=envelope.type,
            job_name=job_name.value,
        )
        return IngestionResult.ENQUEUED

    async def _record_terminal(
        self,
        envelope: WebhookEnvelope,
        status: WebhookEventStatus,
        now,
        error_message: Optional[str],
    ) -> bool:
        async with self.uow_factory() as uow:
            inserted = await uow.webhook_events.create_if_absent(
                event_id=envelope.id,
                event_type=envelope.type,
                status=status,
                received_at=now,
                error_message=error_message,
            )
            await uow.commit()
        return inserted
