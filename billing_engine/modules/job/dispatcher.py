"""Billing job dispatcher.

Routes a queued job to exactly one handler and records the outcome on the
webhook ledger. Outcomes are classified as:

- business-rule rejection: IGNORED, never retried
- already applied (duplicate payment): PROCESSED, never retried
- anything else: re-raised for the queue to retry; on the final attempt
  the ledger row is marked FAILED first
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ValidationError

from billing_engine.core.logging import log_error, log_info, log_warning
from billing_engine.core.metrics import JOBS_TOTAL, JOB_DURATION_SECONDS
from billing_engine.modules.billing.handlers import (
    ALREADY_APPLIED_ERRORS,
    BUSINESS_RULE_ERRORS,
    CommandValidationError,
    HandlerResult,
    handle_checkout_completed,
    handle_invoice_failed,
    handle_payment_succeeded,
    handle_subscription_canceled,
)
from billing_engine.modules.subscription.events import AuditPublisher, publish_after_commit
from billing_engine.modules.subscription.models import utcnow
from billing_engine.modules.webhook.models import WebhookEventStatus
from billing_engine.modules.webhook.schemas import (
    CheckoutCompletedCommand,
    InvoiceFailedCommand,
    JobName,
    JobPayload,
    PaymentSucceededCommand,
    SubscriptionCanceledCommand,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Any, Any, datetime], Awaitable[HandlerResult]]


@dataclass(frozen=True)
class HandlerRoute:
    command_type: type[BaseModel]
    handler: Handler


HANDLERS: dict[JobName, HandlerRoute] = {
    JobName.PAYMENT_SUCCEEDED: HandlerRoute(PaymentSucceededCommand, handle_payment_succeeded),
    JobName.SUBSCRIPTION_CANCELED: HandlerRoute(SubscriptionCanceledCommand, handle_subscription_canceled),
    JobName.INVOICE_FAILED: HandlerRoute(InvoiceFailedCommand, handle_invoice_failed),
    JobName.CHECKOUT_COMPLETED: HandlerRoute(CheckoutCompletedCommand, handle_checkout_completed),
}


class DispatchOutcome(str, Enum):
    """Result of one dispatch attempt."""
    PROCESSED = "processed"
    ALREADY_APPLIED = "already_applied"
    IGNORED = "ignored"
    SKIPPED = "skipped"
    DROPPED = "dropped"
    RETRY = "retry"
    FAILED = "failed"


class BillingJobDispatcher:
    """Runs billing jobs against the subscription store.

    Args:
        uow_factory: Callable returning a fresh unit of work
        audit_publisher: Channel for committed subscription changes
        timeout_seconds: Per-attempt time limit for the handler transaction
        clock: Source of the current time
    """

    def __init__(
        self,
        uow_factory: Callable[[], Any],
        audit_publisher: AuditPublisher,
        timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.uow_factory = uow_factory
        self.audit_publisher = audit_publisher
        self.timeout_seconds = timeout_seconds
        self.clock = clock

    async def dispatch(
        self,
        raw_payload: dict[str, Any],
        attempt: int = 1,
        max_attempts: int = 1,
    ) -> DispatchOutcome:
        """Process one job.

        Args:
            raw_payload: ``JobPayload`` as serialized on the queue
            attempt: Current attempt number (1-indexed)
            max_attempts: Attempts the queue will make in total

        Returns:
            The outcome of this attempt

        Raises:
            Exception: Any transient failure, for the queue to retry.
        """
        event_id = str(raw_payload.get("event_id") or "")
        raw_job_name = raw_payload.get("job_name")

        try:
            job_name = JobName(raw_job_name)
        except ValueError:
            log_warning(
                logger,
                "Unknown billing job name, dropping job",
                event_id=event_id,
                job_name=raw_job_name,
            )
            JOBS_TOTAL.labels(job_name="unknown", outcome=DispatchOutcome.DROPPED.value).inc()
            return DispatchOutcome.DROPPED

        start_time = time.perf_counter()
        try:
            outcome = await self._dispatch(job_name, event_id, raw_payload, attempt, max_attempts)
        except Exception:
            outcome = DispatchOutcome.FAILED if attempt >= max_attempts else DispatchOutcome.RETRY
            JOBS_TOTAL.labels(job_name=job_name.value, outcome=outcome.value).inc()
            raise
        finally:
            JOB_DURATION_SECONDS.labels(job_name=job_name.value).observe(
                time.perf_counter() - start_time
            )

        JOBS_TOTAL.labels(job_name=job_name.value, outcome=outcome.value).inc()
        return outcome

    async def _dispatch(
        self,
        job_name: JobName,
        event_id: str,
        raw_payload: dict[str, Any],
        attempt: int,
        max_attempts: int,
    ) -> DispatchOutcome:
        route = HANDLERS[job_name]

        try:
            payload = JobPayload.model_validate(raw_payload)
            if not isinstance(payload.command, route.command_type):
                raise CommandValidationError(
                    f"Job {job_name.value} carries a {payload.command.kind} command"
                )
        except (ValidationError, CommandValidationError) as e:
            return await self._reject(event_id, job_name, f"Malformed job payload: {e}")

        try:
            result = await asyncio.wait_for(
                self._apply(route, payload),
                timeout=self.timeout_seconds,
            )
        except BUSINESS_RULE_ERRORS as e:
            return await self._reject(event_id, job_name, f"{type(e).__name__}: {e}")
        except ALREADY_APPLIED_ERRORS as e:
            return await self._already_applied(event_id, job_name, e)
        except Exception as e:
            await self._handle_transient(event_id, job_name, e, attempt, max_attempts)
            raise

        if result is None:
            return DispatchOutcome.SKIPPED

        for event in result.events:
            await publish_after_commit(self.audit_publisher, event)

        log_info(
            logger,
            "Billing job processed",
            event_id=event_id,
            job_name=job_name.value,
            action=result.action,
            subscription_id=result.subscription_id,
            attempt=attempt,
        )
        return DispatchOutcome.PROCESSED

    async def _apply(self, route: HandlerRoute, payload: JobPayload) -> Optional[HandlerResult]:
        """Run the handler and mark the event PROCESSED in one transaction.

        Returns None when the ledger row is no longer PENDING.
        """
        async with self.uow_factory() as uow:
            event = await uow.webhook_events.get(payload.event_id, for_update=True)
            if event is None or event.status != WebhookEventStatus.PENDING.value:
                log_info(
                    logger,
                    "Webhook event not pending, skipping job",
                    event_id=payload.event_id,
                    status=event.status if event else None,
                )
                return None

            now = self.clock()
            result = await route.handler(payload.command, uow, now)
            await uow.webhook_events.mark_processed(payload.event_id, now)
            await uow.commit()
            return result

    async def _reject(self, event_id: str, job_name: JobName, reason: str) -> DispatchOutcome:
        async with self.uow_factory() as uow:
            await uow.webhook_events.mark_ignored(event_id, reason, self.clock())
            await uow.commit()
        log_warning(
            logger,
            "Billing job rejected by business rules",
            event_id=event_id,
            job_name=job_name.value,
            reason=reason,
        )
        return DispatchOutcome.IGNORED

    async def _already_applied(
        self, event_id: str, job_name: JobName, error: Exception
    ) -> DispatchOutcome:
        async with self.uow_factory() as uow:
            await uow.webhook_events.mark_processed(event_id, self.clock())
            await uow.commit()
        log_info(
            logger,
            "Billing job already applied",
            event_id=event_id,
            job_name=job_name.value,
            reason=str(error),
        )
        return DispatchOutcome.ALREADY_APPLIED

    async def _handle_transient(
        self,
        event_id: str,
        job_name: JobName,
        error: Exception,
        attempt: int,
        max_attempts: int,
    ) -> None:
        reason = f"{type(error).__name__}: {error}" if str(error) else type(error).__name__
        if attempt < max_attempts:
            log_warning(
                logger,
                "Billing job failed, will retry",
                event_id=event_id,
                job_name=job_name.value,
                attempt=attempt,
                max_attempts=max_attempts,
                error=reason,
            )
            return

        async with self.uow_factory() as uow:
            await uow.webhook_events.mark_failed(event_id, reason, self.clock())
            await uow.commit()
        log_error(
            logger,
            "Billing job failed on final attempt, moved to dead-letter queue",
            exception=error,
            event_id=event_id,
            job_name=job_name.value,
            attempt=attempt,
        )
