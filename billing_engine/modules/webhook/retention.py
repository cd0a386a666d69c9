"""Ledger maintenance: retention and stranded PENDING recovery."""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from billing_engine.core.logging import log_info, log_warning

logger = logging.getLogger(__name__)


class WebhookMaintenanceService:
    """Housekeeping over the webhook event ledger."""

    def __init__(self, uow_factory: Callable[[], Any]):
        self.uow_factory = uow_factory

    async def delete_expired(self, now: datetime, retention_days: int) -> int:
        """Delete PROCESSED, IGNORED and UNHANDLED rows older than the retention window.

        FAILED rows are kept until replayed.
        """
        cutoff = now - timedelta(days=retention_days)
        async with self.uow_factory() as uow:
            deleted = await uow.webhook_events.delete_expired(cutoff)
            await uow.commit()

        log_info(
            logger,
            "Webhook retention sweep completed",
            deleted=deleted,
            cutoff=cutoff.isoformat(),
        )
        return deleted

    async def fail_stranded(self, now: datetime, stale_minutes: int) -> list[str]:
        """Move rows stuck in PENDING to FAILED so they surface for replay.

        A row stays PENDING forever when the process died between committing
        it and publishing its job.

        Returns:
            IDs of the events moved to FAILED
        """
        cutoff = now - timedelta(minutes=stale_minutes)
        reason = f"Stranded in PENDING for over {stale_minutes} minutes, job presumed lost"

        failed: list[str] = []
        async with self.uow_factory() as uow:
            for event in await uow.webhook_events.find_stranded_pending(cutoff):
                if await uow.webhook_events.mark_failed(event.id, reason, now):
                    failed.append(event.id)
            await uow.commit()

        if failed:
            log_warning(logger, "Stranded webhook events moved to dead-letter queue", event_ids=failed)
        return failed
