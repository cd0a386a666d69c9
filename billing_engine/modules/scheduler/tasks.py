"""Celery tasks for the scheduled billing sweeps."""

import asyncio
import logging

from billing_engine.core.celery_app import celery_app
from billing_engine.core.config import settings
from billing_engine.core.database import create_task_session_maker
from billing_engine.modules.billing.unit_of_work import (
    read_committed_uow_factory,
    serializable_uow_factory,
)
from billing_engine.modules.scheduler.service import (
    ExpireAllDueSubscriptions,
    ProcessPeriodicBilling,
)
from billing_engine.modules.subscription.events import CeleryAuditPublisher
from billing_engine.modules.subscription.models import utcnow
from billing_engine.modules.webhook.retention import WebhookMaintenanceService

logger = logging.getLogger(__name__)


@celery_app.task(name="billing_engine.modules.scheduler.tasks.expire_due_subscriptions")
def expire_due_subscriptions() -> dict:
    """Expire every ACTIVE subscription past its period. Runs daily."""
    return asyncio.run(_expire_due_subscriptions())


async def _expire_due_subscriptions() -> dict:
    sweep = ExpireAllDueSubscriptions(
        serializable_uow_factory(create_task_session_maker()),
        CeleryAuditPublisher(),
    )
    result = await sweep.execute()
    return result.to_dict()


@celery_app.task(name="billing_engine.modules.scheduler.tasks.process_periodic_billing")
def process_periodic_billing() -> dict:
    """Renew due paid subscriptions and reset their usage. Runs daily."""
    return asyncio.run(_process_periodic_billing())


async def _process_periodic_billing() -> dict:
    sweep = ProcessPeriodicBilling(
        serializable_uow_factory(create_task_session_maker()),
        CeleryAuditPublisher(),
    )
    result = await sweep.execute()
    return result.to_dict()


@celery_app.task(name="billing_engine.modules.scheduler.tasks.purge_expired_webhook_events")
def purge_expired_webhook_events() -> dict:
    """Delete terminal webhook events past the retention window."""
    return asyncio.run(_purge_expired_webhook_events())


async def _purge_expired_webhook_events() -> dict:
    service = WebhookMaintenanceService(read_committed_uow_factory(create_task_session_maker()))
    deleted = await service.delete_expired(utcnow(), settings.WEBHOOK_RETENTION_DAYS)
    return {"deleted": deleted}


@celery_app.task(name="billing_engine.modules.scheduler.tasks.recover_stranded_webhook_events")
def recover_stranded_webhook_events() -> dict:
    """Dead-letter webhook events whose job never ran."""
    return asyncio.run(_recover_stranded_webhook_events())


async def _recover_stranded_webhook_events() -> dict:
    service = WebhookMaintenanceService(read_committed_uow_factory(create_task_session_maker()))
    failed = await service.fail_stranded(utcnow(), settings.STRANDED_PENDING_MINUTES)
    return {"failed": len(failed), "event_ids": failed}
