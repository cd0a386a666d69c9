"""Subscription change events and their audit publishers.

Events are published after the owning transaction commits. Publishing is
best-effort: a failure is logged and never undoes the committed change.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from billing_engine.core.logging import log_error
from billing_engine.modules.audit.tasks import record_subscription_change
from billing_engine.modules.subscription.models import utcnow

logger = logging.getLogger(__name__)


class SubscriptionAction(str, Enum):
    """What happened to a subscription."""
    CREATED = "CREATED"
    UPGRADED = "UPGRADED"
    RENEWED = "RENEWED"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class SubscriptionChanged:
    """Audit record of a committed subscription change."""
    organization_id: str
    subscription_id: str
    action: SubscriptionAction
    metadata: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    @property
    def audit_action(self) -> str:
        return f"SUBSCRIPTION_{self.action.value}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "action": self.audit_action,
            "entity_type": "Subscription",
            "entity_id": self.subscription_id,
            "metadata": self.metadata,
            "occurred_at": self.occurred_at.isoformat(),
        }


class AuditPublisher:
    """Output channel for ``SubscriptionChanged`` events."""

    async def publish(self, event: SubscriptionChanged) -> None:
        raise NotImplementedError


class CeleryAuditPublisher(AuditPublisher):
    """Publishes events to the audit consumer task on its own queue."""

    async def publish(self, event: SubscriptionChanged) -> None:
        # Broker publish blocks, so it runs in the default thread pool
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, record_subscription_change.delay, event.to_dict())


class InMemoryAuditPublisher(AuditPublisher):
    """Collects events in a list, for local runs and tests."""

    def __init__(self):
        self.events: list[SubscriptionChanged] = []

    async def publish(self, event: SubscriptionChanged) -> None:
        self.events.append(event)


async def publish_after_commit(publisher: AuditPublisher, event: SubscriptionChanged) -> bool:
    """Publish an event, logging instead of raising on failure.

    Returns:
        True if the publisher accepted the event.
    """
    try:
        await publisher.publish(event)
        return True
    except Exception as e:
        log_error(
            logger,
            "Failed to publish subscription change",
            exception=e,
            organization_id=event.organization_id,
            subscription_id=event.subscription_id,
            action=event.audit_action,
        )
        return False
