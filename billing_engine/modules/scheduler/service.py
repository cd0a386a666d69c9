"""Scheduled subscription sweeps.

Both sweeps process each subscription in its own serializable transaction.
A failing item is logged and counted but never stops the sweep, and a sweep
never raises.

Expiration and renewal pick disjoint sets by plan alone: a paid subscription
past its period end belongs to renewal however late the sweep fires, and a
FREE one belongs to expiration. A subscription more than one period behind
is renewed one period per run.
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from billing_engine.core.config import settings
from billing_engine.core.logging import log_error, log_info
from billing_engine.core.metrics import SWEEP_ITEMS_TOTAL, SWEEP_LAST_RUN_TIMESTAMP
from billing_engine.modules.payment.models import Payment, PaymentStatus
from billing_engine.modules.subscription.events import (
    AuditPublisher,
    SubscriptionAction,
    SubscriptionChanged,
    publish_after_commit,
)
from billing_engine.modules.subscription.models import Subscription, get_plan_terms, utcnow
from billing_engine.modules.usage.models import OrganizationUsage, UsageResourceType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchItemError:
    """One subscription the sweep could not process."""
    subscription_id: Optional[str]
    organization_id: Optional[str]
    error: str


@dataclass
class BatchResult:
    """Aggregate outcome of a sweep run."""
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[BatchItemError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SubscriptionSweep:
    """Template for a sweep over due subscriptions.

    Subclasses provide ``sweep_name``, ``find_due`` and ``apply``.
    """

    sweep_name = "sweep"

    def __init__(
        self,
        uow_factory: Callable[[], Any],
        audit_publisher: AuditPublisher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.uow_factory = uow_factory
        self.audit_publisher = audit_publisher
        self.clock = clock

    async def find_due(self, uow, now: datetime) -> list[Subscription]:
        raise NotImplementedError

    def is_due(self, subscription: Subscription, now: datetime) -> bool:
        raise NotImplementedError

    async def apply(self, uow, subscription: Subscription, now: datetime) -> SubscriptionChanged:
        raise NotImplementedError

    async def execute(self) -> BatchResult:
        now = self.clock()
        result = BatchResult()

        try:
            async with self.uow_factory() as uow:
                due = await self.find_due(uow, now)
                candidates = [(s.id, s.organization_id) for s in due]
        except Exception as e:
            log_error(logger, f"Failed to list subscriptions for {self.sweep_name}", exception=e)
            result.errors.append(BatchItemError(None, None, f"{type(e).__name__}: {e}"))
            return result

        for subscription_id, organization_id in candidates:
            result.total += 1
            try:
                event = await self._process_one(subscription_id, now)
            except Exception as e:
                result.failed += 1
                result.errors.append(
                    BatchItemError(str(subscription_id), organization_id, f"{type(e).__name__}: {e}")
                )
                SWEEP_ITEMS_TOTAL.labels(sweep=self.sweep_name, result="failed").inc()
                log_error(
                    logger,
                    f"Failed to process subscription in {self.sweep_name}",
                    exception=e,
                    subscription_id=str(subscription_id),
                    organization_id=organization_id,
                )
                continue

            if event is None:
                result.skipped += 1
                SWEEP_ITEMS_TOTAL.labels(sweep=self.sweep_name, result="skipped").inc()
                continue

            result.succeeded += 1
            SWEEP_ITEMS_TOTAL.labels(sweep=self.sweep_name, result="succeeded").inc()
            await publish_after_commit(self.audit_publisher, event)

        SWEEP_LAST_RUN_TIMESTAMP.labels(sweep=self.sweep_name).set(now.timestamp())
        log_info(
            logger,
            f"{self.sweep_name} completed",
            total=result.total,
            succeeded=result.succeeded,
            failed=result.failed,
            skipped=result.skipped,
        )
        return result

    async def _process_one(
        self, subscription_id: uuid.UUID, now: datetime
    ) -> Optional[SubscriptionChanged]:
        async with self.uow_factory() as uow:
            subscription = await uow.subscriptions.get_by_id(subscription_id, for_update=True)
            # Changed since listing (webhook or the other sweep got there first)
            if subscription is None or not self.is_due(subscription, now):
                return None
            event = await self.apply(uow, subscription, now)
            await uow.commit()
        return event


class ExpireAllDueSubscriptions(SubscriptionSweep):
    """Expire FREE subscriptions whose period has ended."""

    sweep_name = "expiration_sweep"

    async def find_due(self, uow, now: datetime) -> list[Subscription]:
        return await uow.subscriptions.find_all_expired(now)

    def is_due(self, subscription: Subscription, now: datetime) -> bool:
        return subscription.is_due_for_expiration(now)

    async def apply(self, uow, subscription: Subscription, now: datetime) -> SubscriptionChanged:
        subscription.expire()
        await uow.subscriptions.save(subscription)
        return SubscriptionChanged(
            organization_id=subscription.organization_id,
            subscription_id=str(subscription.id),
            action=SubscriptionAction.EXPIRED,
            metadata={
                "reason": "period_ended",
                "plan": subscription.plan,
                "current_period_end": subscription.current_period_end.isoformat(),
            },
        )


class ProcessPeriodicBilling(SubscriptionSweep):
    """Renew paid subscriptions, reset usage and record the renewal charge."""

    sweep_name = "renewal_sweep"

    def __init__(self, *args, renewal_days: Optional[int] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.renewal_days = renewal_days or settings.RENEWAL_PERIOD_DAYS

    async def find_due(self, uow, now: datetime) -> list[Subscription]:
        return await uow.subscriptions.find_all_due_for_renewal(now)

    def is_due(self, subscription: Subscription, now: datetime) -> bool:
        return subscription.is_due_for_renewal(now)

    async def apply(self, uow, subscription: Subscription, now: datetime) -> SubscriptionChanged:
        organization_id = subscription.organization_id
        terms = get_plan_terms(subscription.plan)

        subscription.renew(self.renewal_days)
        await uow.subscriptions.save(subscription)

        usage = await uow.usage.find_by_organization_and_type(
            organization_id, UsageResourceType.API_CALLS.value
        )
        if usage is None:
            usage = OrganizationUsage.create(
                organization_id,
                UsageResourceType.API_CALLS.value,
                terms.api_calls_limit,
                subscription.current_period_end,
            )
        else:
            usage.reset(terms.api_calls_limit, subscription.current_period_end)
        await uow.usage.save(usage)

        # Keyed on the period so a repeated renewal of the same period cannot charge twice
        payment = Payment.record(
            organization_id=organization_id,
            subscription_id=subscription.id,
            amount=terms.renewal_price,
            currency=terms.currency,
            status=PaymentStatus.SUCCEEDED,
            provider_payment_id=f"renewal:{subscription.id}:{subscription.current_period_start.isoformat()}",
            now=now,
        )
        await uow.payments.add(payment)

        return SubscriptionChanged(
            organization_id=organization_id,
            subscription_id=str(subscription.id),
            action=SubscriptionAction.RENEWED,
            metadata={
                "plan": subscription.plan,
                "current_period_start": subscription.current_period_start.isoformat(),
                "current_period_end": subscription.current_period_end.isoformat(),
                "amount": str(payment.amount),
                "currency": payment.currency,
                "api_calls_limit": terms.api_calls_limit,
            },
        )
