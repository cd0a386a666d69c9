"""Billing command handlers.

Each handler performs one read-modify-write of an organization's subscription
and payments inside the caller's unit of work. Handlers never commit: the
dispatcher commits together with the ledger update and publishes the
returned events afterwards.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from billing_engine.core.config import settings
from billing_engine.core.logging import log_info, log_warning
from billing_engine.modules.payment.models import (
    DuplicatePaymentError,
    Payment,
    PaymentStatus,
    PaymentValidationError,
)
from billing_engine.modules.subscription.events import SubscriptionAction, SubscriptionChanged
from billing_engine.modules.subscription.models import Subscription, SubscriptionDomainError
from billing_engine.modules.usage.models import UsageError
from billing_engine.modules.webhook.schemas import (
    CheckoutCompletedCommand,
    InvoiceFailedCommand,
    PaymentSucceededCommand,
    SubscriptionCanceledCommand,
)

logger = logging.getLogger(__name__)


class BillingCommandError(Exception):
    """Base exception for billing command handling."""
    pass


class CommandValidationError(BillingCommandError):
    """Raised when a command lacks data the handler needs."""
    pass


class SubscriptionNotFoundError(BillingCommandError):
    """Raised when the organization has no subscription yet.

    Treated as transient: the subscription may be created by an event that
    has not been processed yet.
    """

    def __init__(self, organization_id: str):
        self.organization_id = organization_id
        super().__init__(f"Subscription not found for organization: {organization_id}")


# Rejections that will fail the same way on every retry.
BUSINESS_RULE_ERRORS: tuple[type[Exception], ...] = (
    SubscriptionDomainError,
    PaymentValidationError,
    UsageError,
    CommandValidationError,
)

# The effect was already applied by an earlier delivery.
ALREADY_APPLIED_ERRORS: tuple[type[Exception], ...] = (DuplicatePaymentError,)


@dataclass(frozen=True)
class HandlerResult:
    """Outcome of a successful handler run."""
    action: str
    subscription_id: Optional[str] = None
    events: tuple[SubscriptionChanged, ...] = ()
    detail: dict[str, Any] = field(default_factory=dict)


def _require_organization(organization_id: Optional[str], event_name: str) -> str:
    if not organization_id:
        raise CommandValidationError(
            f"organizationId is required in provider metadata for {event_name}"
        )
    return organization_id


async def _load_subscription(uow, organization_id: str) -> Subscription:
    subscription = await uow.subscriptions.find_by_organization_id(
        organization_id, for_update=True
    )
    if subscription is None:
        raise SubscriptionNotFoundError(organization_id)
    return subscription


async def _ensure_new_payment(uow, provider_payment_id: str) -> None:
    if await uow.payments.exists_by_provider_payment_id(provider_payment_id):
        raise DuplicatePaymentError(provider_payment_id)


async def handle_payment_succeeded(
    command: PaymentSucceededCommand, uow, now: datetime
) -> HandlerResult:
    """Upgrade the subscription to the paid plan and record the payment."""
    organization_id = _require_organization(command.organization_id, "payment_intent.succeeded")
    await _ensure_new_payment(uow, command.provider_payment_id)

    subscription = await _load_subscription(uow, organization_id)
    previous_plan = subscription.plan
    subscription.upgrade_to(command.plan, command.duration_days, now=now)

    payment = Payment.record(
        organization_id=organization_id,
        subscription_id=subscription.id,
        amount=command.amount,
        currency=command.currency,
        status=PaymentStatus.SUCCEEDED,
        provider_payment_id=command.provider_payment_id,
        now=now,
    )
    await uow.subscriptions.save(subscription)
    await uow.payments.add(payment)

    log_info(
        logger,
        "Payment succeeded, subscription upgraded",
        organization_id=organization_id,
        subscription_id=str(subscription.id),
        previous_plan=previous_plan,
        plan=subscription.plan,
        provider_payment_id=command.provider_payment_id,
    )

    return HandlerResult(
        action="subscription_upgraded",
        subscription_id=str(subscription.id),
        events=(
            SubscriptionChanged(
                organization_id=organization_id,
                subscription_id=str(subscription.id),
                action=SubscriptionAction.UPGRADED,
                metadata={
                    "previous_plan": previous_plan,
                    "plan": subscription.plan,
                    "duration_days": command.duration_days,
                    "provider_payment_id": command.provider_payment_id,
                    "amount": str(payment.amount),
                    "currency": payment.currency,
                },
            ),
        ),
    )


async def handle_invoice_failed(
    command: InvoiceFailedCommand, uow, now: datetime
) -> HandlerResult:
    """Record the failed charge, expiring the subscription past the threshold."""
    organization_id = _require_organization(command.organization_id, "invoice.payment_failed")

    # One invoice is retried by the provider; each attempt is its own payment.
    provider_payment_id = f"{command.invoice_id}:{command.attempt_count}"
    await _ensure_new_payment(uow, provider_payment_id)

    subscription = await _load_subscription(uow, organization_id)
    threshold = settings.INVOICE_FAILURE_EXPIRE_THRESHOLD
    hard_failure = command.attempt_count >= threshold

    if hard_failure:
        subscription.expire()
        await uow.subscriptions.save(subscription)

    payment = Payment.record(
        organization_id=organization_id,
        subscription_id=subscription.id,
        amount=command.amount_due,
        currency=command.currency,
        status=PaymentStatus.FAILED,
        provider_payment_id=provider_payment_id,
        now=now,
    )
    await uow.payments.add(payment)

    if not hard_failure:
        log_warning(
            logger,
            "Soft payment failure recorded, subscription still active",
            organization_id=organization_id,
            subscription_id=str(subscription.id),
            invoice_id=command.invoice_id,
            attempt_count=command.attempt_count,
            max_before_expire=threshold,
        )
        return HandlerResult(
            action="payment_failure_logged",
            subscription_id=str(subscription.id),
            detail={"attempt_count": command.attempt_count},
        )

    log_warning(
        logger,
        "Subscription expired after repeated payment failures",
        organization_id=organization_id,
        subscription_id=str(subscription.id),
        invoice_id=command.invoice_id,
        attempt_count=command.attempt_count,
    )
    return HandlerResult(
        action="subscription_expired",
        subscription_id=str(subscription.id),
        events=(
            SubscriptionChanged(
                organization_id=organization_id,
                subscription_id=str(subscription.id),
                action=SubscriptionAction.EXPIRED,
                metadata={
                    "reason": "max_payment_failures",
                    "attempt_count": command.attempt_count,
                    "invoice_id": command.invoice_id,
                },
            ),
        ),
        detail={"attempt_count": command.attempt_count},
    )


async def handle_subscription_canceled(
    command: SubscriptionCanceledCommand, uow, now: datetime
) -> HandlerResult:
    """Cancel the organization's subscription."""
    organization_id = _require_organization(
        command.organization_id, "customer.subscription.deleted"
    )
    subscription = await _load_subscription(uow, organization_id)
    subscription.cancel()
    await uow.subscriptions.save(subscription)

    log_info(
        logger,
        "Subscription canceled",
        organization_id=organization_id,
        subscription_id=str(subscription.id),
        provider_subscription_id=command.provider_subscription_id,
    )

    return HandlerResult(
        action="subscription_canceled",
        subscription_id=str(subscription.id),
        events=(
            SubscriptionChanged(
                organization_id=organization_id,
                subscription_id=str(subscription.id),
                action=SubscriptionAction.CANCELED,
                metadata={
                    "reason": "provider_subscription_deleted",
                    "provider_subscription_id": command.provider_subscription_id,
                    "canceled_at": now.isoformat(),
                },
            ),
        ),
    )


async def handle_checkout_completed(
    command: CheckoutCompletedCommand, uow, now: datetime
) -> HandlerResult:
    """Activate the purchased plan, creating the subscription if needed."""
    organization_id = _require_organization(
        command.organization_id, "checkout.session.completed"
    )
    subscription = await uow.subscriptions.find_by_organization_id(
        organization_id, for_update=True
    )

    if subscription is None:
        subscription = Subscription.create(
            organization_id, command.plan, command.duration_days, now=now
        )
        action = SubscriptionAction.CREATED
        previous_plan = None
    else:
        previous_plan = subscription.plan
        subscription.upgrade_to(command.plan, command.duration_days, now=now)
        action = SubscriptionAction.UPGRADED

    await uow.subscriptions.save(subscription)

    log_info(
        logger,
        "Checkout completed, subscription activated",
        organization_id=organization_id,
        subscription_id=str(subscription.id),
        plan=subscription.plan,
        checkout_session_id=command.session_id,
        user_id=command.user_id,
    )

    return HandlerResult(
        action=f"subscription_{action.value.lower()}",
        subscription_id=str(subscription.id),
        events=(
            SubscriptionChanged(
                organization_id=organization_id,
                subscription_id=str(subscription.id),
                action=action,
                metadata={
                    "previous_plan": previous_plan,
                    "plan": subscription.plan,
                    "duration_days": command.duration_days,
                    "checkout_session_id": command.session_id,
                    "provider_subscription_id": command.provider_subscription_id,
                },
            ),
        ),
    )
