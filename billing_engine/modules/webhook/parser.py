"""Parsing of provider event objects into billing commands.

Only this module knows the provider's object layout. Organization, plan and
period length travel in the object's ``metadata`` as set at checkout time.
"""

import math
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

from pydantic import ValidationError

from billing_engine.modules.subscription.models import PlanTier
from billing_engine.modules.webhook.schemas import (
    BillingCommand,
    CheckoutCompletedCommand,
    InvoiceFailedCommand,
    JobName,
    EVENT_TYPE_TO_JOB_NAME,
    PaymentSucceededCommand,
    SubscriptionCanceledCommand,
)

DEFAULT_CURRENCY = "usd"
DEFAULT_PLAN = PlanTier.PRO.value
DEFAULT_DURATION_DAYS = 30.0

ZERO_DECIMAL_CURRENCIES: set[str] = {
    "bif",
    "clp",
    "djf",
    "gnf",
    "jpy",
    "kmf",
    "krw",
    "mga",
    "pyg",
    "rwf",
    "ugx",
    "vnd",
    "vuv",
    "xaf",
    "xof",
    "xpf",
}


class CommandParseError(ValueError):
    """Raised when an event object cannot be turned into a command."""
    pass


def resolve_job_name(event_type: str) -> Optional[JobName]:
    """Map a provider event type to its job name, or None if unhandled."""
    return EVENT_TYPE_TO_JOB_NAME.get(event_type)


def convert_minor_amount(value: Any, currency: str) -> Decimal:
    """Convert a provider amount in minor units (cents) to a decimal.

    Raises:
        CommandParseError: If the value is not a non-negative number.
    """
    if value in (None, ""):
        return Decimal("0.00")
    if isinstance(value, bool):
        raise CommandParseError(f"Invalid amount: {value!r}")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise CommandParseError(f"Invalid amount: {value!r}")
    if not amount.is_finite() or amount < 0:
        raise CommandParseError(f"Invalid amount: {value!r}")
    divisor = Decimal("1") if currency and currency.lower() in ZERO_DECIMAL_CURRENCIES else Decimal("100")
    try:
        return (amount / divisor).quantize(Decimal("0.01"))
    except InvalidOperation:
        raise CommandParseError(f"Amount out of range: {value!r}")


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    metadata = obj.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _required_str(obj: dict[str, Any], key: str) -> str:
    value = _optional_str(obj.get(key))
    if value is None:
        raise CommandParseError(f"Event object has no {key!r}")
    return value


def _currency(obj: dict[str, Any]) -> str:
    return (_optional_str(obj.get("currency")) or DEFAULT_CURRENCY).lower()


def _duration_days(metadata: dict[str, Any]) -> float:
    raw = metadata.get("durationInDays", metadata.get("durationDays"))
    if raw in (None, ""):
        return DEFAULT_DURATION_DAYS
    try:
        days = float(raw)
    except (TypeError, ValueError):
        raise CommandParseError(f"Invalid durationInDays: {raw!r}")
    if not math.isfinite(days):
        raise CommandParseError(f"Invalid durationInDays: {raw!r}")
    return days


def _attempt_count(obj: dict[str, Any], metadata: dict[str, Any]) -> int:
    for raw in (metadata.get("attemptCount"), obj.get("attempt_count")):
        if raw in (None, "", 0, "0"):
            continue
        try:
            return int(raw)
        except (TypeError, ValueError):
            raise CommandParseError(f"Invalid attempt count: {raw!r}")
    return 1


def parse_payment_succeeded(obj: dict[str, Any]) -> PaymentSucceededCommand:
    metadata = _metadata(obj)
    currency = _currency(obj)
    return PaymentSucceededCommand(
        organization_id=_optional_str(metadata.get("organizationId")),
        provider_payment_id=_required_str(obj, "id"),
        provider_subscription_id=_optional_str(obj.get("subscription")),
        customer_id=_optional_str(obj.get("customer")),
        amount=convert_minor_amount(obj.get("amount_received"), currency),
        currency=currency,
        plan=_optional_str(metadata.get("plan")) or DEFAULT_PLAN,
        duration_days=_duration_days(metadata),
    )


def parse_subscription_canceled(obj: dict[str, Any]) -> SubscriptionCanceledCommand:
    metadata = _metadata(obj)
    return SubscriptionCanceledCommand(
        organization_id=_optional_str(metadata.get("organizationId")),
        provider_subscription_id=_optional_str(obj.get("id")),
        customer_id=_optional_str(obj.get("customer")),
    )


def parse_invoice_failed(obj: dict[str, Any]) -> InvoiceFailedCommand:
    metadata = _metadata(obj)
    currency = _currency(obj)
    return InvoiceFailedCommand(
        organization_id=_optional_str(metadata.get("organizationId")),
        invoice_id=_required_str(obj, "id"),
        provider_subscription_id=_optional_str(obj.get("subscription")),
        customer_id=_optional_str(obj.get("customer")),
        amount_due=convert_minor_amount(obj.get("amount_due"), currency),
        currency=currency,
        attempt_count=_attempt_count(obj, metadata),
    )


def parse_checkout_completed(obj: dict[str, Any]) -> CheckoutCompletedCommand:
    metadata = _metadata(obj)
    return CheckoutCompletedCommand(
        organization_id=_optional_str(metadata.get("organizationId")),
        session_id=_required_str(obj, "id"),
        provider_subscription_id=_optional_str(obj.get("subscription")),
        customer_id=_optional_str(obj.get("customer")),
        user_id=_optional_str(metadata.get("userId")),
        plan=_optional_str(metadata.get("plan")) or DEFAULT_PLAN,
        duration_days=_duration_days(metadata),
    )


PARSERS: dict[JobName, Callable[[dict[str, Any]], BillingCommand]] = {
    JobName.PAYMENT_SUCCEEDED: parse_payment_succeeded,
    JobName.SUBSCRIPTION_CANCELED: parse_subscription_canceled,
    JobName.INVOICE_FAILED: parse_invoice_failed,
    JobName.CHECKOUT_COMPLETED: parse_checkout_completed,
}


def parse_command(job_name: JobName, obj: dict[str, Any]) -> BillingCommand:
    """Parse an event object for the given job.

    Raises:
        CommandParseError: If the object is malformed for this job.
    """
    try:
        return PARSERS[job_name](obj)
    except ValidationError as e:
        raise CommandParseError(str(e)) from e
