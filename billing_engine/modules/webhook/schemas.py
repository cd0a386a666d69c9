"""Pydantic schemas for webhook ingestion and billing jobs."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from billing_engine.modules.payment.models import MAX_PAYMENT_AMOUNT, PROVIDER_PAYMENT_ID_MAX_LENGTH
from billing_engine.modules.subscription.models import ORGANIZATION_ID_MAX_LENGTH


class ProviderEventType(str, Enum):
    """Provider event types the pipeline acts on."""
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    CUSTOMER_SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"


class JobName(str, Enum):
    """Queue job names, one per billing command."""
    PAYMENT_SUCCEEDED = "stripe.payment_succeeded"
    SUBSCRIPTION_CANCELED = "stripe.subscription_canceled"
    INVOICE_FAILED = "stripe.invoice_failed"
    CHECKOUT_COMPLETED = "stripe.checkout_completed"


EVENT_TYPE_TO_JOB_NAME: dict[str, JobName] = {
    ProviderEventType.PAYMENT_INTENT_SUCCEEDED.value: JobName.PAYMENT_SUCCEEDED,
    ProviderEventType.CUSTOMER_SUBSCRIPTION_DELETED.value: JobName.SUBSCRIPTION_CANCELED,
    ProviderEventType.INVOICE_PAYMENT_FAILED.value: JobName.INVOICE_FAILED,
    ProviderEventType.CHECKOUT_SESSION_COMPLETED.value: JobName.CHECKOUT_COMPLETED,
}


# ==================== Provider envelope ====================

class EventData(BaseModel):
    """``data`` member of a provider event."""
    model_config = ConfigDict(extra="allow")

    object: dict[str, Any]


class WebhookEnvelope(BaseModel):
    """Provider event envelope ``{id, type, created, data: {object}}``."""
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1, max_length=255)
    type: str = Field(..., min_length=1, max_length=100)
    created: Optional[int] = None
    data: EventData


# ==================== Normalized billing commands ====================

# Bounds match the columns the commands are written to
OrganizationId = Annotated[Optional[str], Field(max_length=ORGANIZATION_ID_MAX_LENGTH)]
CurrencyCode = Annotated[str, Field(pattern=r"^[A-Za-z]{3}$")]
MoneyAmount = Annotated[Decimal, Field(ge=0, le=MAX_PAYMENT_AMOUNT, decimal_places=2)]
ProviderId = Annotated[str, Field(min_length=1, max_length=PROVIDER_PAYMENT_ID_MAX_LENGTH)]


class PaymentSucceededCommand(BaseModel):
    """A payment for a plan period went through."""
    kind: Literal["payment_succeeded"] = "payment_succeeded"
    organization_id: OrganizationId = None
    provider_payment_id: ProviderId
    provider_subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    amount: MoneyAmount
    currency: CurrencyCode
    plan: str
    duration_days: float


class SubscriptionCanceledCommand(BaseModel):
    """The provider-side subscription was deleted."""
    kind: Literal["subscription_canceled"] = "subscription_canceled"
    organization_id: OrganizationId = None
    provider_subscription_id: Optional[str] = None
    customer_id: Optional[str] = None


class InvoiceFailedCommand(BaseModel):
    """An invoice charge attempt failed."""
    kind: Literal["invoice_failed"] = "invoice_failed"
    organization_id: OrganizationId = None
    # Leaves room for the ":<attempt_count>" suffix of the payment ID
    invoice_id: str = Field(..., min_length=1, max_length=PROVIDER_PAYMENT_ID_MAX_LENGTH - 5)
    provider_subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    amount_due: MoneyAmount
    currency: CurrencyCode
    attempt_count: int = Field(1, ge=1, le=9999)


class CheckoutCompletedCommand(BaseModel):
    """A hosted checkout session finished."""
    kind: Literal["checkout_completed"] = "checkout_completed"
    organization_id: OrganizationId = None
    session_id: str
    provider_subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    user_id: Optional[str] = None
    plan: str
    duration_days: float


BillingCommand = Annotated[
    Union[
        PaymentSucceededCommand,
        SubscriptionCanceledCommand,
        InvoiceFailedCommand,
        CheckoutCompletedCommand,
    ],
    Field(discriminator="kind"),
]


class JobPayload(BaseModel):
    """What goes on the queue and is stored on the ledger row for replay."""
    event_id: str
    event_type: str
    job_name: JobName
    command: BillingCommand


# ==================== Responses ====================

class WebhookAck(BaseModel):
    """Acknowledgement returned to the provider."""
    received: bool = True


class DeadLetterEntry(BaseModel):
    """FAILED ledger row as listed to operators."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    status: str
    error_message: Optional[str] = None
    received_at: datetime
    failed_at: Optional[datetime] = None
    payload: Optional[dict[str, Any]] = None


class DeadLetterListResponse(BaseModel):
    items: list[DeadLetterEntry]
    total: int


class ReplayResponse(BaseModel):
    event_id: str
    job_id: str
    status: str
