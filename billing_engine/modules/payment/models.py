"""Payment model.

Payments are immutable once recorded. ``provider_payment_id`` is unique so a
provider callback delivered twice can never produce two rows.
"""

import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Union

from sqlalchemy import DateTime, ForeignKey, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from billing_engine.core.database import Base
from billing_engine.modules.subscription.models import ORGANIZATION_ID_MAX_LENGTH, utcnow

# Largest value a Numeric(12, 2) column holds
MAX_PAYMENT_AMOUNT = Decimal("9999999999.99")
PROVIDER_PAYMENT_ID_MAX_LENGTH = 255


class PaymentStatus(str, Enum):
    """Payment status values."""
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    PENDING = "PENDING"


class PaymentError(Exception):
    """Base exception for payment errors."""
    pass


class PaymentValidationError(PaymentError):
    """Raised when a payment cannot be recorded as given."""
    pass


class DuplicatePaymentError(PaymentError):
    """Raised when a provider payment ID has already been recorded."""

    def __init__(self, provider_payment_id: Optional[str]):
        self.provider_payment_id = provider_payment_id
        super().__init__(f"Payment {provider_payment_id} already recorded")


class Payment(Base):
    """Payment attempt against a subscription."""

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[str] = mapped_column(
        String(ORGANIZATION_ID_MAX_LENGTH), nullable=False, index=True
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_payment_id: Mapped[Optional[str]] = mapped_column(
        String(PROVIDER_PAYMENT_ID_MAX_LENGTH), unique=True, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    @classmethod
    def record(
        cls,
        organization_id: str,
        subscription_id: uuid.UUID,
        amount: Union[Decimal, int, float, str],
        currency: str,
        status: Union[str, PaymentStatus],
        provider_payment_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "Payment":
        """Build a new payment row.

        Raises:
            PaymentValidationError: On an amount that is negative, non-numeric
                or too large for the column, a currency that is not a
                three-letter code, an unknown status, or identifiers longer
                than their columns.
        """
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            raise PaymentValidationError(f"Invalid payment amount: {amount!r}")
        if not value.is_finite() or value < 0:
            raise PaymentValidationError(f"Payment amount must be non-negative, got {amount!r}")
        if value > MAX_PAYMENT_AMOUNT or value.quantize(Decimal("0.01")) > MAX_PAYMENT_AMOUNT:
            raise PaymentValidationError(f"Payment amount out of range: {amount!r}")

        if not currency or not currency.strip():
            raise PaymentValidationError("Payment currency is required")
        code = currency.strip().upper()
        if len(code) != 3 or not code.isascii() or not code.isalpha():
            raise PaymentValidationError(f"Currency must be a three-letter code, got {currency!r}")

        if not organization_id or len(organization_id) > ORGANIZATION_ID_MAX_LENGTH:
            raise PaymentValidationError(f"Invalid organization ID: {organization_id!r}")
        if provider_payment_id is not None and len(provider_payment_id) > PROVIDER_PAYMENT_ID_MAX_LENGTH:
            raise PaymentValidationError("Provider payment ID too long")

        try:
            payment_status = PaymentStatus(status)
        except ValueError:
            raise PaymentValidationError(f"Unknown payment status: {status!r}")

        return cls(
            id=uuid.uuid4(),
            organization_id=organization_id,
            subscription_id=subscription_id,
            amount=value.quantize(Decimal("0.01")),
            currency=code,
            status=payment_status.value,
            provider_payment_id=provider_payment_id,
            created_at=now or utcnow(),
        )

    def __repr__(self) -> str:
        return (
            f"<Payment id={self.id} org={self.organization_id} "
            f"amount={self.amount} {self.currency} status={self.status}>"
        )
