"""Repository for payment database operations."""

from sqlalchemy import select, exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.modules.payment.models import DuplicatePaymentError, Payment


class PaymentRepository:
    """Repository for payment operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, payment: Payment) -> Payment:
        """Insert a payment within the current transaction.

        Raises:
            DuplicatePaymentError: If ``provider_payment_id`` is already taken.
        """
        self.session.add(payment)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicatePaymentError(payment.provider_payment_id) from e
        return payment

    async def exists_by_provider_payment_id(self, provider_payment_id: str) -> bool:
        result = await self.session.execute(
            select(exists().where(Payment.provider_payment_id == provider_payment_id))
        )
        return bool(result.scalar())

    async def list_by_organization(self, organization_id: str) -> list[Payment]:
        result = await self.session.execute(
            select(Payment)
            .where(Payment.organization_id == organization_id)
            .order_by(Payment.created_at)
        )
        return list(result.scalars().all())
