"""Transaction boundary for billing writes.

A unit of work owns one session and one transaction. Repositories built on
it share that transaction, and nothing is persisted unless ``commit`` is
called before the block exits.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billing_engine.modules.payment.repository import PaymentRepository
from billing_engine.modules.subscription.repository import SubscriptionRepository
from billing_engine.modules.usage.repository import UsageRepository
from billing_engine.modules.webhook.repository import WebhookEventRepository

SERIALIZABLE = "SERIALIZABLE"
READ_COMMITTED = "READ COMMITTED"


class SqlAlchemyUnitOfWork:
    """Unit of work over an ``AsyncSession``.

    Usage:
        async with SqlAlchemyUnitOfWork(session_maker) as uow:
            subscription = await uow.subscriptions.find_by_organization_id(org_id)
            ...
            await uow.commit()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        isolation_level: str = SERIALIZABLE,
    ):
        self.session_factory = session_factory
        self.isolation_level = isolation_level
        self.session: Optional[AsyncSession] = None
        self._committed = False

    async def __aenter__(self) -> "SqlAlchemyUnitOfWork":
        self.session = self.session_factory()
        # Isolation must be set before the first statement of the transaction
        await self.session.connection(
            execution_options={"isolation_level": self.isolation_level}
        )
        self._committed = False
        self.subscriptions = SubscriptionRepository(self.session)
        self.payments = PaymentRepository(self.session)
        self.usage = UsageRepository(self.session)
        self.webhook_events = WebhookEventRepository(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if not self._committed:
                await self.session.rollback()
        finally:
            await self.session.close()

    async def commit(self) -> None:
        await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        await self.session.rollback()


def serializable_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Factory for units of work used by billing handlers and sweeps."""
    return lambda: SqlAlchemyUnitOfWork(session_factory, SERIALIZABLE)


def read_committed_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Factory for units of work used by ledger-only writes."""
    return lambda: SqlAlchemyUnitOfWork(session_factory, READ_COMMITTED)
