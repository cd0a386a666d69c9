"""Repository for subscription database operations."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, and_, desc
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.modules.subscription.models import (
    PlanTier,
    Subscription,
    SubscriptionStatus,
)


class SubscriptionRepository:
    """Repository for subscription operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save(self, subscription: Subscription) -> Subscription:
        """Add or update a subscription within the current transaction."""
        self.session.add(subscription)
        await self.session.flush()
        return subscription

    async def get_by_id(
        self, subscription_id: uuid.UUID, for_update: bool = False
    ) -> Optional[Subscription]:
        query = select(Subscription).where(Subscription.id == subscription_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def find_by_organization_id(
        self, organization_id: str, for_update: bool = False
    ) -> Optional[Subscription]:
        """Get the organization's current subscription (latest created).

        Args:
            organization_id: Organization ID
            for_update: Lock the row until the transaction ends
        """
        query = (
            select(Subscription)
            .where(Subscription.organization_id == organization_id)
            .order_by(desc(Subscription.created_at))
            .limit(1)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def find_all_expired(self, now: datetime) -> list[Subscription]:
        """FREE ACTIVE subscriptions past their period end.

        Mirrors ``Subscription.is_due_for_expiration``.
        """
        result = await self.session.execute(
            select(Subscription)
            .where(
                and_(
                    Subscription.status == SubscriptionStatus.ACTIVE.value,
                    Subscription.plan == PlanTier.FREE.value,
                    Subscription.current_period_end < now,
                )
            )
            .order_by(Subscription.current_period_end)
        )
        return list(result.scalars().all())

    async def find_all_due_for_renewal(self, now: datetime) -> list[Subscription]:
        """Paid ACTIVE subscriptions past their period end.

        Mirrors ``Subscription.is_due_for_renewal``.
        """
        result = await self.session.execute(
            select(Subscription)
            .where(
                and_(
                    Subscription.status == SubscriptionStatus.ACTIVE.value,
                    Subscription.plan != PlanTier.FREE.value,
                    Subscription.current_period_end < now,
                )
            )
            .order_by(Subscription.current_period_end)
        )
        return list(result.scalars().all())
