"""Repository for usage counter database operations."""

from typing import Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.modules.usage.models import OrganizationUsage


class UsageRepository:
    """Repository for organization usage operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_organization_and_type(
        self, organization_id: str, resource_type: str
    ) -> Optional[OrganizationUsage]:
        result = await self.session.execute(
            select(OrganizationUsage)
            .where(
                and_(
                    OrganizationUsage.organization_id == organization_id,
                    OrganizationUsage.resource_type == resource_type,
                )
            )
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def save(self, usage: OrganizationUsage) -> OrganizationUsage:
        self.session.add(usage)
        await self.session.flush()
        return usage
