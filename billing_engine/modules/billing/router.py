"""API Router for subscription status queries."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.core.database import get_session
from billing_engine.modules.billing.schemas import (
    SubscriptionStatusResponse,
    SubscriptionSummary,
)
from billing_engine.modules.subscription.repository import SubscriptionRepository

router = APIRouter(prefix="/billing", tags=["billing"])


def get_subscription_repository(
    session: AsyncSession = Depends(get_session),
) -> SubscriptionRepository:
    return SubscriptionRepository(session)


@router.get("/subscriptions/{organization_id}", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    organization_id: str,
    repository: SubscriptionRepository = Depends(get_subscription_repository),
):
    """Get the organization's latest subscription and whether it is active now."""
    subscription = await repository.find_by_organization_id(organization_id)
    if subscription is None:
        return SubscriptionStatusResponse(organization_id=organization_id)

    return SubscriptionStatusResponse(
        organization_id=organization_id,
        subscription=SubscriptionSummary(
            id=subscription.id,
            plan=subscription.plan,
            status=subscription.status,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            is_active=subscription.is_active(),
        ),
    )
