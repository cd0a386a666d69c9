"""HTTP tests for the subscription status endpoint."""

from datetime import timedelta
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from billing_engine.main import app
from billing_engine.modules.billing.router import get_subscription_repository
from billing_engine.modules.subscription.models import PlanTier, Subscription, SubscriptionStatus, utcnow


class StubSubscriptionRepository:
    def __init__(self, subscriptions: list[Subscription]):
        self.subscriptions = subscriptions

    async def find_by_organization_id(
        self, organization_id: str, for_update: bool = False
    ) -> Optional[Subscription]:
        matching = [s for s in self.subscriptions if s.organization_id == organization_id]
        return matching[-1] if matching else None


@pytest.fixture
def subscriptions() -> list[Subscription]:
    return []


@pytest.fixture
def client(subscriptions: list[Subscription]):
    app.dependency_overrides[get_subscription_repository] = lambda: StubSubscriptionRepository(subscriptions)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class TestSubscriptionStatus:
    def test_active_subscription(self, client, subscriptions) -> None:
        subscription = Subscription.create("org_1", PlanTier.PRO, 30)
        subscriptions.append(subscription)

        response = client.get("/billing/subscriptions/org_1")

        assert response.status_code == 200
        data = response.json()
        assert data["organization_id"] == "org_1"
        assert data["subscription"]["id"] == str(subscription.id)
        assert data["subscription"]["plan"] == PlanTier.PRO.value
        assert data["subscription"]["status"] == SubscriptionStatus.ACTIVE.value
        assert data["subscription"]["is_active"] is True

    def test_lapsed_period_is_not_active(self, client, subscriptions) -> None:
        subscriptions.append(Subscription.create("org_1", PlanTier.FREE, 30, now=utcnow() - timedelta(days=45)))

        data = client.get("/billing/subscriptions/org_1").json()

        assert data["subscription"]["status"] == SubscriptionStatus.ACTIVE.value
        assert data["subscription"]["is_active"] is False

    def test_canceled_subscription_is_not_active(self, client, subscriptions) -> None:
        subscription = Subscription.create("org_1", PlanTier.PRO, 30)
        subscription.cancel()
        subscriptions.append(subscription)

        data = client.get("/billing/subscriptions/org_1").json()

        assert data["subscription"]["status"] == SubscriptionStatus.CANCELED.value
        assert data["subscription"]["is_active"] is False

    def test_unknown_organization_has_no_subscription(self, client) -> None:
        response = client.get("/billing/subscriptions/org_missing")

        assert response.status_code == 200
        assert response.json() == {"organization_id": "org_missing", "subscription": None}
