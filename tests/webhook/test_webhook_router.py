"""HTTP tests for the webhook and dead-letter endpoints."""

import pytest
from fastapi.testclient import TestClient

from billing_engine.core.config import settings
from billing_engine.main import app
from billing_engine.modules.webhook.gateway import IngestionGateway
from billing_engine.modules.webhook.models import WebhookEventStatus
from billing_engine.modules.webhook.replay import ReplayService
from billing_engine.modules.webhook.router import get_ingestion_gateway, get_replay_service
from billing_engine.modules.webhook.signature import SignatureVerifier
from tests.builders import SECRET, T0, encode, job_payload, payment_succeeded_event, sign
from tests.fakes import InMemoryJobQueue, InMemoryStore


@pytest.fixture
def queue() -> InMemoryJobQueue:
    return InMemoryJobQueue()


@pytest.fixture
def client(store: InMemoryStore, queue: InMemoryJobQueue):
    app.dependency_overrides[get_ingestion_gateway] = lambda: IngestionGateway(
        verifier=SignatureVerifier(SECRET),
        uow_factory=store.uow_factory(),
        queue=queue,
    )
    app.dependency_overrides[get_replay_service] = lambda: ReplayService(
        uow_factory=store.uow_factory(),
        queue=queue,
    )
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def post_event(client: TestClient, body: bytes, signature=None):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers[settings.WEBHOOK_SIGNATURE_HEADER] = signature
    return client.post("/webhook/stripe", content=body, headers=headers)


class TestReceiveWebhook:
    def test_signed_event_is_acknowledged_and_enqueued(self, client, store, queue) -> None:
        body = encode(payment_succeeded_event("evt_1", "org_1"))

        response = post_event(client, body, sign(body))

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert list(queue.jobs) == ["evt_1"]
        assert store.webhook_event("evt_1").status == WebhookEventStatus.PENDING.value

    def test_duplicate_delivery_is_acknowledged(self, client, queue) -> None:
        body = encode(payment_succeeded_event("evt_1", "org_1"))

        first = post_event(client, body, sign(body))
        second = post_event(client, body, sign(body))

        assert (first.status_code, second.status_code) == (200, 200)
        assert len(queue.jobs) == 1

    def test_unhandled_event_type_is_acknowledged(self, client, queue) -> None:
        body = encode({"id": "evt_x", "type": "customer.created", "data": {"object": {}}})

        response = post_event(client, body, sign(body))

        assert response.status_code == 200
        assert queue.jobs == {}

    def test_missing_signature_is_unauthorized(self, client, store) -> None:
        body = encode(payment_succeeded_event("evt_1", "org_1"))

        response = post_event(client, body)

        assert response.status_code == 401
        assert store.webhook_events() == []

    def test_wrong_signature_is_unauthorized(self, client) -> None:
        body = encode(payment_succeeded_event("evt_1", "org_1"))
        assert post_event(client, body, "0" * 64).status_code == 401

    def test_empty_body_is_bad_request(self, client) -> None:
        assert post_event(client, b"", sign(b"")).status_code == 400

    def test_malformed_json_is_bad_request(self, client) -> None:
        body = b"{not json"
        assert post_event(client, body, sign(body)).status_code == 400

    def test_response_carries_correlation_id(self, client) -> None:
        body = encode(payment_succeeded_event("evt_1", "org_1"))
        response = post_event(client, body, sign(body))
        assert "X-Correlation-ID" in response.headers


class TestDeadLetterEndpoints:
    def seed_failed(self, store: InMemoryStore, event_id: str) -> None:
        store.add_webhook_event(
            event_id,
            WebhookEventStatus.FAILED,
            T0,
            payload=job_payload(payment_succeeded_event(event_id, "org_1")),
            failed_at=T0,
            error_message="TimeoutError: handler timed out",
        )

    def test_lists_failed_events(self, client, store) -> None:
        self.seed_failed(store, "evt_1")
        store.add_webhook_event("evt_2", WebhookEventStatus.PROCESSED, T0)

        response = client.get("/webhook/dlq")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        [item] = data["items"]
        assert item["id"] == "evt_1"
        assert item["status"] == WebhookEventStatus.FAILED.value
        assert item["error_message"].startswith("TimeoutError")

    @pytest.mark.parametrize("query", ["limit=0", "limit=501", "offset=-1"])
    def test_rejects_out_of_range_paging(self, client, query: str) -> None:
        assert client.get(f"/webhook/dlq?{query}").status_code == 422

    def test_replay_enqueues_failed_event(self, client, store, queue) -> None:
        self.seed_failed(store, "evt_1")

        response = client.post("/webhook/replay/evt_1")

        assert response.status_code == 200
        data = response.json()
        assert data["event_id"] == "evt_1"
        assert data["status"] == "PENDING"
        assert data["job_id"] in queue.jobs
        assert store.webhook_event("evt_1").status == WebhookEventStatus.PENDING.value

    def test_replay_unknown_event_is_not_found(self, client) -> None:
        assert client.post("/webhook/replay/evt_missing").status_code == 404

    def test_replay_of_processed_event_conflicts(self, client, store) -> None:
        store.add_webhook_event("evt_1", WebhookEventStatus.PROCESSED, T0)
        assert client.post("/webhook/replay/evt_1").status_code == 409

    def test_replay_enqueue_failure_is_unavailable(self, client, store, queue) -> None:
        self.seed_failed(store, "evt_1")
        queue.fail = True

        response = client.post("/webhook/replay/evt_1")

        assert response.status_code == 503
        assert store.webhook_event("evt_1").status == WebhookEventStatus.FAILED.value


class TestServiceEndpoints:
    def test_health(self, client) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_metrics_are_exposed(self, client) -> None:
        body = encode(payment_succeeded_event("evt_1", "org_1"))
        post_event(client, body, sign(body))

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]
        assert "billing_webhook_events_total" in response.text
