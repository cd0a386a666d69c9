"""Property-based tests for webhook ledger maintenance.

**Feature: billing-engine, Property 11: Ledger Retention**
"""

from datetime import timedelta

import pytest
from hypothesis import given, settings, strategies as st

from billing_engine.modules.webhook.models import WebhookEventStatus
from billing_engine.modules.webhook.retention import WebhookMaintenanceService
from tests.builders import T0
from tests.fakes import InMemoryStore

RETENTION_DAYS = 90
STALE_MINUTES = 60

row_strategy = st.tuples(
    st.sampled_from(list(WebhookEventStatus)),
    st.integers(min_value=0, max_value=200),
)


class TestRetention:
    """**Feature: billing-engine, Property 11: Ledger Retention**"""

    @given(rows=st.lists(row_strategy, max_size=20))
    @settings(max_examples=100)
    @pytest.mark.asyncio
    async def test_deletes_only_old_terminal_rows(self, rows) -> None:
        store = InMemoryStore()
        now = T0 + timedelta(days=200)
        for i, (status, age_days) in enumerate(rows):
            store.add_webhook_event(f"evt_{i}", status, now - timedelta(days=age_days))

        deleted = await WebhookMaintenanceService(store.uow_factory()).delete_expired(now, RETENTION_DAYS)

        expected_deleted = {
            f"evt_{i}"
            for i, (status, age_days) in enumerate(rows)
            if age_days > RETENTION_DAYS
            and status in (WebhookEventStatus.PROCESSED, WebhookEventStatus.IGNORED, WebhookEventStatus.UNHANDLED)
        }
        remaining = {event.id for event in store.webhook_events()}
        assert deleted == len(expected_deleted)
        assert remaining == {f"evt_{i}" for i in range(len(rows))} - expected_deleted

    @pytest.mark.asyncio
    async def test_failed_rows_are_kept_for_replay(self, store) -> None:
        now = T0 + timedelta(days=365)
        store.add_webhook_event("evt_failed", WebhookEventStatus.FAILED, T0, failed_at=T0)

        assert await WebhookMaintenanceService(store.uow_factory()).delete_expired(now, RETENTION_DAYS) == 0
        assert store.webhook_event("evt_failed") is not None


class TestStrandedRecovery:
    """**Feature: billing-engine, Property 11: Ledger Retention**"""

    @given(rows=st.lists(st.tuples(st.sampled_from(list(WebhookEventStatus)), st.integers(0, 180)), max_size=20))
    @settings(max_examples=100)
    @pytest.mark.asyncio
    async def test_only_stale_pending_rows_are_failed(self, rows) -> None:
        store = InMemoryStore()
        now = T0 + timedelta(days=1)
        for i, (status, age_minutes) in enumerate(rows):
            store.add_webhook_event(f"evt_{i}", status, now - timedelta(minutes=age_minutes))

        failed = await WebhookMaintenanceService(store.uow_factory()).fail_stranded(now, STALE_MINUTES)

        expected = {
            f"evt_{i}"
            for i, (status, age_minutes) in enumerate(rows)
            if status == WebhookEventStatus.PENDING and age_minutes > STALE_MINUTES
        }
        assert set(failed) == expected
        for i, (status, _) in enumerate(rows):
            row = store.webhook_event(f"evt_{i}")
            if row.id in expected:
                assert row.status == WebhookEventStatus.FAILED.value
                assert row.failed_at == now
                assert "Stranded" in row.error_message
            else:
                assert row.status == status.value
