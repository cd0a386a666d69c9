"""Tests for request path normalization used as a metrics label."""

import pytest

from billing_engine.core.middleware import normalize_path


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/webhook/stripe", "/webhook/stripe"),
        ("/webhook/dlq", "/webhook/dlq"),
        ("/webhook/replay/evt_1NqXyZ2eZvKYlo2C", "/webhook/replay/{id}"),
        ("/billing/subscriptions/org_42", "/billing/subscriptions/{id}"),
        ("/billing/subscriptions/6f1c1f2e-8c1b-4a51-9d38-2f0d2b1f0a11", "/billing/subscriptions/{id}"),
    ],
)
def test_ids_are_replaced(path: str, expected: str) -> None:
    assert normalize_path(path) == expected
