"""Shared fixtures."""

import pytest

from billing_engine.modules.subscription.events import InMemoryAuditPublisher
from tests.builders import T0
from tests.fakes import FixedClock, InMemoryJobQueue, InMemoryStore


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def job_queue() -> InMemoryJobQueue:
    return InMemoryJobQueue()


@pytest.fixture
def audit_publisher() -> InMemoryAuditPublisher:
    return InMemoryAuditPublisher()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0)
