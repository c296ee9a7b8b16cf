"""Shared test fixtures and helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from servicedesk.application.use_cases.live_updates import LiveUpdateStream
from servicedesk.application.use_cases.metrics import MetricsAggregator
from servicedesk.application.use_cases.queue_position import QueuePositionCalculator
from servicedesk.application.use_cases.session_lifecycle import SessionLifecycleUseCase
from servicedesk.application.use_cases.slot_admission import SlotAdmissionController
from servicedesk.domain.entities.customer import Customer
from servicedesk.domain.entities.session import ServiceType, Session
from servicedesk.infrastructure.store.memory_store import MemorySessionStore


class FakeClock:
    """Returns strictly increasing timestamps, one `step` apart per call."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemorySessionStore(clock=clock)


@pytest.fixture
def admission(store):
    return SlotAdmissionController(store, max_slots=3, max_retries=3)


@pytest.fixture
def lifecycle(store, admission, clock):
    return SessionLifecycleUseCase(store, admission, clock=clock)


@pytest.fixture
def positions(store, clock):
    return QueuePositionCalculator(store, clock=clock)


@pytest.fixture
def metrics(store):
    return MetricsAggregator(store)


@pytest.fixture
def live(store, lifecycle, positions, metrics, clock):
    return LiveUpdateStream(
        store=store,
        lifecycle=lifecycle,
        positions=positions,
        metrics=metrics,
        interval=0.01,
        queue_timeout=30.0,
        clock=clock,
    )


async def enqueue_without_admission(
    store: MemorySessionStore,
    clock: FakeClock,
    email: str,
    service_type: ServiceType = ServiceType.LOANS,
) -> Session:
    """Insert a PENDING session directly, bypassing promotion."""
    customer = await store.find_customer_by_email(email)
    if customer is None:
        customer = await store.save_customer(Customer(email=email, name=email.split("@")[0], created_at=clock()))
    return await store.save_session(Session.open(customer.id, service_type, clock()))
