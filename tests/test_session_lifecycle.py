from __future__ import annotations

import pytest

from servicedesk.application.exceptions import (
    ConflictError,
    NotFoundError,
    OptimisticConflict,
    ValidationError,
)
from servicedesk.application.use_cases.session_lifecycle import SessionLifecycleUseCase
from servicedesk.application.use_cases.slot_admission import SlotAdmissionController
from servicedesk.domain.entities.session import ServiceType, SessionStatus
from servicedesk.infrastructure.store.memory_store import MemorySessionStore


@pytest.fixture
def single_slot(store, clock):
    """Lifecycle with one slot per service, so the second customer waits."""
    return SessionLifecycleUseCase(store, SlotAdmissionController(store, max_slots=1), clock=clock)


@pytest.mark.asyncio
async def test_create_requires_service_type(lifecycle):
    with pytest.raises(ValidationError):
        await lifecycle.create_session("a@example.com", None)
    with pytest.raises(ValidationError):
        await lifecycle.create_session("a@example.com", "  ")


@pytest.mark.asyncio
async def test_create_rejects_unknown_service_type(lifecycle):
    with pytest.raises(ValidationError, match="MORTGAGES"):
        await lifecycle.create_session("a@example.com", "MORTGAGES")


@pytest.mark.asyncio
async def test_create_requires_email(lifecycle):
    with pytest.raises(ValidationError):
        await lifecycle.create_session("   ", ServiceType.OTHER)


@pytest.mark.asyncio
async def test_create_accepts_service_type_name(lifecycle):
    session = await lifecycle.create_session("a@example.com", "loans")
    assert session.service_type is ServiceType.LOANS


@pytest.mark.asyncio
async def test_create_starts_pending_and_promotes_when_slot_free(lifecycle, store):
    session = await lifecycle.create_session("a@example.com", ServiceType.OTHER, name="Ana")

    assert session.status is SessionStatus.PENDING
    assert session.finished_at is None
    stored = await store.find_session_by_id(session.id)
    assert stored.status is SessionStatus.IN_PROGRESS
    assert stored.version == 1

    customer = await store.find_customer_by_email("a@example.com")
    assert customer.name == "Ana"


@pytest.mark.asyncio
async def test_duplicate_active_session_conflicts_while_in_progress(lifecycle):
    await lifecycle.create_session("a@example.com", ServiceType.OTHER)

    with pytest.raises(ConflictError):
        await lifecycle.create_session("a@example.com", ServiceType.LOANS)


@pytest.mark.asyncio
async def test_duplicate_active_session_conflicts_while_pending(single_slot, store):
    await single_slot.create_session("a@example.com", ServiceType.OTHER)
    waiting = await single_slot.create_session("b@example.com", ServiceType.OTHER)
    assert (await store.find_session_by_id(waiting.id)).status is SessionStatus.PENDING

    with pytest.raises(ConflictError):
        await single_slot.create_session("B@example.com ", ServiceType.OTHER)


@pytest.mark.asyncio
async def test_returning_customer_reuses_customer_record(lifecycle, store):
    first = await lifecycle.create_session("a@example.com", ServiceType.OTHER)
    await lifecycle.finish_active_session("a@example.com")

    second = await lifecycle.create_session("a@example.com", ServiceType.LOANS)

    assert second.customer_id == first.customer_id
    assert second.id != first.id


@pytest.mark.asyncio
async def test_finish_unknown_customer_is_not_found(lifecycle):
    with pytest.raises(NotFoundError):
        await lifecycle.finish_active_session("nobody@example.com")


@pytest.mark.asyncio
async def test_finish_without_active_session_is_not_found(lifecycle):
    await lifecycle.create_session("a@example.com", ServiceType.OTHER)
    await lifecycle.finish_active_session("a@example.com")

    with pytest.raises(NotFoundError):
        await lifecycle.finish_active_session("a@example.com")


@pytest.mark.asyncio
async def test_finish_in_progress_completes_and_backfills(single_slot, store):
    first = await single_slot.create_session("a@example.com", ServiceType.LOANS)
    second = await single_slot.create_session("b@example.com", ServiceType.LOANS)

    finished = await single_slot.finish_active_session("a@example.com")

    assert finished.id == first.id
    assert finished.status is SessionStatus.COMPLETED
    assert finished.finished_at is not None
    assert (await store.find_session_by_id(second.id)).status is SessionStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_finish_pending_cancels(single_slot, store):
    await single_slot.create_session("a@example.com", ServiceType.LOANS)
    waiting = await single_slot.create_session("b@example.com", ServiceType.LOANS)

    finished = await single_slot.finish_active_session("b@example.com")

    assert finished.id == waiting.id
    assert finished.status is SessionStatus.CANCELED
    assert await store.find_active_session_by_email("b@example.com") is None


class FlakyFinishStore(MemorySessionStore):
    def __init__(self, clock) -> None:
        super().__init__(clock=clock)
        self.failures_left = 1

    async def set_finished_now(self, email, status, expected_version=None):
        if self.failures_left:
            self.failures_left -= 1
            raise OptimisticConflict("stale")
        return await super().set_finished_now(email, status, expected_version)


@pytest.mark.asyncio
async def test_finish_rereads_after_version_conflict(clock):
    store = FlakyFinishStore(clock)
    lifecycle = SessionLifecycleUseCase(store, SlotAdmissionController(store, max_slots=1), clock=clock)
    await lifecycle.create_session("a@example.com", ServiceType.OTHER)

    finished = await lifecycle.finish_active_session("a@example.com")

    assert finished.status is SessionStatus.COMPLETED
    assert store.failures_left == 0


@pytest.mark.asyncio
async def test_complete_unknown_session_is_not_found(lifecycle):
    with pytest.raises(NotFoundError):
        await lifecycle.complete_session(999)


@pytest.mark.asyncio
async def test_complete_pending_session_conflicts_with_current_status(single_slot):
    await single_slot.create_session("a@example.com", ServiceType.CARD_PROBLEMS)
    waiting = await single_slot.create_session("b@example.com", ServiceType.CARD_PROBLEMS)

    with pytest.raises(ConflictError, match="Current status: PENDING"):
        await single_slot.complete_session(waiting.id)


@pytest.mark.asyncio
async def test_completed_session_is_immutable(lifecycle, store):
    session = await lifecycle.create_session("a@example.com", ServiceType.OTHER)

    completed = await lifecycle.complete_session(session.id)
    assert completed.status is SessionStatus.COMPLETED
    assert completed.finished_at is not None

    with pytest.raises(ConflictError, match="Current status: COMPLETED"):
        await lifecycle.complete_session(session.id)
    assert (await store.find_session_by_id(session.id)).version == completed.version


@pytest.mark.asyncio
async def test_cancel_waiting_session_cancels_only_pending(single_slot, store):
    serving = await single_slot.create_session("a@example.com", ServiceType.LOANS)
    waiting = await single_slot.create_session("b@example.com", ServiceType.LOANS)

    assert await single_slot.cancel_waiting_session("a@example.com") is None
    assert (await store.find_session_by_id(serving.id)).status is SessionStatus.IN_PROGRESS

    canceled = await single_slot.cancel_waiting_session("b@example.com")
    assert canceled.id == waiting.id
    assert canceled.status is SessionStatus.CANCELED


@pytest.mark.asyncio
async def test_cancel_waiting_session_without_session_is_noop(lifecycle):
    assert await lifecycle.cancel_waiting_session("nobody@example.com") is None
