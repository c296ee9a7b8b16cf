from __future__ import annotations

import asyncio

import pytest

from servicedesk.application.use_cases.live_updates import LiveUpdateStream
from servicedesk.application.use_cases.metrics import MetricsAggregator
from servicedesk.application.use_cases.queue_position import QueuePositionCalculator
from servicedesk.application.use_cases.session_lifecycle import SessionLifecycleUseCase
from servicedesk.application.use_cases.slot_admission import SlotAdmissionController
from servicedesk.domain.entities.session import ServiceType, SessionStatus
from servicedesk.infrastructure.store.memory_store import MemorySessionStore


def _build_live(store, clock, max_slots=1, queue_timeout=30.0) -> tuple[LiveUpdateStream, SessionLifecycleUseCase]:
    lifecycle = SessionLifecycleUseCase(store, SlotAdmissionController(store, max_slots=max_slots), clock=clock)
    live = LiveUpdateStream(
        store=store,
        lifecycle=lifecycle,
        positions=QueuePositionCalculator(store, clock=clock),
        metrics=MetricsAggregator(store),
        interval=0.01,
        queue_timeout=queue_timeout,
        clock=clock,
    )
    return live, lifecycle


async def _next(stream, timeout: float = 1.0):
    return await asyncio.wait_for(stream.__anext__(), timeout)


@pytest.mark.asyncio
async def test_queue_stream_emits_current_position_immediately(store, clock):
    live, lifecycle = _build_live(store, clock)
    await lifecycle.create_session("a@example.com", ServiceType.LOANS)
    await lifecycle.create_session("b@example.com", ServiceType.LOANS)

    stream = live.queue_updates("b@example.com")
    first = await _next(stream)

    assert (first.position, first.status, first.service_type) == (1, SessionStatus.PENDING, ServiceType.LOANS)
    await stream.aclose()
    await live.drain()


@pytest.mark.asyncio
async def test_queue_stream_reports_promotion_then_stops_after_completion(store, clock):
    live, lifecycle = _build_live(store, clock)
    serving = await lifecycle.create_session("a@example.com", ServiceType.LOANS)
    waiting = await lifecycle.create_session("b@example.com", ServiceType.LOANS)

    stream = live.queue_updates("b@example.com")
    assert (await _next(stream)).status is SessionStatus.PENDING

    await lifecycle.complete_session(serving.id)
    promoted = await _next(stream)
    assert promoted.status is SessionStatus.IN_PROGRESS
    assert promoted.session_id == waiting.id

    await lifecycle.complete_session(waiting.id)
    final = await _next(stream)
    assert (final.position, final.status) == (0, SessionStatus.COMPLETED)

    with pytest.raises(StopAsyncIteration):
        await _next(stream)
    await live.drain()
    assert await store.find_active_session_by_email("b@example.com") is None


@pytest.mark.asyncio
async def test_queue_stream_suppresses_unchanged_samples(store, clock):
    live, lifecycle = _build_live(store, clock)
    await lifecycle.create_session("a@example.com", ServiceType.LOANS)
    received = []

    async def consume():
        async for update in live.queue_updates("a@example.com"):
            received.append(update)

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.1)
    assert len(received) == 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await live.drain()


@pytest.mark.asyncio
async def test_disconnect_while_pending_cancels_session(store, clock):
    live, lifecycle = _build_live(store, clock)
    await lifecycle.create_session("a@example.com", ServiceType.LOANS)
    waiting = await lifecycle.create_session("b@example.com", ServiceType.LOANS)
    await lifecycle.create_session("c@example.com", ServiceType.LOANS)

    async def consume():
        async for _ in live.queue_updates("b@example.com"):
            pass

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await live.drain()

    canceled = await store.find_session_by_id(waiting.id)
    assert canceled.status is SessionStatus.CANCELED
    assert canceled.finished_at is not None
    assert await QueuePositionCalculator(store).position_of("c@example.com") == 1


@pytest.mark.asyncio
async def test_disconnect_frees_queue_and_next_session_is_promoted(store, clock):
    live, lifecycle = _build_live(store, clock)
    serving = await lifecycle.create_session("a@example.com", ServiceType.LOANS)
    await lifecycle.create_session("b@example.com", ServiceType.LOANS)
    third = await lifecycle.create_session("c@example.com", ServiceType.LOANS)

    stream = live.queue_updates("b@example.com")
    await _next(stream)
    await stream.aclose()
    await live.drain()
    await lifecycle.complete_session(serving.id)

    assert (await store.find_session_by_id(third.id)).status is SessionStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_disconnect_while_in_progress_keeps_session(store, clock):
    live, lifecycle = _build_live(store, clock)
    session = await lifecycle.create_session("a@example.com", ServiceType.OTHER)

    stream = live.queue_updates("a@example.com")
    assert (await _next(stream)).status is SessionStatus.IN_PROGRESS
    await stream.aclose()
    await live.drain()

    kept = await store.find_session_by_id(session.id)
    assert kept.status is SessionStatus.IN_PROGRESS
    assert kept.finished_at is None


@pytest.mark.asyncio
async def test_queue_stream_timeout_ends_without_canceling(store, clock):
    live, lifecycle = _build_live(store, clock, queue_timeout=0.05)
    await lifecycle.create_session("a@example.com", ServiceType.LOANS)
    waiting = await lifecycle.create_session("b@example.com", ServiceType.LOANS)

    updates = [update async for update in live.queue_updates("b@example.com")]
    await live.drain()

    assert len(updates) == 1
    assert (await store.find_session_by_id(waiting.id)).status is SessionStatus.PENDING


@pytest.mark.asyncio
async def test_in_progress_stream_emits_whole_list_on_change(store, clock):
    live, lifecycle = _build_live(store, clock, max_slots=2)
    await lifecycle.create_session("a@example.com", ServiceType.CARD_PROBLEMS, name="Ana")

    stream = live.in_progress_updates(ServiceType.CARD_PROBLEMS)
    first = await _next(stream)
    assert [(row.customer_name, row.customer_email) for row in first] == [("Ana", "a@example.com")]

    await lifecycle.create_session("b@example.com", ServiceType.CARD_PROBLEMS, name="Bia")
    second = await _next(stream)
    assert [row.customer_email for row in second] == ["a@example.com", "b@example.com"]

    await lifecycle.create_session("c@example.com", ServiceType.LOANS)
    with pytest.raises(asyncio.TimeoutError):
        await _next(stream, timeout=0.1)
    await stream.aclose()


@pytest.mark.asyncio
async def test_metrics_stream_emits_on_change_only(store, clock):
    live, lifecycle = _build_live(store, clock)
    received = []

    async def consume():
        async for snapshot in live.metrics_updates():
            received.append(snapshot)

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.05)
    assert len(received) == 1
    assert received[0].total_sessions == 0

    await lifecycle.create_session("a@example.com", ServiceType.OTHER)
    await asyncio.sleep(0.05)
    assert len(received) >= 2
    assert received[-1].in_progress_count == 1

    settled = len(received)
    await asyncio.sleep(0.05)
    assert len(received) == settled

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


class FailingMetricsStore(MemorySessionStore):
    async def aggregate_counts(self):
        raise RuntimeError("database unavailable")


@pytest.mark.asyncio
async def test_sampling_errors_reach_the_consumer(clock):
    live, _ = _build_live(FailingMetricsStore(clock=clock), clock)

    with pytest.raises(RuntimeError, match="database unavailable"):
        await _next(live.metrics_updates())
