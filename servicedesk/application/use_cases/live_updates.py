from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from datetime import datetime
from typing import AsyncIterator, Callable, Coroutine

from servicedesk.application.ports.session_store import SessionStorePort
from servicedesk.application.use_cases.metrics import MetricsAggregator
from servicedesk.application.use_cases.queue_position import QueuePositionCalculator
from servicedesk.application.use_cases.session_lifecycle import SessionLifecycleUseCase, normalize_email
from servicedesk.application.utils.clock import utcnow
from servicedesk.application.utils.sampling import sample_changes
from servicedesk.domain.entities.live_views import InProgressSession, QueuePosition, SessionMetrics
from servicedesk.domain.entities.session import ServiceType, Session, SessionStatus


class LiveUpdateStream:
    """
    Turns point-in-time queries into per-subscriber change streams.

    Each view samples its query every `interval` seconds and yields only when
    the observed value changes. Closing or cancelling a queue stream while the
    customer is still waiting cancels their session in the background.
    """

    def __init__(
        self,
        store: SessionStorePort,
        lifecycle: SessionLifecycleUseCase,
        positions: QueuePositionCalculator,
        metrics: MetricsAggregator,
        interval: float = 1.0,
        queue_timeout: float = 3600.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._lifecycle = lifecycle
        self._positions = positions
        self._metrics = metrics
        self._interval = interval
        self._queue_timeout = queue_timeout
        self._clock = clock
        self._tasks: set[asyncio.Task] = set()
        self._logger = logging.getLogger(__name__)

    async def queue_updates(self, email: str) -> AsyncIterator[QueuePosition]:
        email = normalize_email(email)
        tracked: Session | None = None

        async def sample() -> QueuePosition | None:
            nonlocal tracked
            session = await self._store.find_active_session_by_email(email)
            if session is not None:
                tracked = session
                return QueuePosition(
                    position=await self._positions.position_of_session(session),
                    status=session.status,
                    service_type=session.service_type,
                    timestamp=self._clock(),
                    session_id=session.id,
                )

            if tracked is None:
                return None
            # the session we were following has just finished; report its final state once
            finished = await self._store.find_session_by_id(tracked.id)
            tracked = None
            if finished is None or finished.is_active:
                return None
            return QueuePosition(
                position=0,
                status=finished.status,
                service_type=finished.service_type,
                timestamp=self._clock(),
                session_id=finished.id,
            )

        self._logger.info("Queue stream opened", extra={"email": email})
        try:
            async with aclosing(
                sample_changes(
                    sample,
                    interval=self._interval,
                    key=QueuePosition.change_key,
                    until=lambda update: update.status is SessionStatus.COMPLETED,
                    timeout=self._queue_timeout,
                )
            ) as updates:
                async for update in updates:
                    self._logger.info(
                        "Queue update sent",
                        extra={"email": email, "status": update.status.value, "reason": f"position={update.position}"},
                    )
                    yield update
        except (GeneratorExit, asyncio.CancelledError):
            self._logger.info("Queue stream closed by subscriber", extra={"email": email})
            self._spawn(self._on_disconnect(email))
            raise

        self._logger.info("Queue stream ended", extra={"email": email})

    async def in_progress_updates(self, service_type: ServiceType) -> AsyncIterator[list[InProgressSession]]:
        self._logger.info("In-progress stream opened", extra={"service_type": service_type.value})
        async with aclosing(
            sample_changes(lambda: self.list_in_progress(service_type), interval=self._interval)
        ) as updates:
            async for rows in updates:
                yield rows

    async def metrics_updates(self) -> AsyncIterator[SessionMetrics]:
        self._logger.info("Metrics stream opened")
        async with aclosing(sample_changes(self._metrics.snapshot, interval=self._interval)) as updates:
            async for snapshot in updates:
                yield snapshot

    async def list_in_progress(self, service_type: ServiceType) -> list[InProgressSession]:
        rows: list[InProgressSession] = []
        for session in await self._store.find_all_in_progress(service_type):
            customer = await self._store.find_customer_by_id(session.customer_id)
            if customer is None:
                continue
            rows.append(
                InProgressSession(
                    session_id=session.id,
                    customer_name=customer.name,
                    customer_email=customer.email,
                    service_type=session.service_type,
                    started_at=session.started_at,
                )
            )
        return rows

    async def drain(self) -> None:
        """Wait for pending disconnect handlers."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _on_disconnect(self, email: str) -> None:
        canceled = await self._lifecycle.cancel_waiting_session(email)
        if canceled is None:
            self._logger.info("Subscriber left, session kept", extra={"email": email})

    def _spawn(self, coro: Coroutine) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._logger.error("Disconnect handling failed", exc_info=error)
