from __future__ import annotations

from servicedesk.application.ports.session_store import SessionStorePort
from servicedesk.domain.entities.live_views import SessionMetrics
from servicedesk.domain.entities.session import SessionStatus


def _rate(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return part / whole * 100


class MetricsAggregator:
    def __init__(self, store: SessionStorePort) -> None:
        self._store = store

    async def snapshot(self) -> SessionMetrics:
        counts = await self._store.aggregate_counts()
        avg_duration = await self._store.average_duration()
        avg_per_customer = await self._store.average_per_customer()

        pending = counts.get(SessionStatus.PENDING, 0)
        in_progress = counts.get(SessionStatus.IN_PROGRESS, 0)
        completed = counts.get(SessionStatus.COMPLETED, 0)
        canceled = counts.get(SessionStatus.CANCELED, 0)
        finalized = completed + canceled

        return SessionMetrics(
            average_sessions_per_customer=avg_per_customer or 0.0,
            average_service_duration_seconds=avg_duration or 0.0,
            pending_count=pending,
            in_progress_count=in_progress,
            completed_count=completed,
            canceled_count=canceled,
            total_sessions=pending + in_progress + completed + canceled,
            completion_rate=_rate(completed, finalized),
            cancellation_rate=_rate(canceled, finalized),
        )
