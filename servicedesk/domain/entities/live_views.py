from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from servicedesk.domain.entities.session import ServiceType, SessionStatus


@dataclass(frozen=True)
class QueuePosition:
    position: int  # 0 once the session has finished
    status: SessionStatus
    service_type: ServiceType
    timestamp: datetime
    session_id: int | None = None

    def change_key(self) -> tuple[int, SessionStatus]:
        return (self.position, self.status)


@dataclass(frozen=True)
class InProgressSession:
    session_id: int
    customer_name: str | None
    customer_email: str
    service_type: ServiceType
    started_at: datetime


@dataclass(frozen=True)
class SessionMetrics:
    average_sessions_per_customer: float = 0.0
    average_service_duration_seconds: float = 0.0
    pending_count: int = 0
    in_progress_count: int = 0
    completed_count: int = 0
    canceled_count: int = 0
    total_sessions: int = 0
    completion_rate: float = 0.0
    cancellation_rate: float = 0.0
