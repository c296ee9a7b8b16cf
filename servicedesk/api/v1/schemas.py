from datetime import datetime

from pydantic import BaseModel

from servicedesk.domain.entities.live_views import InProgressSession, QueuePosition, SessionMetrics
from servicedesk.domain.entities.session import ServiceType, Session, SessionStatus


class CustomerRequestSchema(BaseModel):
    email: str
    name: str | None = None
    service_type: ServiceType | None = None


class SessionSchema(BaseModel):
    id: int
    customer_id: int
    service_type: ServiceType
    status: SessionStatus
    started_at: datetime
    finished_at: datetime | None = None

    @staticmethod
    def from_entity(session: Session) -> "SessionSchema":
        return SessionSchema(
            id=session.id,
            customer_id=session.customer_id,
            service_type=session.service_type,
            status=session.status,
            started_at=session.started_at,
            finished_at=session.finished_at,
        )


class QueuePositionSchema(BaseModel):
    position: int
    status: SessionStatus
    service_type: ServiceType
    timestamp: datetime

    @staticmethod
    def from_entity(update: QueuePosition) -> "QueuePositionSchema":
        return QueuePositionSchema(
            position=update.position,
            status=update.status,
            service_type=update.service_type,
            timestamp=update.timestamp,
        )


class InProgressSessionSchema(BaseModel):
    session_id: int
    customer_name: str | None = None
    customer_email: str
    service_type: ServiceType
    started_at: datetime

    @staticmethod
    def from_entity(row: InProgressSession) -> "InProgressSessionSchema":
        return InProgressSessionSchema(
            session_id=row.session_id,
            customer_name=row.customer_name,
            customer_email=row.customer_email,
            service_type=row.service_type,
            started_at=row.started_at,
        )


class SessionMetricsSchema(BaseModel):
    average_sessions_per_customer: float
    average_service_duration_seconds: float
    pending_count: int
    in_progress_count: int
    completed_count: int
    canceled_count: int
    total_sessions: int
    completion_rate: float
    cancellation_rate: float

    @staticmethod
    def from_entity(metrics: SessionMetrics) -> "SessionMetricsSchema":
        # percentages are shown with 2 decimals
        return SessionMetricsSchema(
            average_sessions_per_customer=metrics.average_sessions_per_customer,
            average_service_duration_seconds=metrics.average_service_duration_seconds,
            pending_count=metrics.pending_count,
            in_progress_count=metrics.in_progress_count,
            completed_count=metrics.completed_count,
            canceled_count=metrics.canceled_count,
            total_sessions=metrics.total_sessions,
            completion_rate=round(metrics.completion_rate, 2),
            cancellation_rate=round(metrics.cancellation_rate, 2),
        )
