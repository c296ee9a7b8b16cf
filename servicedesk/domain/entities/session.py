from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum


class ServiceType(str, Enum):
    CARD_PROBLEMS = "CARD_PROBLEMS"
    LOANS = "LOANS"
    OTHER = "OTHER"


class SessionStatus(str, Enum):
    PENDING = "PENDING"  # waiting in the queue
    IN_PROGRESS = "IN_PROGRESS"  # holding a slot
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"

    @property
    def is_active(self) -> bool:
        return self in (SessionStatus.PENDING, SessionStatus.IN_PROGRESS)

    def terminal_status(self) -> "SessionStatus":
        """Status a session ends with when its customer leaves the desk."""
        if self is SessionStatus.IN_PROGRESS:
            return SessionStatus.COMPLETED
        if self is SessionStatus.PENDING:
            return SessionStatus.CANCELED
        return self


_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.IN_PROGRESS, SessionStatus.CANCELED}),
    SessionStatus.IN_PROGRESS: frozenset({SessionStatus.COMPLETED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.CANCELED: frozenset(),
}


class InvalidTransition(ValueError):
    def __init__(self, current: SessionStatus, target: SessionStatus) -> None:
        super().__init__(f"Cannot move session from {current.value} to {target.value}")
        self.current = current
        self.target = target


@dataclass(frozen=True)
class Session:
    customer_id: int
    service_type: ServiceType
    started_at: datetime
    status: SessionStatus = SessionStatus.PENDING
    finished_at: datetime | None = None
    id: int | None = None
    version: int | None = None

    @property
    def is_active(self) -> bool:
        return self.finished_at is None

    def queue_key(self) -> tuple[datetime, int]:
        return (self.started_at, self.id or 0)

    def transition(self, target: SessionStatus, at: datetime | None = None) -> "Session":
        """
        Return a copy moved to `target`.
        Terminal targets require `at`, which becomes finished_at.
        The version is left untouched; the store bumps it on a successful write.
        """
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransition(self.status, target)
        if target.is_active:
            return replace(self, status=target)
        if at is None:
            raise ValueError(f"Finishing a session as {target.value} requires a timestamp")
        return replace(self, status=target, finished_at=at)

    def promote(self) -> "Session":
        return self.transition(SessionStatus.IN_PROGRESS)

    @staticmethod
    def open(customer_id: int, service_type: ServiceType, started_at: datetime) -> "Session":
        return Session(customer_id=customer_id, service_type=service_type, started_at=started_at)
