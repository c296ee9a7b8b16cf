from abc import ABC, abstractmethod

from servicedesk.domain.entities.customer import Customer
from servicedesk.domain.entities.session import ServiceType, Session, SessionStatus


class SessionStorePort(ABC):
    # Customers

    @abstractmethod
    async def customer_exists(self, email: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def find_customer_by_email(self, email: str) -> Customer | None:
        raise NotImplementedError

    @abstractmethod
    async def find_customer_by_id(self, customer_id: int) -> Customer | None:
        raise NotImplementedError

    @abstractmethod
    async def save_customer(self, customer: Customer) -> Customer:
        """
        Insert a new customer and return it with its assigned id.
        Raises ConflictError if another customer already owns the email.
        """
        raise NotImplementedError

    # Sessions

    @abstractmethod
    async def find_session_by_id(self, session_id: int) -> Session | None:
        raise NotImplementedError

    @abstractmethod
    async def find_active_session_by_email(self, email: str) -> Session | None:
        """Return the customer's session with finished_at unset, if any."""
        raise NotImplementedError

    @abstractmethod
    async def save_session(self, session: Session, in_progress_limit: int | None = None) -> Session:
        """
        Insert (id is None) or conditionally update a session.

        Insert assigns id and version 0 and raises ConflictError if the customer
        already has an active session.
        Update succeeds only when session.version matches the stored version and
        bumps it by one; otherwise raises OptimisticConflict.
        With `in_progress_limit`, an update that would leave more than that many
        IN_PROGRESS sessions of the service type raises CapacityExceeded instead.
        """
        raise NotImplementedError

    @abstractmethod
    async def set_finished_now(
        self,
        email: str,
        status: SessionStatus,
        expected_version: int | None = None,
    ) -> Session | None:
        """
        Finish the customer's active session with `status` in one write.
        Returns the finished session, or None when there is no active session.
        Raises OptimisticConflict when `expected_version` no longer matches.
        Raises ValueError when `status` is not terminal.
        """
        raise NotImplementedError

    @abstractmethod
    async def count_in_progress(self, service_type: ServiceType) -> int:
        raise NotImplementedError

    @abstractmethod
    async def find_oldest_pending(self, service_type: ServiceType) -> Session | None:
        raise NotImplementedError

    @abstractmethod
    async def find_all_pending(self, service_type: ServiceType) -> list[Session]:
        """PENDING sessions of the type in queue order (started_at, id)."""
        raise NotImplementedError

    @abstractmethod
    async def find_all_in_progress(self, service_type: ServiceType) -> list[Session]:
        """IN_PROGRESS sessions of the type ordered by started_at."""
        raise NotImplementedError

    # Aggregates

    @abstractmethod
    async def aggregate_counts(self) -> dict[SessionStatus, int]:
        raise NotImplementedError

    @abstractmethod
    async def average_duration(self) -> float | None:
        """Mean finished_at - started_at in seconds over COMPLETED sessions."""
        raise NotImplementedError

    @abstractmethod
    async def average_per_customer(self) -> float | None:
        """Total sessions divided by distinct customers having sessions."""
        raise NotImplementedError
