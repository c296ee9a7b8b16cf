from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Callable

from servicedesk.application.exceptions import (
    CapacityExceeded,
    ConflictError,
    NotFoundError,
    OptimisticConflict,
)
from servicedesk.application.ports.session_store import SessionStorePort
from servicedesk.application.utils.clock import utcnow
from servicedesk.domain.entities.customer import Customer
from servicedesk.domain.entities.session import ServiceType, Session, SessionStatus


class MemorySessionStore(SessionStorePort):
    """
    Process-local store.

    Every operation yields to the event loop once before touching state, so
    each call behaves like a single statement against a database. Writes are
    serialized by a lock and only become visible after `_persist` succeeds,
    so a failed write leaves no trace.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._customers: dict[int, Customer] = {}
        self._customer_ids: dict[str, int] = {}
        self._sessions: dict[int, Session] = {}
        self._next_customer_id = 1
        self._next_session_id = 1
        self._clock = clock
        self._write_lock = asyncio.Lock()

    async def _suspend(self) -> None:
        await asyncio.sleep(0)

    async def _persist(
        self,
        customer: Customer | None,
        session: Session | None,
        next_customer_id: int,
        next_session_id: int,
    ) -> None:
        """Hook for subclasses that store the state a write is about to produce."""
        return None

    async def _apply(self, customer: Customer | None = None, session: Session | None = None) -> None:
        next_customer_id = max(self._next_customer_id, customer.id + 1) if customer else self._next_customer_id
        next_session_id = max(self._next_session_id, session.id + 1) if session else self._next_session_id
        await self._persist(customer, session, next_customer_id, next_session_id)

        if customer is not None:
            previous = self._customers.get(customer.id)
            if previous is not None and previous.email != customer.email:
                self._customer_ids.pop(previous.email, None)
            self._customers[customer.id] = customer
            self._customer_ids[customer.email] = customer.id
        if session is not None:
            self._sessions[session.id] = session
        self._next_customer_id = next_customer_id
        self._next_session_id = next_session_id

    # Customers

    async def customer_exists(self, email: str) -> bool:
        await self._suspend()
        return email in self._customer_ids

    async def find_customer_by_email(self, email: str) -> Customer | None:
        await self._suspend()
        customer_id = self._customer_ids.get(email)
        return self._customers.get(customer_id) if customer_id is not None else None

    async def find_customer_by_id(self, customer_id: int) -> Customer | None:
        await self._suspend()
        return self._customers.get(customer_id)

    async def save_customer(self, customer: Customer) -> Customer:
        async with self._write_lock:
            await self._suspend()
            if customer.id is None:
                if customer.email in self._customer_ids:
                    raise ConflictError(f"Customer with email {customer.email} already exists")
                customer = replace(customer, id=self._next_customer_id)
            elif customer.id not in self._customers:
                raise NotFoundError(f"Customer {customer.id} not found")
            await self._apply(customer=customer)
            return customer

    # Sessions

    async def find_session_by_id(self, session_id: int) -> Session | None:
        await self._suspend()
        return self._sessions.get(session_id)

    async def find_active_session_by_email(self, email: str) -> Session | None:
        await self._suspend()
        return self._active_for_email(email)

    async def save_session(self, session: Session, in_progress_limit: int | None = None) -> Session:
        async with self._write_lock:
            await self._suspend()
            if session.id is None:
                return await self._insert(session)
            return await self._update(session, in_progress_limit)

    async def set_finished_now(
        self,
        email: str,
        status: SessionStatus,
        expected_version: int | None = None,
    ) -> Session | None:
        if status.is_active:
            raise ValueError(f"{status.value} is not a terminal status")

        async with self._write_lock:
            await self._suspend()
            active = self._active_for_email(email)
            if active is None:
                return None
            if expected_version is not None and active.version != expected_version:
                raise OptimisticConflict(
                    f"Session {active.id} changed: expected version {expected_version}, found {active.version}",
                    session_id=active.id,
                )
            finished = replace(active, status=status, finished_at=self._clock(), version=active.version + 1)
            await self._apply(session=finished)
            return finished

    async def _update(self, session: Session, in_progress_limit: int | None) -> Session:
        stored = self._sessions.get(session.id)
        if stored is None:
            raise NotFoundError(f"Session {session.id} not found")
        if session.version != stored.version:
            raise OptimisticConflict(
                f"Session {session.id} changed: expected version {session.version}, found {stored.version}",
                session_id=session.id,
            )
        if (
            in_progress_limit is not None
            and session.status is SessionStatus.IN_PROGRESS
            and stored.status is not SessionStatus.IN_PROGRESS
            and self._count(session.service_type, SessionStatus.IN_PROGRESS) >= in_progress_limit
        ):
            raise CapacityExceeded(
                f"No free slot for {session.service_type.value}",
                session_id=session.id,
            )

        updated = replace(session, version=stored.version + 1)
        await self._apply(session=updated)
        return updated

    async def count_in_progress(self, service_type: ServiceType) -> int:
        await self._suspend()
        return self._count(service_type, SessionStatus.IN_PROGRESS)

    async def find_oldest_pending(self, service_type: ServiceType) -> Session | None:
        await self._suspend()
        pending = self._queue(service_type, SessionStatus.PENDING)
        return pending[0] if pending else None

    async def find_all_pending(self, service_type: ServiceType) -> list[Session]:
        await self._suspend()
        return self._queue(service_type, SessionStatus.PENDING)

    async def find_all_in_progress(self, service_type: ServiceType) -> list[Session]:
        await self._suspend()
        return self._queue(service_type, SessionStatus.IN_PROGRESS)

    # Aggregates

    async def aggregate_counts(self) -> dict[SessionStatus, int]:
        await self._suspend()
        counts = {status: 0 for status in SessionStatus}
        for session in self._sessions.values():
            counts[session.status] += 1
        return counts

    async def average_duration(self) -> float | None:
        await self._suspend()
        durations = [
            (s.finished_at - s.started_at).total_seconds()
            for s in self._sessions.values()
            if s.status is SessionStatus.COMPLETED and s.finished_at is not None
        ]
        if not durations:
            return None
        return sum(durations) / len(durations)

    async def average_per_customer(self) -> float | None:
        await self._suspend()
        customers = {s.customer_id for s in self._sessions.values()}
        if not customers:
            return None
        return len(self._sessions) / len(customers)

    # Internals

    async def _insert(self, session: Session) -> Session:
        if self._active_for_customer(session.customer_id) is not None:
            raise ConflictError(f"Customer {session.customer_id} already has an active session")
        created = replace(session, id=self._next_session_id, version=0)
        await self._apply(session=created)
        return created

    def _active_for_email(self, email: str) -> Session | None:
        customer_id = self._customer_ids.get(email)
        if customer_id is None:
            return None
        return self._active_for_customer(customer_id)

    def _active_for_customer(self, customer_id: int) -> Session | None:
        for session in self._sessions.values():
            if session.customer_id == customer_id and session.is_active:
                return session
        return None

    def _count(self, service_type: ServiceType, status: SessionStatus) -> int:
        return sum(
            1
            for s in self._sessions.values()
            if s.service_type is service_type and s.status is status and s.is_active
        )

    def _queue(self, service_type: ServiceType, status: SessionStatus) -> list[Session]:
        matching = [
            s
            for s in self._sessions.values()
            if s.service_type is service_type and s.status is status and s.is_active
        ]
        return sorted(matching, key=Session.queue_key)
