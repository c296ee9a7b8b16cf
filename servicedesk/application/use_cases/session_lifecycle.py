from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from servicedesk.application.exceptions import (
    ConflictError,
    NotFoundError,
    OptimisticConflict,
    ValidationError,
)
from servicedesk.application.ports.session_store import SessionStorePort
from servicedesk.application.use_cases.slot_admission import SlotAdmissionController
from servicedesk.application.utils.clock import utcnow
from servicedesk.domain.entities.customer import Customer
from servicedesk.domain.entities.session import ServiceType, Session, SessionStatus


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def parse_service_type(value: ServiceType | str | None) -> ServiceType:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("Service type is required")
    if isinstance(value, ServiceType):
        return value
    try:
        return ServiceType(value.strip().upper())
    except ValueError:
        allowed = ", ".join(s.value for s in ServiceType)
        raise ValidationError(f"Unknown service type {value!r}, expected one of: {allowed}") from None


class SessionLifecycleUseCase:
    def __init__(
        self,
        store: SessionStorePort,
        admission: SlotAdmissionController,
        clock: Callable[[], datetime] = utcnow,
        max_retries: int = 3,
    ) -> None:
        self._store = store
        self._admission = admission
        self._clock = clock
        self._max_retries = max_retries
        self._logger = logging.getLogger(__name__)

    async def create_session(
        self,
        email: str | None,
        service_type: ServiceType | str | None,
        name: str | None = None,
    ) -> Session:
        service = parse_service_type(service_type)
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required")

        customer = await self._resolve_customer(email, name)
        if await self._store.find_active_session_by_email(email) is not None:
            self._logger.warning("Customer already has an active session", extra={"email": email})
            raise ConflictError("An active session already exists for this customer")

        session = await self._store.save_session(Session.open(customer.id, service, self._clock()))
        self._logger.info(
            "Session created",
            extra={"session_id": session.id, "email": email, "service_type": service.value},
        )

        await self._admission.promote(service)
        return session

    async def finish_active_session(self, email: str) -> Session:
        """
        End the customer's active session: IN_PROGRESS becomes COMPLETED, PENDING becomes CANCELED.
        Frees the slot (or queue place) and backfills from the queue.
        """
        email = normalize_email(email)
        if not await self._store.customer_exists(email):
            raise NotFoundError("Customer not found")

        for _ in range(self._max_retries + 1):
            session = await self._store.find_active_session_by_email(email)
            if session is None:
                raise NotFoundError("No active session for this customer")

            new_status = session.status.terminal_status()
            if new_status is session.status:
                self._logger.warning(
                    "Active session has a terminal status, nothing to finish",
                    extra={"session_id": session.id, "status": session.status.value},
                )
                return session

            self._logger.info(
                "Finishing session",
                extra={"email": email, "service_type": session.service_type.value, "status": new_status.value},
            )
            try:
                finished = await self._store.set_finished_now(email, new_status, expected_version=session.version)
            except OptimisticConflict:
                self._logger.warning("Session changed while finishing, re-reading", extra={"session_id": session.id})
                continue

            if finished is None:
                raise NotFoundError("No active session for this customer")
            await self._admission.promote(finished.service_type)
            return finished

        raise ConflictError("Session kept changing while finishing, try again")

    async def complete_session(self, session_id: int) -> Session:
        for _ in range(self._max_retries + 1):
            session = await self._store.find_session_by_id(session_id)
            if session is None:
                raise NotFoundError("Session not found")
            if session.status is not SessionStatus.IN_PROGRESS:
                raise ConflictError(
                    f"Only IN_PROGRESS sessions can be completed. Current status: {session.status.value}"
                )

            try:
                saved = await self._store.save_session(session.transition(SessionStatus.COMPLETED, self._clock()))
            except OptimisticConflict:
                self._logger.warning("Session changed while completing, re-reading", extra={"session_id": session_id})
                continue

            self._logger.info(
                "Session completed",
                extra={"session_id": session_id, "service_type": saved.service_type.value},
            )
            await self._admission.promote(saved.service_type)
            return saved

        raise ConflictError("Session kept changing while completing, try again")

    async def cancel_waiting_session(self, email: str) -> Session | None:
        """Cancel the customer's session only while it is still PENDING. Returns the canceled session."""
        email = normalize_email(email)
        for _ in range(self._max_retries + 1):
            session = await self._store.find_active_session_by_email(email)
            if session is None or session.status is not SessionStatus.PENDING:
                return None

            try:
                canceled = await self._store.save_session(session.transition(SessionStatus.CANCELED, self._clock()))
            except OptimisticConflict:
                continue

            self._logger.info(
                "Waiting session canceled",
                extra={"session_id": canceled.id, "email": email, "reason": "disconnected"},
            )
            await self._admission.promote(canceled.service_type)
            return canceled

        self._logger.warning("Gave up canceling waiting session", extra={"email": email})
        return None

    async def _resolve_customer(self, email: str, name: str | None) -> Customer:
        if await self._store.customer_exists(email):
            customer = await self._store.find_customer_by_email(email)
            if customer is not None:
                return customer

        try:
            customer = await self._store.save_customer(Customer(email=email, name=name, created_at=self._clock()))
        except ConflictError:
            # created by a concurrent request
            existing = await self._store.find_customer_by_email(email)
            if existing is None:
                raise
            return existing

        self._logger.info("Customer created", extra={"email": email})
        return customer
