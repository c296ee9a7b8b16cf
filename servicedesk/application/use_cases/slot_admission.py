from __future__ import annotations

import logging

from servicedesk.application.exceptions import CapacityExceeded, OptimisticConflict
from servicedesk.application.ports.session_store import SessionStorePort
from servicedesk.domain.entities.session import ServiceType


class SlotAdmissionController:
    """
    Keeps the IN_PROGRESS slots of a service type filled in arrival order.

    There is no lock around a pass. Each promotion is a conditional write on
    the candidate's version and on the slot count, so overlapping passes can
    lose races but can never promote a session twice or overfill a service.
    """

    def __init__(self, store: SessionStorePort, max_slots: int, max_retries: int = 3) -> None:
        if max_slots < 1:
            raise ValueError("max_slots must be at least 1")
        self._store = store
        self._max_slots = max_slots
        self._max_retries = max_retries
        self._logger = logging.getLogger(__name__)

    @property
    def max_slots(self) -> int:
        return self._max_slots

    async def check_available_slots(self, service_type: ServiceType) -> int:
        in_progress = await self._store.count_in_progress(service_type)
        return self._max_slots - in_progress

    async def promote(self, service_type: ServiceType) -> int:
        """Promote up to the free slot count of oldest PENDING sessions. Returns how many were promoted."""
        free = await self.check_available_slots(service_type)
        if free <= 0:
            return 0

        self._logger.info(
            "Promoting up to %s sessions",
            free,
            extra={"service_type": service_type.value},
        )

        promoted = 0
        conflicts = 0
        while promoted < free:
            candidate = await self._store.find_oldest_pending(service_type)
            if candidate is None:
                break

            try:
                saved = await self._store.save_session(candidate.promote(), in_progress_limit=self._max_slots)
            except CapacityExceeded:
                self._logger.info(
                    "Slots filled by a concurrent promotion, stopping",
                    extra={"service_type": service_type.value, "session_id": candidate.id},
                )
                break
            except OptimisticConflict:
                conflicts += 1
                self._logger.warning(
                    "Session already taken by another promotion, skipping",
                    extra={"session_id": candidate.id, "reason": f"conflict {conflicts}/{self._max_retries}"},
                )
                if conflicts > self._max_retries:
                    break
                continue

            promoted += 1
            self._logger.info(
                "Session promoted to IN_PROGRESS",
                extra={"session_id": saved.id, "service_type": service_type.value},
            )

        return promoted
