from __future__ import annotations

from datetime import datetime
from typing import Callable

from servicedesk.application.exceptions import NotFoundError
from servicedesk.application.ports.session_store import SessionStorePort
from servicedesk.application.use_cases.session_lifecycle import normalize_email
from servicedesk.application.utils.clock import utcnow
from servicedesk.domain.entities.live_views import QueuePosition
from servicedesk.domain.entities.session import Session


class QueuePositionCalculator:
    """Derives a customer's 1-based place in their service queue. Nothing about position is stored."""

    def __init__(self, store: SessionStorePort, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    async def position_of(self, email: str) -> int:
        session = await self._active_session(email)
        return await self.position_of_session(session)

    async def position_of_session(self, session: Session) -> int:
        pending = await self._store.find_all_pending(session.service_type)
        key = session.queue_key()
        ahead = sum(1 for other in pending if other.id != session.id and other.queue_key() < key)
        return ahead + 1

    async def snapshot(self, email: str) -> QueuePosition:
        session = await self._active_session(email)
        return QueuePosition(
            position=await self.position_of_session(session),
            status=session.status,
            service_type=session.service_type,
            timestamp=self._clock(),
            session_id=session.id,
        )

    async def _active_session(self, email: str) -> Session:
        session = await self._store.find_active_session_by_email(normalize_email(email))
        if session is None:
            raise NotFoundError("No active session for this customer")
        return session
