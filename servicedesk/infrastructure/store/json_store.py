from __future__ import annotations

import asyncio
import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from servicedesk.application.utils.clock import utcnow
from servicedesk.domain.entities.customer import Customer
from servicedesk.domain.entities.session import ServiceType, Session, SessionStatus
from servicedesk.infrastructure.store.memory_store import MemorySessionStore


SCHEMA_VERSION = 1


class JsonSessionStore(MemorySessionStore):
    """
    MemorySessionStore that mirrors its state to a single JSON file.
    Each write is first stored to disk, in a worker thread, by atomically
    replacing the file (temp file + rename); memory is updated only after that.
    """

    def __init__(
        self,
        data_dir: str = "./data",
        file_name: str = "service_desk.json",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(clock=clock)
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._file_path = self._data_dir / file_name
        self._file_lock = threading.Lock()
        self._logger = logging.getLogger(__name__)
        self._load()

    @property
    def file_path(self) -> Path:
        return self._file_path

    def _load(self) -> None:
        """Load state from disk, starting empty if the file is missing or corrupted."""
        if not self._file_path.exists():
            return
        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            self._logger.warning(
                "Store file unreadable, starting empty",
                extra={"reason": str(e), "path": str(self._file_path)},
            )
            return

        for raw in data.get("customers", []):
            customer = self._deserialize_customer(raw)
            self._customers[customer.id] = customer
            self._customer_ids[customer.email] = customer.id
        for raw in data.get("sessions", []):
            session = self._deserialize_session(raw)
            self._sessions[session.id] = session

        self._next_customer_id = data.get("next_customer_id", max(self._customers, default=0) + 1)
        self._next_session_id = data.get("next_session_id", max(self._sessions, default=0) + 1)

    async def _persist(
        self,
        customer: Customer | None,
        session: Session | None,
        next_customer_id: int,
        next_session_id: int,
    ) -> None:
        customers = dict(self._customers)
        if customer is not None:
            customers[customer.id] = customer
        sessions = dict(self._sessions)
        if session is not None:
            sessions[session.id] = session

        data = {
            "version": SCHEMA_VERSION,
            "next_customer_id": next_customer_id,
            "next_session_id": next_session_id,
            "customers": [self._serialize_customer(c) for c in customers.values()],
            "sessions": [self._serialize_session(s) for s in sessions.values()],
        }
        await asyncio.to_thread(self._write, data)

    def _write(self, data: dict[str, Any]) -> None:
        temp_path = self._file_path.with_suffix(".json.tmp")
        with self._file_lock:
            try:
                with open(temp_path, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                temp_path.replace(self._file_path)
            except Exception:
                if temp_path.exists():
                    temp_path.unlink(missing_ok=True)
                raise

    def _serialize_customer(self, customer: Customer) -> dict[str, Any]:
        return {
            "id": customer.id,
            "name": customer.name,
            "email": customer.email,
            "created_at": customer.created_at.isoformat(),
        }

    def _deserialize_customer(self, data: dict[str, Any]) -> Customer:
        return Customer(
            id=int(data["id"]),
            name=data.get("name"),
            email=data["email"],
            created_at=datetime.fromisoformat(data["created_at"]),
        )

    def _serialize_session(self, session: Session) -> dict[str, Any]:
        return {
            "id": session.id,
            "customer_id": session.customer_id,
            "service_type": session.service_type.value,
            "status": session.status.value,
            "started_at": session.started_at.isoformat(),
            "finished_at": session.finished_at.isoformat() if session.finished_at else None,
            "version": session.version,
        }

    def _deserialize_session(self, data: dict[str, Any]) -> Session:
        finished_at = data.get("finished_at")
        return Session(
            id=int(data["id"]),
            customer_id=int(data["customer_id"]),
            service_type=ServiceType(data["service_type"]),
            status=SessionStatus(data["status"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            finished_at=datetime.fromisoformat(finished_at) if finished_at else None,
            version=int(data.get("version", 0)),
        )
