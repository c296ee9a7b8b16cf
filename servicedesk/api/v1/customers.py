from __future__ import annotations

import json
import logging
from contextlib import aclosing
from typing import AsyncIterator, Callable, TypeVar
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse, StreamingResponse

from servicedesk.api.v1.schemas import (
    CustomerRequestSchema,
    InProgressSessionSchema,
    QueuePositionSchema,
    SessionMetricsSchema,
    SessionSchema,
)
from servicedesk.application.exceptions import (
    ConflictError,
    NotFoundError,
    ServiceDeskError,
    ValidationError,
)
from servicedesk.application.use_cases.live_updates import LiveUpdateStream
from servicedesk.application.use_cases.queue_position import QueuePositionCalculator
from servicedesk.application.use_cases.session_lifecycle import SessionLifecycleUseCase
from servicedesk.application.use_cases.slot_admission import SlotAdmissionController
from servicedesk.domain.entities.session import ServiceType
from servicedesk.wiring.dependencies import (
    get_live_updates,
    get_queue_position_calculator,
    get_session_lifecycle,
    get_slot_admission,
)

T = TypeVar("T")

router = APIRouter(prefix="/api/customer")
logger = logging.getLogger(__name__)


def _http_error(e: ServiceDeskError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _sse(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


async def _event_stream(
    event: str,
    updates: AsyncIterator[T],
    render: Callable[[T], str],
    context: dict[str, str],
) -> AsyncIterator[str]:
    async with aclosing(updates):
        try:
            async for item in updates:
                yield _sse(event, render(item))
        except Exception as e:
            logger.exception("Live stream failed", extra={**context, "reason": str(e)})
            yield _sse("error", json.dumps({"detail": "Live updates unavailable"}))


def _streaming(body: AsyncIterator[str]) -> StreamingResponse:
    return StreamingResponse(
        body,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("", status_code=303)
async def create_customer_session(
    req: CustomerRequestSchema,
    lifecycle: SessionLifecycleUseCase = Depends(get_session_lifecycle),
):
    try:
        session = await lifecycle.create_session(req.email, req.service_type, name=req.name)
    except ServiceDeskError as e:
        raise _http_error(e)

    email = req.email.strip().lower()
    logger.info("Redirecting to queue stream", extra={"email": email, "session_id": session.id})
    return RedirectResponse(url=f"/api/customer/{quote(email)}/queue", status_code=303)


@router.put("/sessions/{session_id}/complete", response_model=SessionSchema)
async def complete_session(
    session_id: int,
    lifecycle: SessionLifecycleUseCase = Depends(get_session_lifecycle),
):
    try:
        session = await lifecycle.complete_session(session_id)
    except ServiceDeskError as e:
        raise _http_error(e)
    return SessionSchema.from_entity(session)


@router.put("/{email}", response_model=SessionSchema)
async def finish_customer_session(
    email: str,
    lifecycle: SessionLifecycleUseCase = Depends(get_session_lifecycle),
):
    try:
        session = await lifecycle.finish_active_session(email)
    except ServiceDeskError as e:
        raise _http_error(e)
    return SessionSchema.from_entity(session)


@router.get("/metrics")
async def metrics_stream(live: LiveUpdateStream = Depends(get_live_updates)) -> StreamingResponse:
    return _streaming(
        _event_stream(
            "metrics-update",
            live.metrics_updates(),
            lambda m: SessionMetricsSchema.from_entity(m).model_dump_json(),
            {},
        )
    )


@router.get("/in-progress/{service_type}")
async def in_progress_stream(
    service_type: ServiceType,
    live: LiveUpdateStream = Depends(get_live_updates),
) -> StreamingResponse:
    def render(rows) -> str:
        return json.dumps([InProgressSessionSchema.from_entity(r).model_dump(mode="json") for r in rows])

    return _streaming(
        _event_stream(
            "in-progress-update",
            live.in_progress_updates(service_type),
            render,
            {"service_type": service_type.value},
        )
    )


@router.get("/{email}/queue")
async def queue_stream(
    email: str,
    positions: QueuePositionCalculator = Depends(get_queue_position_calculator),
    live: LiveUpdateStream = Depends(get_live_updates),
) -> StreamingResponse:
    try:
        await positions.position_of(email)
    except ServiceDeskError as e:
        raise _http_error(e)

    logger.info("Customer connected to queue stream", extra={"email": email})
    return _streaming(
        _event_stream(
            "queue-update",
            live.queue_updates(email),
            lambda u: QueuePositionSchema.from_entity(u).model_dump_json(),
            {"email": email},
        )
    )


@router.get("/{email}/position", response_model=QueuePositionSchema)
async def queue_position(
    email: str,
    positions: QueuePositionCalculator = Depends(get_queue_position_calculator),
):
    try:
        snapshot = await positions.snapshot(email)
    except ServiceDeskError as e:
        raise _http_error(e)
    return QueuePositionSchema.from_entity(snapshot)


@router.get("/{email}/slots-available", response_model=int)
async def slots_available(
    email: str,
    positions: QueuePositionCalculator = Depends(get_queue_position_calculator),
    admission: SlotAdmissionController = Depends(get_slot_admission),
) -> int:
    try:
        snapshot = await positions.snapshot(email)
    except ServiceDeskError as e:
        raise _http_error(e)
    return await admission.check_available_slots(snapshot.service_type)
