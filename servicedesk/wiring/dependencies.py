import logging

from servicedesk.application.ports.session_store import SessionStorePort
from servicedesk.application.use_cases.live_updates import LiveUpdateStream
from servicedesk.application.use_cases.metrics import MetricsAggregator
from servicedesk.application.use_cases.queue_position import QueuePositionCalculator
from servicedesk.application.use_cases.session_lifecycle import SessionLifecycleUseCase
from servicedesk.application.use_cases.slot_admission import SlotAdmissionController
from servicedesk.core.config import settings
from servicedesk.infrastructure.store.json_store import JsonSessionStore
from servicedesk.infrastructure.store.memory_store import MemorySessionStore


_session_store: SessionStorePort | None = None
_live_updates: LiveUpdateStream | None = None


def get_session_store() -> SessionStorePort:
    global _session_store
    if _session_store is None:
        provider = settings.STORE_PROVIDER.lower()
        if provider == "json":
            _session_store = JsonSessionStore(data_dir=settings.STORE_DATA_DIR)
        elif provider == "memory":
            _session_store = MemorySessionStore()
        else:
            raise ValueError(f"Unknown STORE_PROVIDER {settings.STORE_PROVIDER!r}, expected 'memory' or 'json'.")
        logging.getLogger(__name__).info("Using %s", type(_session_store).__name__)
    return _session_store


def get_slot_admission() -> SlotAdmissionController:
    return SlotAdmissionController(
        store=get_session_store(),
        max_slots=settings.MAX_SLOTS_PER_SERVICE,
        max_retries=settings.PROMOTION_MAX_RETRIES,
    )


def get_session_lifecycle() -> SessionLifecycleUseCase:
    return SessionLifecycleUseCase(
        store=get_session_store(),
        admission=get_slot_admission(),
        max_retries=settings.PROMOTION_MAX_RETRIES,
    )


def get_queue_position_calculator() -> QueuePositionCalculator:
    return QueuePositionCalculator(store=get_session_store())


def get_metrics_aggregator() -> MetricsAggregator:
    return MetricsAggregator(store=get_session_store())


def get_live_updates() -> LiveUpdateStream:
    global _live_updates
    if _live_updates is None:
        _live_updates = LiveUpdateStream(
            store=get_session_store(),
            lifecycle=get_session_lifecycle(),
            positions=get_queue_position_calculator(),
            metrics=get_metrics_aggregator(),
            interval=settings.STREAM_INTERVAL_SECONDS,
            queue_timeout=settings.QUEUE_STREAM_TIMEOUT_SECONDS,
        )
    return _live_updates


def reset_container(store: SessionStorePort | None = None) -> None:
    """Drop cached singletons, optionally installing a specific store."""
    global _session_store, _live_updates
    _session_store = store
    _live_updates = None
