#!/usr/bin/env python3
"""
Interactive local service desk harness (no HTTP).

Usage:
  python3 scripts/simulate_desk.py

What it does:
- Builds the same use cases the API uses, over an in-memory store
- Lets you enqueue, finish and complete sessions by typing commands
- Prints queue positions, in-progress rows and metrics after each change
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from servicedesk.application.exceptions import ServiceDeskError  # noqa: E402
from servicedesk.core.config import settings  # noqa: E402
from servicedesk.domain.entities.session import ServiceType  # noqa: E402
from servicedesk.infrastructure.store.memory_store import MemorySessionStore  # noqa: E402
from servicedesk.wiring.dependencies import (  # noqa: E402
    get_live_updates,
    get_metrics_aggregator,
    get_queue_position_calculator,
    get_session_lifecycle,
    reset_container,
)


_store = MemorySessionStore()


def _print_header() -> None:
    print("\nLocal Service Desk")
    print("-" * 60)
    print(f"slots per service: {settings.MAX_SLOTS_PER_SERVICE}")
    print("Commands:")
    print("  /join <email> <service>  -> enqueue (services: " + ", ".join(s.value for s in ServiceType) + ")")
    print("  /finish <email>          -> customer leaves (complete or cancel)")
    print("  /complete <session_id>   -> agent completes a session")
    print("  /board                   -> show in-progress and waiting customers")
    print("  /metrics                 -> show desk metrics")
    print("  /quit")
    print("-" * 60)


async def _board() -> None:
    positions = get_queue_position_calculator()
    live = get_live_updates()
    for service_type in ServiceType:
        serving = await live.list_in_progress(service_type)
        waiting = await _store.find_all_pending(service_type)
        if not serving and not waiting:
            continue
        print(f"\n[{service_type.value}]")
        for row in serving:
            print(f"  serving  #{row.session_id} {row.customer_email} since {row.started_at:%H:%M:%S}")
        for session in waiting:
            print(f"  waiting  #{session.id} position {await positions.position_of_session(session)}")


async def _metrics() -> None:
    snapshot = await get_metrics_aggregator().snapshot()
    print("\n--- Metrics ---")
    print(f"pending: {snapshot.pending_count}  in progress: {snapshot.in_progress_count}")
    print(f"completed: {snapshot.completed_count}  canceled: {snapshot.canceled_count}")
    print(f"completion rate: {snapshot.completion_rate:.2f}%  cancellation rate: {snapshot.cancellation_rate:.2f}%")
    print(f"avg duration: {snapshot.average_service_duration_seconds:.1f}s")
    print(f"avg sessions per customer: {snapshot.average_sessions_per_customer}")


async def _handle(cmd: str, args: list[str]) -> None:
    lifecycle = get_session_lifecycle()
    if cmd == "/join" and len(args) == 2:
        session = await lifecycle.create_session(args[0], args[1])
        print(f"session #{session.id} created")
        snapshot = await get_queue_position_calculator().snapshot(args[0])
        print(f"{snapshot.status.value}, position {snapshot.position}")
    elif cmd == "/finish" and len(args) == 1:
        session = await lifecycle.finish_active_session(args[0])
        print(f"session #{session.id} finished as {session.status.value}")
    elif cmd == "/complete" and len(args) == 1 and args[0].isdigit():
        session = await lifecycle.complete_session(int(args[0]))
        print(f"session #{session.id} completed")
    elif cmd == "/board":
        await _board()
    elif cmd == "/metrics":
        await _metrics()
    else:
        print("Unknown command, type /help")


def main() -> None:
    reset_container(_store)
    _print_header()

    while True:
        try:
            line = input("\n> ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nBye!")
            return

        if not line:
            continue
        cmd, *args = line.split()
        cmd = cmd.lower()
        if cmd in ("/quit", "/exit"):
            print("Bye!")
            return
        if cmd == "/help":
            _print_header()
            continue

        try:
            asyncio.run(_handle(cmd, args))
        except ServiceDeskError as e:
            print(f"ERROR: {e}")


if __name__ == "__main__":
    main()
