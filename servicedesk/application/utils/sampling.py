from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

T = TypeVar("T")

_UNSET = object()


async def sample_changes(
    sample: Callable[[], Awaitable[T | None]],
    *,
    interval: float,
    key: Callable[[T], Any] | None = None,
    until: Callable[[T], bool] | None = None,
    timeout: float | None = None,
) -> AsyncIterator[T]:
    """
    Re-run `sample` every `interval` seconds and yield only values whose key changed.

    - The first sample is taken immediately.
    - A None sample means "nothing to report" and never resets the last key.
    - When `until` matches an emitted value the iterator ends after yielding it.
    - With `timeout`, the iterator ends once that many seconds have passed.
    - Exceptions raised by `sample` propagate to the consumer.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout if timeout is not None else None
    key_of = key or (lambda value: value)
    last: Any = _UNSET

    while deadline is None or loop.time() < deadline:
        if deadline is None:
            value = await sample()
        else:
            try:
                value = await asyncio.wait_for(sample(), timeout=deadline - loop.time())
            except asyncio.TimeoutError:
                return

        if value is not None:
            current = key_of(value)
            if last is _UNSET or current != last:
                last = current
                yield value
                if until is not None and until(value):
                    return

        delay = interval
        if deadline is not None:
            delay = min(interval, max(deadline - loop.time(), 0.0))
        await asyncio.sleep(delay)
