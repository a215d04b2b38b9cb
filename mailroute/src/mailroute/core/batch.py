"""Bounded-concurrency mapping with per-item timeouts.

What:
  Run an async function over a list of items with a fixed number of workers,
  collect index-aligned results, and convert per-item failures into values so
  a batch always completes.

Why:
  Every batch touching the mail backend must respect its rate limits and must
  not let one slow or failing message hold up the rest. A single primitive
  keeps those guarantees identical for rule application, the multi-rule
  runner, and inspection sampling.

How:
  ``min(concurrency, len(items))`` worker coroutines pull the next index from
  a shared cursor, so fast workers keep picking up items while a slow one is
  stuck. Each call is wrapped with :func:`with_timeout`; an exception is
  handed to ``on_error`` whose return value becomes the item's result.

Interfaces:
  :func:`map_with_concurrency`, :func:`with_timeout`, :class:`TestingHooks`,
  :class:`NoopTestingHooks`.

Invariants & Safety:
  - The result list always has the same length and order as the input.
  - A timed-out call is cancelled and reported as :class:`ItemTimeoutError`;
    its side effects on the backend may still land.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Protocol, TypeVar, Union

from ..errors import ItemTimeoutError


T = TypeVar("T")
R = TypeVar("R")

ItemLabel = Union[str, Callable[[Any], str], None]


class TestingHooks(Protocol):
    """Injection points used by tests to add latency or failures.

    Production code receives :class:`NoopTestingHooks`; the hooks are called
    on the same code path in both cases.
    """

    __test__ = False

    async def before_item(self, message_id: str) -> None:
        ...

    async def before_mutation(self, message_id: str) -> None:
        ...


class NoopTestingHooks:
    """Hooks that do nothing."""

    async def before_item(self, message_id: str) -> None:
        return None

    async def before_mutation(self, message_id: str) -> None:
        return None


async def with_timeout(awaitable: Awaitable[R], timeout_s: float, label: str) -> R:
    """Await ``awaitable`` for at most ``timeout_s`` seconds.

    Raises:
      ItemTimeoutError: With message ``timeout:<label>`` when the deadline
        passes first.
    """

    try:
        return await asyncio.wait_for(awaitable, timeout_s)
    except ItemTimeoutError:
        raise
    except asyncio.TimeoutError as exc:
        raise ItemTimeoutError(label) from exc


def _item_label(label: ItemLabel, item: Any, index: int) -> str:
    if label is None:
        return str(item)
    if callable(label):
        return label(item)
    return f"{label}:{index}"


async def map_with_concurrency(
    items: Iterable[T],
    fn: Callable[[T], Awaitable[R]],
    *,
    concurrency: int,
    timeout_s: Optional[float] = None,
    on_error: Optional[Callable[[T, BaseException], R]] = None,
    label: ItemLabel = None,
) -> List[R]:
    """Apply ``fn`` to every item with at most ``concurrency`` calls in flight.

    Args:
      items: Inputs; consumed once into a list.
      fn: Coroutine function called once per item.
      concurrency: Maximum number of concurrent calls; values below one are
        treated as one.
      timeout_s: Per-call deadline. ``None`` disables the timeout.
      on_error: Converts an exception raised for an item into that item's
        result. Without it the first exception propagates.
      label: Timeout label; a string is suffixed with the item index, a
        callable receives the item, ``None`` uses ``str(item)``.

    Returns:
      Results in input order.
    """

    pending = list(items)
    results: List[Any] = [None] * len(pending)
    if not pending:
        return results
    workers = min(max(1, concurrency), len(pending))
    cursor = 0

    async def worker() -> None:
        nonlocal cursor
        while cursor < len(pending):
            index = cursor
            cursor += 1
            item = pending[index]
            try:
                if timeout_s is None:
                    results[index] = await fn(item)
                else:
                    results[index] = await with_timeout(fn(item), timeout_s, _item_label(label, item, index))
            except Exception as exc:
                if on_error is None:
                    raise
                results[index] = on_error(item, exc)

    await asyncio.gather(*(worker() for _ in range(workers)))
    return results


__all__ = [
    "TestingHooks",
    "NoopTestingHooks",
    "with_timeout",
    "map_with_concurrency",
]
