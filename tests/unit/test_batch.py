"""Unit tests for bounded-concurrency batch execution."""

from __future__ import annotations

import asyncio
import time

import pytest

from mailroute.core.batch import map_with_concurrency, with_timeout
from mailroute.errors import ItemTimeoutError


@pytest.mark.asyncio
async def test_results_are_index_aligned_and_concurrency_bounded():
    active = 0
    peak = 0

    async def work(value: int) -> int:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01 * (5 - value))
        active -= 1
        return value * 10

    results = await map_with_concurrency(range(5), work, concurrency=2)

    assert results == [0, 10, 20, 30, 40]
    assert peak == 2


@pytest.mark.asyncio
async def test_worker_count_never_exceeds_items():
    calls = []

    async def work(value: str) -> str:
        calls.append(value)
        return value.upper()

    assert await map_with_concurrency(["a"], work, concurrency=8) == ["A"]
    assert await map_with_concurrency([], work, concurrency=8) == []
    assert calls == ["a"]


@pytest.mark.asyncio
async def test_errors_are_converted_per_item():
    async def work(value: int) -> int:
        if value == 2:
            raise ValueError("boom")
        return value

    results = await map_with_concurrency(
        [1, 2, 3],
        work,
        concurrency=3,
        on_error=lambda item, exc: f"failed:{item}:{exc}",
    )

    assert results == [1, "failed:2:boom", 3]


@pytest.mark.asyncio
async def test_errors_propagate_without_handler():
    async def work(value: int) -> int:
        raise RuntimeError("no handler")

    with pytest.raises(RuntimeError):
        await map_with_concurrency([1], work, concurrency=1)


@pytest.mark.asyncio
async def test_hanging_item_times_out_without_blocking_others():
    async def work(value: str) -> str:
        if value == "hang":
            await asyncio.sleep(3600)
        return value

    started = time.monotonic()
    results = await map_with_concurrency(
        ["a", "hang", "b", "c"],
        work,
        concurrency=2,
        timeout_s=0.05,
        on_error=lambda item, exc: exc,
        label=lambda item: f"item:{item}",
    )

    assert time.monotonic() - started < 2
    assert results[0] == "a" and results[2] == "b" and results[3] == "c"
    assert isinstance(results[1], ItemTimeoutError)
    assert str(results[1]) == "timeout:item:hang"
    assert isinstance(results[1], TimeoutError)


@pytest.mark.asyncio
async def test_with_timeout_label():
    with pytest.raises(ItemTimeoutError) as excinfo:
        await with_timeout(asyncio.sleep(1), 0.01, "metadata:m1")
    assert excinfo.value.label == "metadata:m1"
    assert await with_timeout(asyncio.sleep(0, result="ok"), 1, "fast") == "ok"


@pytest.mark.asyncio
async def test_string_label_is_suffixed_with_index():
    async def work(value: int) -> int:
        await asyncio.sleep(3600)
        return value

    results = await map_with_concurrency(
        [7],
        work,
        concurrency=1,
        timeout_s=0.01,
        on_error=lambda item, exc: str(exc),
        label="batch",
    )
    assert results == ["timeout:batch:0"]
