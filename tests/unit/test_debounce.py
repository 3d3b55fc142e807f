# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

import pytest

from biosyn.sync.debounce import SingleFlightDebouncer


@pytest.mark.asyncio
async def test_triggers_inside_quiet_period_collapse_to_one_flush():
    calls: list[int] = []

    async def flush() -> None:
        calls.append(1)

    debouncer = SingleFlightDebouncer(0.05, flush)
    for _ in range(5):
        debouncer.trigger()
        await asyncio.sleep(0.005)

    assert debouncer.pending
    await debouncer.wait_idle()

    assert len(calls) == 1
    assert not debouncer.pending and not debouncer.in_flight


@pytest.mark.asyncio
async def test_cancel_drops_pending_timer():
    calls: list[int] = []

    async def flush() -> None:
        calls.append(1)

    debouncer = SingleFlightDebouncer(0.01, flush)
    debouncer.trigger()
    debouncer.cancel()
    await asyncio.sleep(0.03)

    assert calls == []


@pytest.mark.asyncio
async def test_flushes_never_overlap():
    gate = asyncio.Event()
    running = 0
    peak = 0
    order: list[str] = []

    async def flush() -> None:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        order.append("start")
        await gate.wait()
        order.append("end")
        running -= 1

    debouncer = SingleFlightDebouncer(60, flush)
    first = asyncio.create_task(debouncer.flush_now())
    await asyncio.sleep(0)
    second = asyncio.create_task(debouncer.flush_now())
    await asyncio.sleep(0)
    assert debouncer.in_flight

    gate.set()
    await asyncio.gather(first, second)
    await debouncer.wait_idle()

    assert peak == 1
    assert order == ["start", "end", "start", "end"]


@pytest.mark.asyncio
async def test_failing_flush_is_logged_not_raised(logged):
    async def flush() -> None:
        raise RuntimeError("disk full")

    debouncer = SingleFlightDebouncer(0, flush, name="profile_sync")
    debouncer.trigger()
    await debouncer.wait_idle()

    assert logged[-1]["event_type"] == "SYNC_FLUSH_FAILED"
    assert logged[-1]["debouncer"] == "profile_sync"
