"""
Single-flight debounce timer.

- trigger() cancels any pending (un-fired) timer and starts a new one.
- When a timer fires it spawns the flush as its own task; a later
  trigger() never cancels a flush that is already running.
- Flushes never overlap: a flush started while another is in flight
  waits for it first.

N triggers inside one quiet period therefore produce exactly one flush.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from biosyn.observability.logger import log_event

FlushCallback = Callable[[], Awaitable[None]]


class SingleFlightDebouncer:
    """One live timer handle; cancel-and-replace on every trigger."""

    def __init__(self, delay_s: float, callback: FlushCallback, *, name: str = "debounce") -> None:
        self.delay_s = delay_s
        self._callback = callback
        self._name = name
        self._timer: asyncio.Task[None] | None = None
        self._flush: asyncio.Task[None] | None = None

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def in_flight(self) -> bool:
        return self._flush is not None and not self._flush.done()

    def trigger(self) -> None:
        """(Re)start the quiet-period timer."""
        self.cancel()
        self._timer = asyncio.create_task(self._fire_after_delay())

    def cancel(self) -> None:
        """Drop the pending timer, if any. An in-flight flush is unaffected."""
        timer = self._timer
        self._timer = None
        if timer is not None and not timer.done():
            timer.cancel()

    async def flush_now(self) -> None:
        """Skip the quiet period: cancel the timer and flush immediately."""
        self.cancel()
        await self._start_flush()

    async def wait_idle(self) -> None:
        """Wait until no timer is pending and no flush is running."""
        while True:
            timer = self._timer if self.pending else None
            flush = self._flush if self.in_flight else None
            if timer is None and flush is None:
                return
            for task in (timer, flush):
                if task is None:
                    continue
                try:
                    await asyncio.shield(task)
                except asyncio.CancelledError:
                    if not task.cancelled():
                        raise

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _fire_after_delay(self) -> None:
        await asyncio.sleep(self.delay_s)
        # Detach before flushing so a new trigger() cannot cancel the flush.
        self._timer = None
        self._start_flush()

    def _start_flush(self) -> asyncio.Task[None]:
        previous = self._flush if self.in_flight else None
        self._flush = asyncio.create_task(self._run_flush(previous))
        return self._flush

    async def _run_flush(self, previous: asyncio.Task[None] | None) -> None:
        if previous is not None:
            await asyncio.wait({previous})
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "SYNC_FLUSH_FAILED",
                "debouncer": self._name,
                "error": repr(e),
            })
