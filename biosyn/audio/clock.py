"""
Output audio clock.

An OutputClock is the single time base for one playback path. Time is
measured in rendered samples, so it only advances while the device is
actually consuming audio (a suspended clock is frozen).

MixingOutputClock holds the scheduled sources and renders blocks on
demand; a device subclass calls render() from its audio callback thread.

Threading:
- render() may run on a non-loop thread; source bookkeeping is guarded
  by a threading.Lock.
- on_ended callbacks are always delivered on the owning event loop.
"""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

import numpy as np

from biosyn.audio.frames import AudioBuffer


class ClockState(str, Enum):
    """Lifecycle of an output clock."""
    RUNNING = "running"
    SUSPENDED = "suspended"
    CLOSED = "closed"


EndedCallback = Callable[["ScheduledSource"], None]


class ScheduledSource:
    """
    One buffer scheduled to start at an absolute clock time.

    stop() is idempotent and silences the source immediately, whether it
    has started playing or not.
    """

    def __init__(
        self,
        *,
        clock: MixingOutputClock,
        buffer: AudioBuffer,
        start_at: float,
        on_ended: Optional[EndedCallback],
    ) -> None:
        self.buffer = buffer
        self.start_at = start_at
        self.start_frame = int(round(start_at * clock.sample_rate))
        self.ended = False
        self._clock = clock
        self._on_ended = on_ended

    @property
    def duration_s(self) -> float:
        return self.buffer.duration_s

    @property
    def end_frame(self) -> int:
        return self.start_frame + self.buffer.frame_count

    def stop(self) -> None:
        if self.ended:
            return
        self._clock._retire(self)  # pylint: disable=protected-access

    def _finish(self) -> None:
        if self.ended:
            return
        self.ended = True
        if self._on_ended is not None:
            self._on_ended(self)


class OutputClock(ABC):
    """
    Contract for an output clock.

    Implementations own exactly one output device and are owned by exactly
    one scheduler or narrator.
    """

    sample_rate: int

    @property
    @abstractmethod
    def state(self) -> ClockState:
        raise NotImplementedError

    @abstractmethod
    def now(self) -> float:
        """Current clock time in seconds."""
        raise NotImplementedError

    @abstractmethod
    def start_source(
        self,
        buffer: AudioBuffer,
        when: float,
        on_ended: Optional[EndedCallback] = None,
    ) -> ScheduledSource:
        """Schedule buffer to begin at absolute clock time `when`."""
        raise NotImplementedError

    @abstractmethod
    async def resume(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def suspend(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """Release the device. Idempotent."""
        raise NotImplementedError


ClockFactory = Callable[[int], OutputClock]


def render_block(
    sources: list[ScheduledSource],
    *,
    block_start: int,
    frames: int,
    channels: int,
) -> tuple[np.ndarray, list[ScheduledSource]]:
    """
    Mix every source overlapping [block_start, block_start + frames).

    Returns:
        (block, finished) where block has shape (frames, channels) and
        finished lists sources whose final sample lies inside the block.

    Mono sources are duplicated across output channels; extra source
    channels beyond the output channel count are ignored.
    """
    block = np.zeros((frames, channels), dtype=np.float32)
    block_end = block_start + frames
    finished: list[ScheduledSource] = []

    for src in sources:
        if src.start_frame >= block_end:
            continue

        src_samples = src.buffer.samples
        src_from = max(block_start - src.start_frame, 0)
        src_to = min(block_end - src.start_frame, src.buffer.frame_count)

        if src_from < src_to:
            dst_from = src.start_frame + src_from - block_start
            dst_to = dst_from + (src_to - src_from)
            for ch in range(channels):
                src_ch = ch if ch < src_samples.shape[0] else 0
                block[dst_from:dst_to, ch] += src_samples[src_ch, src_from:src_to]

        if src.end_frame <= block_end:
            finished.append(src)

    np.clip(block, -1.0, 1.0, out=block)
    return block, finished


class MixingOutputClock(OutputClock):
    """
    Sample-counting clock with an in-process mixer.

    Subclasses connect render() to a device callback and implement the
    device side of resume/suspend/close through the _device_* hooks.
    """

    def __init__(
        self,
        *,
        sample_rate: int,
        channels: int = 1,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self._loop = loop
        self._lock = threading.Lock()
        self._sources: list[ScheduledSource] = []
        self._rendered_frames = 0
        self._state = ClockState.RUNNING

    # ------------------------------------------------------------------
    # OutputClock contract
    # ------------------------------------------------------------------

    @property
    def state(self) -> ClockState:
        return self._state

    def now(self) -> float:
        with self._lock:
            return self._rendered_frames / self.sample_rate

    def start_source(
        self,
        buffer: AudioBuffer,
        when: float,
        on_ended: Optional[EndedCallback] = None,
    ) -> ScheduledSource:
        if self._state is ClockState.CLOSED:
            raise RuntimeError("cannot schedule on a closed output clock")
        src = ScheduledSource(clock=self, buffer=buffer, start_at=when, on_ended=on_ended)
        with self._lock:
            self._sources.append(src)
        return src

    async def resume(self) -> None:
        if self._state is not ClockState.SUSPENDED:
            return
        await self._device_resume()
        self._state = ClockState.RUNNING

    async def suspend(self) -> None:
        if self._state is not ClockState.RUNNING:
            return
        await self._device_suspend()
        self._state = ClockState.SUSPENDED

    async def close(self) -> None:
        if self._state is ClockState.CLOSED:
            return
        self._state = ClockState.CLOSED
        with self._lock:
            pending = list(self._sources)
            self._sources.clear()
        for src in pending:
            src._finish()  # pylint: disable=protected-access
        await self._device_close()

    # ------------------------------------------------------------------
    # Rendering (device thread)
    # ------------------------------------------------------------------

    @property
    def scheduled_count(self) -> int:
        with self._lock:
            return len(self._sources)

    def render(self, frames: int) -> np.ndarray:
        """
        Produce the next block of output and advance the clock.

        A suspended or closed clock renders silence without advancing.
        """
        if self._state is not ClockState.RUNNING:
            return np.zeros((frames, self.channels), dtype=np.float32)

        with self._lock:
            block, finished = render_block(
                self._sources,
                block_start=self._rendered_frames,
                frames=frames,
                channels=self.channels,
            )
            for src in finished:
                self._sources.remove(src)
            self._rendered_frames += frames

        for src in finished:
            self._dispatch_finish(src)
        return block

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _retire(self, src: ScheduledSource) -> None:
        with self._lock:
            if src in self._sources:
                self._sources.remove(src)
        src._finish()  # pylint: disable=protected-access

    def _dispatch_finish(self, src: ScheduledSource) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            src._finish()  # pylint: disable=protected-access
            return
        loop.call_soon_threadsafe(src._finish)  # pylint: disable=protected-access

    async def _device_resume(self) -> None:
        """Hook: restart the device stream."""

    async def _device_suspend(self) -> None:
        """Hook: pause the device stream."""

    async def _device_close(self) -> None:
        """Hook: release the device."""
