"""
Microphone capture stream.

Bridges a live input device to fixed-size AudioFrames delivered to an async
handler on the event loop.

Backpressure (ordered hand-off):
- The device callback runs on the audio thread and only posts the block
  to the loop.
- Frames wait in arrival order while the handler is busy; a slow handler
  delays delivery, it does not lose audio.
- The queue is bounded by CAPTURE_MAX_PENDING_FRAMES. Only when that
  bound is hit is the oldest waiting frame dropped and counted.

Visualizer:
- Every block also refreshes an analyser window. frequency_snapshot() may
  be polled at any cadence, independent of frame delivery.
"""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import numpy as np

from biosyn.audio.frames import AudioFrame
from biosyn.constants import (
    ANALYSER_FFT_SIZE,
    ANALYSER_MAX_DECIBELS,
    ANALYSER_MIN_DECIBELS,
    ANALYSER_SMOOTHING,
    CAPTURE_CHANNELS,
    CAPTURE_FRAME_SAMPLES,
    CAPTURE_MAX_PENDING_FRAMES,
    CAPTURE_SAMPLE_RATE_HZ,
    VISUALIZER_BANDS,
    VISUALIZER_MAX_LEVEL,
    VISUALIZER_MIN_LEVEL,
)
from biosyn.errors import DeviceUnavailable
from biosyn.observability.logger import log_event, now_ms

BlockCallback = Callable[[np.ndarray], None]
FrameHandler = Callable[[AudioFrame], Awaitable[None]]


# ---------------------------------------------------------------------
# Device contract
# ---------------------------------------------------------------------

class DeviceLease:
    """
    Exclusive hold on an InputDevice's underlying stream.

    close() stops the stream and releases the device. Idempotent.
    """

    def __init__(self, device: InputDevice, stream: Any) -> None:
        self._device = device
        self._stream = stream
        self.closed = False

    def start(self) -> None:
        self._stream.start()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._stream.stop()
            self._stream.close()
        finally:
            self._device._release(self)  # pylint: disable=protected-access


class InputDevice(ABC):
    """
    A capture device that at most one session may hold at a time.

    Subclasses implement _open_stream(); the returned object must provide
    start(), stop(), close().
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._holder: DeviceLease | None = None

    @property
    def held(self) -> bool:
        return self._holder is not None

    def open(
        self,
        *,
        sample_rate: int,
        channels: int,
        block_size: int,
        on_block: BlockCallback,
    ) -> DeviceLease:
        """
        Acquire the device.

        Raises:
            DeviceUnavailable if the device is held, missing, or denied.
        """
        with self._lock:
            if self._holder is not None:
                raise DeviceUnavailable("capture device busy")
            stream = self._open_stream(
                sample_rate=sample_rate,
                channels=channels,
                block_size=block_size,
                on_block=on_block,
            )
            lease = DeviceLease(self, stream)
            self._holder = lease
            return lease

    def _release(self, lease: DeviceLease) -> None:
        with self._lock:
            if self._holder is lease:
                self._holder = None

    @abstractmethod
    def _open_stream(
        self,
        *,
        sample_rate: int,
        channels: int,
        block_size: int,
        on_block: BlockCallback,
    ) -> Any:
        raise NotImplementedError


# ---------------------------------------------------------------------
# Analyser
# ---------------------------------------------------------------------

class _Analyser:
    """
    Frequency analyser matching a browser AnalyserNode's byte output.

    Blackman-windowed FFT, magnitude smoothed over time, converted to dB
    and mapped from [min_db, max_db] onto 0..255.
    """

    def __init__(self, fft_size: int = ANALYSER_FFT_SIZE) -> None:
        self.fft_size = fft_size
        self._window = np.blackman(fft_size).astype(np.float32)
        self._smoothed = np.zeros(fft_size // 2, dtype=np.float32)
        self._latest = np.zeros(fft_size, dtype=np.float32)
        self._lock = threading.Lock()

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def push(self, samples: np.ndarray) -> None:
        tail = samples[-self.fft_size:]
        with self._lock:
            if len(tail) < self.fft_size:
                self._latest = np.concatenate([self._latest[len(tail):], tail])
            else:
                self._latest = tail.copy()

    def byte_frequency_data(self) -> np.ndarray:
        with self._lock:
            window = self._latest * self._window
        magnitude = np.abs(np.fft.rfft(window))[: self.bin_count] / self.fft_size
        self._smoothed = (
            ANALYSER_SMOOTHING * self._smoothed
            + (1.0 - ANALYSER_SMOOTHING) * magnitude.astype(np.float32)
        )
        with np.errstate(divide="ignore"):
            db = 20.0 * np.log10(self._smoothed)
        span = ANALYSER_MAX_DECIBELS - ANALYSER_MIN_DECIBELS
        scaled = (db - ANALYSER_MIN_DECIBELS) * (255.0 / span)
        return np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)


# ---------------------------------------------------------------------
# Capture stream
# ---------------------------------------------------------------------

@dataclass
class CaptureCounters:
    """Frame counters for observability."""
    delivered: int = 0
    dropped: int = 0
    handler_errors: int = 0


class AudioCaptureStream:
    """
    Fixed-size frame source over one InputDevice.

    Lifecycle:
    - start(handler): acquire the device and begin delivering frames.
    - stop(): release everything. Idempotent, safe before/after start.
    """

    def __init__(
        self,
        device: InputDevice,
        *,
        frame_size: int = CAPTURE_FRAME_SAMPLES,
        sample_rate: int = CAPTURE_SAMPLE_RATE_HZ,
        channels: int = CAPTURE_CHANNELS,
        session_id: str | None = None,
        max_pending: int = CAPTURE_MAX_PENDING_FRAMES,
    ) -> None:
        self._device = device
        self.max_pending = max_pending
        self.frame_size = frame_size
        self.sample_rate = sample_rate
        self.channels = channels
        self._session_id = session_id

        self._loop: asyncio.AbstractEventLoop | None = None
        self._lease: DeviceLease | None = None
        self._pending: Optional[asyncio.Queue[AudioFrame]] = None
        self._pump_task: asyncio.Task[None] | None = None
        self._handler: FrameHandler | None = None
        self._next_seq = 1
        self._analyser = _Analyser()
        self.counters = CaptureCounters()

    @property
    def active(self) -> bool:
        return self._lease is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, handler: FrameHandler) -> None:
        """
        Acquire the device and start frame delivery.

        Raises:
            DeviceUnavailable (propagated from the device).
        """
        if self._lease is not None:
            return

        self._loop = asyncio.get_running_loop()
        self._handler = handler
        self._pending = asyncio.Queue(maxsize=self.max_pending)

        self._lease = self._device.open(
            sample_rate=self.sample_rate,
            channels=self.channels,
            block_size=self.frame_size,
            on_block=self._on_block,
        )
        self._pump_task = asyncio.create_task(self._pump())

        try:
            self._lease.start()
        except Exception as e:
            await self.stop()
            raise DeviceUnavailable(f"capture stream failed to start: {e!r}") from e

    async def stop(self) -> None:
        task = self._pump_task
        self._pump_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        lease = self._lease
        self._lease = None
        if lease is not None:
            lease.close()

        self._pending = None
        self._handler = None

    # ------------------------------------------------------------------
    # Visualizer
    # ------------------------------------------------------------------

    def frequency_snapshot(self) -> np.ndarray:
        """Byte frequency data (fft_size / 2 bins, 0..255)."""
        return self._analyser.byte_frequency_data()

    def visualizer_levels(self, bands: int = VISUALIZER_BANDS) -> list[float]:
        """Bar heights for a small level meter, sampled from evenly spaced bins."""
        data = self.frequency_snapshot()
        step = max(len(data) // bands, 1)
        levels: list[float] = []
        for i in range(bands):
            value = float(data[min(i * step, len(data) - 1)])
            levels.append(max(VISUALIZER_MIN_LEVEL, (value / 255.0) * VISUALIZER_MAX_LEVEL))
        return levels

    # ------------------------------------------------------------------
    # Audio thread -> loop
    # ------------------------------------------------------------------

    def _on_block(self, samples: np.ndarray) -> None:
        """Device callback. Runs on the audio thread; must not block."""
        mono = np.array(samples, dtype=np.float32).reshape(-1)
        self._analyser.push(mono)

        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._offer, mono)

    def _offer(self, samples: np.ndarray) -> None:
        pending = self._pending
        if pending is None:
            return

        frame = AudioFrame(
            sequence_num=self._next_seq,
            samples=samples,
            sample_rate=self.sample_rate,
            ts_ms=now_ms(),
        )
        self._next_seq += 1

        if pending.full():
            stale = pending.get_nowait()
            self.counters.dropped += 1
            log_event({
                "event_type": "CAPTURE_FRAME_DROPPED",
                "session_id": self._session_id,
                "seq_num": stale.sequence_num,
                "dropped_total": self.counters.dropped,
            })
        pending.put_nowait(frame)

    async def _pump(self) -> None:
        pending = self._pending
        handler = self._handler
        if pending is None or handler is None:
            return

        while True:
            frame = await pending.get()
            try:
                await handler(frame)
                self.counters.delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:  # pylint: disable=broad-exception-caught
                self.counters.handler_errors += 1
                log_event({
                    "event_type": "CAPTURE_HANDLER_ERROR",
                    "session_id": self._session_id,
                    "seq_num": frame.sequence_num,
                    "error": repr(e),
                })
