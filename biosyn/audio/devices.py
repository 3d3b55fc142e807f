"""
PortAudio-backed devices (sounddevice).

- MicrophoneDevice: InputDevice over sounddevice.InputStream.
- SoundDeviceOutputClock: MixingOutputClock driven by an OutputStream
  callback.

This is the only module that touches sounddevice. Everything else depends
on the InputDevice / OutputClock contracts so it can run without audio
hardware.
"""

from __future__ import annotations

import asyncio
from typing import Any

import numpy as np
import sounddevice as sd

from biosyn.audio.capture import BlockCallback, InputDevice
from biosyn.audio.clock import MixingOutputClock
from biosyn.constants import PLAYBACK_CHANNELS
from biosyn.errors import DeviceUnavailable
from biosyn.observability.logger import log_event

AUDIO_DTYPE = "float32"


class MicrophoneDevice(InputDevice):
    """System (or explicitly selected) microphone."""

    def __init__(self, device: int | str | None = None) -> None:
        super().__init__()
        self._device = device

    def _open_stream(
        self,
        *,
        sample_rate: int,
        channels: int,
        block_size: int,
        on_block: BlockCallback,
    ) -> Any:
        try:
            sd.query_devices(self._device, kind="input")
        except (ValueError, sd.PortAudioError) as e:
            raise DeviceUnavailable(f"no input device: {e}") from e

        def _callback(indata: np.ndarray, frames: int, time_info: Any, status: sd.CallbackFlags) -> None:  # pylint: disable=unused-argument
            if status:
                log_event({
                    "event_type": "CAPTURE_DEVICE_STATUS",
                    "status": str(status),
                })
            on_block(indata[:, 0])

        try:
            return sd.InputStream(
                device=self._device,
                samplerate=sample_rate,
                channels=channels,
                dtype=AUDIO_DTYPE,
                blocksize=block_size,
                callback=_callback,
            )
        except sd.PortAudioError as e:
            raise DeviceUnavailable(f"input device refused: {e}") from e


class SoundDeviceOutputClock(MixingOutputClock):
    """
    Output clock whose time base is the samples PortAudio has consumed.

    Suspending stops the stream (time freezes); resuming restarts it.
    """

    def __init__(
        self,
        *,
        sample_rate: int,
        channels: int = PLAYBACK_CHANNELS,
        device: int | str | None = None,
    ) -> None:
        super().__init__(
            sample_rate=sample_rate,
            channels=channels,
            loop=asyncio.get_running_loop(),
        )
        try:
            self._stream = sd.OutputStream(
                device=device,
                samplerate=sample_rate,
                channels=channels,
                dtype=AUDIO_DTYPE,
                callback=self._callback,
            )
            self._stream.start()
        except (ValueError, sd.PortAudioError) as e:
            raise DeviceUnavailable(f"output device refused: {e}") from e

    @classmethod
    def factory(cls, device: int | str | None = None):
        """ClockFactory bound to one output device."""
        def _open(sample_rate: int) -> SoundDeviceOutputClock:
            return cls(sample_rate=sample_rate, device=device)
        return _open

    def _callback(self, outdata: np.ndarray, frames: int, time_info: Any, status: sd.CallbackFlags) -> None:  # pylint: disable=unused-argument
        outdata[:] = self.render(frames)

    async def _device_resume(self) -> None:
        await asyncio.to_thread(self._stream.start)

    async def _device_suspend(self) -> None:
        await asyncio.to_thread(self._stream.stop)

    async def _device_close(self) -> None:
        def _close_stream() -> None:
            try:
                self._stream.stop()
            finally:
                self._stream.close()

        await asyncio.to_thread(_close_stream)
