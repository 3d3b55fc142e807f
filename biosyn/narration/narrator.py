"""
One-shot report narration.

Responsibilities:
- Request a single synthesis payload, decode it, play it once
- speak() on the item already speaking acts as a toggle (stop)
- speak() on another item stops the current one first
- pause()/resume() suspend the output clock without discarding the buffer

Guarantees:
- At most one playback source per narrator
- AuthMissing is raised before any network call
- An empty synthesis result resets to IDLE and raises SynthesisEmpty
- A stop() or newer speak() issued while synthesis is in flight wins;
  the late payload is discarded
"""

from __future__ import annotations

import asyncio
from enum import Enum
from pathlib import Path

from biosyn.adapters.oracle.base import Oracle
from biosyn.adapters.oracle.prompts import SpeechTone
from biosyn.audio.clock import ClockFactory, OutputClock, ScheduledSource
from biosyn.audio.codec import bytes_to_audio_buffer, decode_base64_to_bytes
from biosyn.audio.frames import AudioBuffer
from biosyn.audio.wav import write_wav
from biosyn.constants import PLAYBACK_CHANNELS, PLAYBACK_SAMPLE_RATE_HZ
from biosyn.errors import AuthMissing, SynthesisEmpty
from biosyn.observability.logger import log_event


class NarratorState(str, Enum):
    IDLE = "IDLE"
    SYNTHESIZING = "SYNTHESIZING"
    PLAYING = "PLAYING"
    PAUSED = "PAUSED"


class ReportAudioNarrator:
    """Request/response text-to-speech with a single active playback."""

    def __init__(self, oracle: Oracle, clock_factory: ClockFactory, *, voice: str) -> None:
        self._oracle = oracle
        self._clock_factory = clock_factory
        self._voice = voice

        self._state = NarratorState.IDLE
        self._item: str | None = None
        self._generation = 0
        self._clock: OutputClock | None = None
        self._source: ScheduledSource | None = None
        self._last_buffer: AudioBuffer | None = None
        self._closing: asyncio.Task[None] | None = None

    @property
    def state(self) -> NarratorState:
        return self._state

    @property
    def default_voice(self) -> str:
        return self._voice

    @property
    def speaking_item(self) -> str | None:
        return self._item

    @property
    def last_buffer(self) -> AudioBuffer | None:
        """Most recently decoded payload (kept for export after playback)."""
        return self._last_buffer

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def speak(
        self,
        text: str,
        item_id: str | None = None,
        tone: SpeechTone | None = None,
        voice: str | None = None,
    ) -> None:
        """
        Narrate text, or stop if item_id is already being narrated.

        voice selects a provider voice for this request only; the
        narrator default is used when it is None.

        Raises:
            AuthMissing before any request when credentials are absent.
            SynthesisEmpty when the provider returned no audio.
            Errors from the oracle propagate after resetting to IDLE.
        """
        item = item_id if item_id is not None else text

        if self._state is not NarratorState.IDLE and self._item == item:
            await self.stop()
            return
        await self.stop()

        if not self._oracle.has_credentials:
            raise AuthMissing("speech synthesis requires an API key")

        self._generation += 1
        generation = self._generation
        self._item = item
        self._state = NarratorState.SYNTHESIZING

        try:
            payload = await self._oracle.synthesize_speech(text, voice or self._voice, tone)
        except BaseException:
            if generation == self._generation:
                self._reset()
            raise

        if generation != self._generation:
            log_event({
                "event_type": "NARRATION_RESULT_DISCARDED",
                "item": item,
            })
            return

        pcm = decode_base64_to_bytes(payload) if payload else b""
        if not pcm:
            self._reset()
            raise SynthesisEmpty("voice synthesis yielded no data")

        buffer = bytes_to_audio_buffer(pcm, PLAYBACK_SAMPLE_RATE_HZ, PLAYBACK_CHANNELS)
        self._last_buffer = buffer

        try:
            clock = self._clock_factory(PLAYBACK_SAMPLE_RATE_HZ)
        except BaseException:
            self._reset()
            raise
        self._clock = clock
        self._source = clock.start_source(buffer, clock.now(), on_ended=self._on_ended)
        self._state = NarratorState.PLAYING

        log_event({
            "event_type": "NARRATION_STARTED",
            "item": item,
            "duration_s": round(buffer.duration_s, 3),
        })

    async def pause(self) -> None:
        if self._state is not NarratorState.PLAYING or self._clock is None:
            return
        await self._clock.suspend()
        self._state = NarratorState.PAUSED

    async def resume(self) -> None:
        if self._state is not NarratorState.PAUSED or self._clock is None:
            return
        await self._clock.resume()
        self._state = NarratorState.PLAYING

    async def toggle_pause(self) -> None:
        if self._state is NarratorState.PAUSED:
            await self.resume()
        else:
            await self.pause()

    async def stop(self) -> None:
        """Halt playback and release the clock. Idempotent."""
        self._generation += 1

        source = self._source
        clock = self._clock
        self._reset()

        if source is not None:
            source.stop()
        if clock is not None:
            await clock.close()

    def export_wav(self, path: str | Path) -> Path:
        """Write the last decoded payload as 16-bit WAV."""
        if self._last_buffer is None:
            raise SynthesisEmpty("nothing has been synthesized yet")
        return write_wav(self._last_buffer, path)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _reset(self) -> None:
        self._state = NarratorState.IDLE
        self._item = None
        self._source = None
        self._clock = None

    def _on_ended(self, source: ScheduledSource) -> None:
        if source is not self._source:
            return
        clock = self._clock
        self._reset()
        if clock is None:
            return
        # Playback finished naturally; release the device off the callback.
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log_event({"event_type": "NARRATION_CLOCK_LEAKED"})
            return
        self._closing = loop.create_task(clock.close())
