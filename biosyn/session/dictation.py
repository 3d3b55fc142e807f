"""
Live dictation session.

Composes one AudioCaptureStream (mic -> frames -> PCM blobs -> channel)
and one AudioPlaybackScheduler (channel audio -> decoded buffers ->
gapless playback) into a single bidirectional session.

Responsibilities:
- Drive SessionState through the transition table in session/state.py
- Forward captured frames while STREAMING (earlier frames are dropped)
- Accumulate the transcript of the user's own speech in arrival order
- Tear down unconditionally: halt playback, close channel, release
  capture, close clock; every step runs even if an earlier one fails

Non-responsibilities:
- No wire protocol (LiveChannel adapters)
- No retries (a failed channel ends the session)

Inbound channel events are queued by a reader task and consumed by one
dispatcher task; each event type maps to exactly one handler.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Awaitable, Callable, Optional

from biosyn.adapters.live.base import LiveChannel, LiveSessionParams
from biosyn.audio.capture import AudioCaptureStream
from biosyn.audio.clock import ClockFactory, OutputClock
from biosyn.audio.codec import (
    bytes_to_audio_buffer,
    decode_base64_to_bytes,
    float_samples_to_blob,
    parse_pcm_rate,
)
from biosyn.audio.frames import AudioBuffer, AudioFrame
from biosyn.audio.playback import AudioPlaybackScheduler
from biosyn.constants import (
    LIVE_EVENT_Q_MAX_EVENTS,
    PLAYBACK_CHANNELS,
    PLAYBACK_SAMPLE_RATE_HZ,
)
from biosyn.errors import ChannelError, PerceptionError
from biosyn.observability.logger import log_event
from biosyn.session import events as ev
from biosyn.session.events import (
    AudioFragment,
    ChannelEvent,
    ChannelEventType,
    ChannelFailed,
    TranscriptFragment,
)
from biosyn.session.state import SessionState, SessionStateMachine

__all__ = ["LiveSessionParams", "LiveDictationSession", "DictationToggle"]

TranscriptCallback = Callable[[str], None]
_Handler = Callable[[ChannelEvent], Awaitable[None]]

_TERMINAL_EVENTS = frozenset({ChannelEventType.CLOSED, ChannelEventType.FAILED})


class LiveDictationSession:
    """
    One live dictation session. Single use: once CLOSED it cannot restart.

    stop() is idempotent and safe in any state, including before start()
    and while start() is still waiting on the channel.
    """

    def __init__(
        self,
        channel: LiveChannel,
        capture: AudioCaptureStream,
        clock_factory: ClockFactory,
        params: LiveSessionParams,
        *,
        on_transcript: Optional[TranscriptCallback] = None,
        initial_transcript: str = "",
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self._channel = channel
        self._capture = capture
        self._clock_factory = clock_factory
        self._params = params
        self._on_transcript = on_transcript

        self._sm = SessionStateMachine(session_id=self.session_id)
        self._transcript = initial_transcript
        self.failure: PerceptionError | None = None
        self.frames_sent = 0
        self.frames_dropped = 0

        self._clock: OutputClock | None = None
        self._scheduler: AudioPlaybackScheduler | None = None
        self._held_audio: list[AudioBuffer] = []

        self._events: asyncio.Queue[ChannelEvent] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._dispatch_task: asyncio.Task[None] | None = None
        self._fail_task: asyncio.Task[None] | None = None
        self._closed = asyncio.Event()

        self._handlers: dict[ChannelEventType, _Handler] = {
            ChannelEventType.OPENED: self._on_opened,
            ChannelEventType.TRANSCRIPT: self._on_transcript_fragment,
            ChannelEventType.AUDIO: self._on_audio_fragment,
            ChannelEventType.TURN_COMPLETE: self._on_turn_complete,
            ChannelEventType.CLOSED: self._on_channel_closed,
            ChannelEventType.FAILED: self._on_channel_failed,
        }

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._sm.state

    @property
    def transcript(self) -> str:
        return self._transcript

    @property
    def scheduler(self) -> AudioPlaybackScheduler | None:
        return self._scheduler

    @property
    def clock(self) -> OutputClock | None:
        return self._clock

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Acquire the microphone, open the output clock and the channel.

        The session reaches STREAMING when the channel reports its
        handshake. Device and channel failures end the session (FAILED ->
        CLOSED) and are re-raised.
        """
        self._sm.transition(SessionState.OPENING, reason="user_start")

        try:
            await self._capture.start(self._on_frame)
            if self._sm.terminating:
                return

            self._clock = self._clock_factory(PLAYBACK_SAMPLE_RATE_HZ)
            self._scheduler = AudioPlaybackScheduler(self._clock, session_id=self.session_id)

            await self._channel.open(self._params)
        except PerceptionError as e:
            if self._sm.terminating:
                # stop() won the race; its teardown owns cleanup
                return
            await self._fail(e)
            raise

        if self._sm.terminating:
            await self._channel.close()
            return

        self._events = asyncio.Queue(maxsize=LIVE_EVENT_Q_MAX_EVENTS)
        self._reader_task = asyncio.create_task(self._read_channel())
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())

    async def stop(self) -> None:
        """User stop. Idempotent; waits for an in-progress teardown."""
        state = self._sm.state
        if state is SessionState.CLOSED:
            return
        if state in (SessionState.CLOSING, SessionState.FAILED):
            await self._closed.wait()
            return

        self._sm.transition(SessionState.CLOSING, reason="user_stop")
        await self._teardown()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def pause(self) -> None:
        """Suspend playback. Captured frames are dropped until resume()."""
        if self._sm.state is not SessionState.STREAMING:
            return
        self._sm.transition(SessionState.SUSPENDED, reason="user_pause")
        if self._clock is not None:
            await self._clock.suspend()

    async def resume(self) -> None:
        if self._sm.state is not SessionState.SUSPENDED:
            return
        if self._clock is not None:
            await self._clock.resume()
        self._sm.transition(SessionState.STREAMING, reason="user_resume")

        held, self._held_audio = self._held_audio, []
        for buffer in held:
            await self._schedule(buffer)

    # ------------------------------------------------------------------
    # Capture -> channel
    # ------------------------------------------------------------------

    async def _on_frame(self, frame: AudioFrame) -> None:
        if self._sm.state is not SessionState.STREAMING:
            self.frames_dropped += 1
            return

        try:
            await self._channel.send_audio(float_samples_to_blob(frame.samples))
            self.frames_sent += 1
        except ChannelError as e:
            log_event({
                "event_type": "LIVE_SEND_FAILED",
                "session_id": self.session_id,
                "seq_num": frame.sequence_num,
                "error": repr(e),
            })
            # Teardown stops capture, so it cannot run inside the capture pump.
            if self._fail_task is None:
                self._fail_task = asyncio.create_task(self._fail(e))

    # ------------------------------------------------------------------
    # Channel -> handlers
    # ------------------------------------------------------------------

    async def _read_channel(self) -> None:
        queue = self._events
        if queue is None:
            return

        terminal_seen = False
        try:
            async for event in self._channel.events():
                await queue.put(event)
                if event.event_type in _TERMINAL_EVENTS:
                    terminal_seen = True
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            await queue.put(ev.failed(f"event stream crashed: {e!r}"))
            return

        if not terminal_seen:
            await queue.put(ev.closed("event stream ended"))

    async def _dispatch_loop(self) -> None:
        queue = self._events
        if queue is None:
            return

        while True:
            event = await queue.get()
            handler = self._handlers[event.event_type]
            try:
                await handler(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "SESSION_EVENT_HANDLER_ERROR",
                    "session_id": self.session_id,
                    "channel_event": event.event_type.value,
                    "error": repr(e),
                })
            if event.event_type in _TERMINAL_EVENTS:
                return

    async def _on_opened(self, event: ChannelEvent) -> None:  # pylint: disable=unused-argument
        if self._sm.state is SessionState.OPENING:
            self._sm.transition(SessionState.STREAMING, reason="channel_opened")

    async def _on_transcript_fragment(self, event: ChannelEvent) -> None:
        assert isinstance(event, TranscriptFragment)
        self._transcript = (self._transcript + " " + event.text).strip()
        if self._on_transcript is not None:
            self._on_transcript(self._transcript)

    async def _on_audio_fragment(self, event: ChannelEvent) -> None:
        assert isinstance(event, AudioFragment)
        if self._sm.terminating:
            return

        pcm = decode_base64_to_bytes(event.data)
        if not pcm:
            log_event({
                "event_type": "SYNTHESIS_EMPTY_FRAGMENT",
                "session_id": self.session_id,
                "mime_type": event.mime_type,
            })
            return

        buffer = bytes_to_audio_buffer(
            pcm,
            parse_pcm_rate(event.mime_type, PLAYBACK_SAMPLE_RATE_HZ),
            PLAYBACK_CHANNELS,
        )

        if self._sm.state is SessionState.SUSPENDED:
            self._held_audio.append(buffer)
            return
        await self._schedule(buffer)

    async def _on_turn_complete(self, event: ChannelEvent) -> None:  # pylint: disable=unused-argument
        log_event({
            "event_type": "LIVE_TURN_COMPLETE",
            "session_id": self.session_id,
            "transcript_chars": len(self._transcript),
        })

    async def _on_channel_closed(self, event: ChannelEvent) -> None:  # pylint: disable=unused-argument
        if self._sm.terminating:
            return
        self._sm.transition(SessionState.CLOSING, reason="remote_close")
        await self._teardown()

    async def _on_channel_failed(self, event: ChannelEvent) -> None:
        assert isinstance(event, ChannelFailed)
        await self._fail(ChannelError(event.reason))

    # ------------------------------------------------------------------
    # Failure & teardown
    # ------------------------------------------------------------------

    async def _schedule(self, buffer: AudioBuffer) -> None:
        if self._scheduler is not None:
            await self._scheduler.schedule(buffer)

    async def _fail(self, error: PerceptionError) -> None:
        if self._sm.terminating:
            return
        self.failure = error
        self._sm.transition(SessionState.FAILED, reason=repr(error))
        await self._teardown()

    async def _teardown(self) -> None:
        steps: list[tuple[str, Callable[[], Awaitable[None]]]] = [
            ("halt_playback", self._halt_playback),
            ("close_channel", self._close_channel),
            ("release_capture", self._capture.stop),
            ("close_clock", self._close_clock),
        ]
        for name, step in steps:
            try:
                await step()
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "SESSION_TEARDOWN_STEP_FAILED",
                    "session_id": self.session_id,
                    "step": name,
                    "error": repr(e),
                })

        self._held_audio.clear()
        self._sm.transition(SessionState.CLOSED, reason="teardown_complete")
        self._closed.set()

    async def _halt_playback(self) -> None:
        if self._scheduler is not None:
            self._scheduler.stop()

    async def _close_channel(self) -> None:
        current = asyncio.current_task()
        for task in (self._reader_task, self._dispatch_task):
            if task is None or task is current or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._channel.close()

    async def _close_clock(self) -> None:
        if self._clock is not None:
            await self._clock.close()


class DictationToggle:
    """
    At most one live session per form.

    toggle() while a session is active stops it instead of starting a
    second one.
    """

    def __init__(self, session_factory: Callable[[], LiveDictationSession]) -> None:
        self._session_factory = session_factory
        self._session: LiveDictationSession | None = None

    @property
    def active(self) -> LiveDictationSession | None:
        session = self._session
        if session is None or session.state is SessionState.CLOSED:
            return None
        return session

    async def toggle(self) -> LiveDictationSession | None:
        """Stop the active session, or start a new one. Returns the new session."""
        current = self.active
        if current is not None:
            await current.stop()
            self._session = None
            return None

        session = self._session_factory()
        self._session = session
        await session.start()
        return session

    async def stop(self) -> None:
        current = self.active
        self._session = None
        if current is not None:
            await current.stop()
