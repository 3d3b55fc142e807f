# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring

import asyncio
import json
from typing import Any, AsyncIterator, Sequence

import httpx
import numpy as np

from biosyn.adapters.live.base import LiveChannel, LiveSessionParams
from biosyn.adapters.oracle.base import ChatReply, Oracle
from biosyn.adapters.oracle.prompts import SpeechTone
from biosyn.audio.capture import BlockCallback, InputDevice
from biosyn.audio.clock import MixingOutputClock
from biosyn.audio.codec import encode_bytes_to_base64, float_samples_to_pcm_bytes
from biosyn.audio.frames import PcmBlob
from biosyn.errors import ChannelError, DeviceUnavailable
from biosyn.session.events import ChannelEvent, ChannelEventType


async def settle(rounds: int = 20) -> None:
    """Let every ready task on the loop run a few steps."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def pcm_payload(seconds: float, sample_rate: int = 24_000, value: float = 0.25) -> str:
    """Base64 PCM16 mono of constant amplitude."""
    samples = np.full(int(round(seconds * sample_rate)), value, dtype=np.float32)
    return encode_bytes_to_base64(float_samples_to_pcm_bytes(samples))


# ---------------------------------------------------------------------
# Audio devices
# ---------------------------------------------------------------------

class ManualClock(MixingOutputClock):
    """Output clock driven by the test instead of a sound card."""

    def __init__(self, sample_rate: int = 24_000, *, fail_resume: bool = False) -> None:
        super().__init__(sample_rate=sample_rate)
        self.fail_resume = fail_resume
        self.device_closes = 0

    def advance(self, seconds: float) -> np.ndarray:
        return self.render(int(round(seconds * self.sample_rate)))

    async def _device_resume(self) -> None:
        if self.fail_resume:
            raise RuntimeError("device refused to resume")

    async def _device_close(self) -> None:
        self.device_closes += 1


class ClockRecorder:
    """ClockFactory that keeps every clock it built."""

    def __init__(self) -> None:
        self.clocks: list[ManualClock] = []

    def __call__(self, sample_rate: int) -> ManualClock:
        clock = ManualClock(sample_rate)
        self.clocks.append(clock)
        return clock


class FakeStream:
    def __init__(self) -> None:
        self.started = False
        self.stopped = False
        self.closed = False

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def close(self) -> None:
        self.closed = True


class FakeInputDevice(InputDevice):
    """Microphone stand-in; push() plays the role of the audio thread."""

    def __init__(self, *, fail_open: bool = False) -> None:
        super().__init__()
        self.fail_open = fail_open
        self.streams: list[FakeStream] = []
        self._on_block: BlockCallback | None = None

    def _open_stream(
        self,
        *,
        sample_rate: int,
        channels: int,
        block_size: int,
        on_block: BlockCallback,
    ) -> Any:
        if self.fail_open:
            raise DeviceUnavailable("microphone permission denied")
        self._on_block = on_block
        stream = FakeStream()
        self.streams.append(stream)
        return stream

    def push(self, samples: np.ndarray) -> None:
        assert self._on_block is not None
        self._on_block(samples)


# ---------------------------------------------------------------------
# Live channel
# ---------------------------------------------------------------------

class ScriptedChannel(LiveChannel):
    """LiveChannel whose inbound events are emitted by the test."""

    def __init__(
        self,
        *,
        open_gate: asyncio.Event | None = None,
        open_error: Exception | None = None,
        close_error: Exception | None = None,
    ) -> None:
        self.open_gate = open_gate
        self.open_error = open_error
        self.close_error = close_error
        self.opened_with: LiveSessionParams | None = None
        self.open_calls = 0
        self.close_calls = 0
        self.sent: list[PcmBlob] = []
        self.fail_sends = False
        self._inbound: asyncio.Queue[ChannelEvent] = asyncio.Queue()

    async def open(self, params: LiveSessionParams) -> None:
        self.open_calls += 1
        self.opened_with = params
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.open_error is not None:
            raise self.open_error

    async def send_audio(self, blob: PcmBlob) -> None:
        if self.fail_sends or self.close_calls:
            raise ChannelError("socket is gone")
        self.sent.append(blob)

    def emit(self, event: ChannelEvent) -> None:
        self._inbound.put_nowait(event)

    async def events(self) -> AsyncIterator[ChannelEvent]:
        while True:
            event = await self._inbound.get()
            yield event
            if event.event_type in (ChannelEventType.CLOSED, ChannelEventType.FAILED):
                return

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error


# ---------------------------------------------------------------------
# Oracle
# ---------------------------------------------------------------------

class ScriptedOracle(Oracle):
    """
    Oracle replaying scripted results in order.

    A scripted Exception instance is raised instead of returned.
    """

    def __init__(
        self,
        *,
        reports: Sequence[Any] = (),
        replies: Sequence[Any] = (),
        speech: Sequence[Any] = (),
        credentials: bool = True,
        speech_gate: asyncio.Event | None = None,
    ) -> None:
        self._reports = list(reports)
        self._replies = list(replies)
        self._speech = list(speech)
        self._credentials = credentials
        self.speech_gate = speech_gate
        self.report_calls = 0
        self.chat_calls: list[tuple[list[Any], str, str, str | None]] = []
        self.speech_calls: list[tuple[str, str, SpeechTone | None]] = []

    @property
    def has_credentials(self) -> bool:
        return self._credentials

    @staticmethod
    def _next(script: list[Any]) -> Any:
        result = script.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def generate_report(self, symptoms: Any) -> str:
        self.report_calls += 1
        return self._next(self._reports)

    async def chat(
        self,
        history: Sequence[Any],
        message: str,
        language: str,
        image: str | None = None,
    ) -> ChatReply:
        self.chat_calls.append((list(history), message, language, image))
        return self._next(self._replies)

    async def synthesize_speech(
        self,
        text: str,
        voice: str,
        tone: SpeechTone | None = None,
    ) -> str | None:
        self.speech_calls.append((text, voice, tone))
        if self.speech_gate is not None:
            await self.speech_gate.wait()
        return self._next(self._speech)


# ---------------------------------------------------------------------
# Profile store
# ---------------------------------------------------------------------

class ProfileServer:
    """In-memory profile store served through httpx.MockTransport."""

    def __init__(self, profiles: dict[str, dict[str, Any]] | None = None) -> None:
        self.profiles: dict[str, dict[str, Any]] = dict(profiles or {})
        self.gets: list[str] = []
        self.posts: list[dict[str, Any]] = []
        self.fail_posts = False
        self.post_gate: asyncio.Event | None = None
        self.post_entered = asyncio.Event()

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handle),
            base_url="http://profiles.test",
        )

    async def handle(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            email = request.url.path.rsplit("/", 1)[-1]
            self.gets.append(email)
            body = json.dumps(self.profiles.get(email))
            return httpx.Response(200, content=body.encode(), headers=_JSON)

        self.post_entered.set()
        if self.post_gate is not None:
            await self.post_gate.wait()
        if self.fail_posts:
            return httpx.Response(503, text="unavailable")
        document = json.loads(request.content)
        self.posts.append(document)
        self.profiles[document["email"]] = document
        return httpx.Response(200, json=document)


_JSON = {"content-type": "application/json"}
