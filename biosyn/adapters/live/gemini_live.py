"""
Gemini Live (BidiGenerateContent) channel over websockets.

Wire protocol (JSON text frames, some servers send them as binary):
- client -> server: one `setup` message, then `realtimeInput` audio chunks
- server -> client: `setupComplete`, then `serverContent` messages carrying
  input transcription, model audio parts and turn boundaries

Mapping:
- setupComplete                        -> ChannelOpened
- serverContent.inputTranscription     -> TranscriptFragment
- serverContent.modelTurn.parts[].inlineData -> AudioFragment (one per part)
- serverContent.turnComplete           -> TurnComplete
- clean close                          -> ChannelClosed
- anything else that ends the socket   -> ChannelFailed

Design constraints:
- Adapter must not touch session state or the playback scheduler.
- websockets exceptions never escape; they become ChannelError or a
  terminal ChannelFailed event.
"""

from __future__ import annotations

import json
import urllib.parse
from typing import Any, AsyncIterator

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from biosyn.adapters.live.base import LiveChannel, LiveSessionParams
from biosyn.audio.frames import PcmBlob
from biosyn.errors import AuthMissing, ChannelError
from biosyn.observability.logger import log_event
from biosyn.session import events as ev
from biosyn.session.events import ChannelEvent

# Model audio parts can be large; the default 1 MiB limit is too tight.
_MAX_MESSAGE_BYTES = 2**22


# ---------------------------------------------------------------------
# Pure message helpers
# ---------------------------------------------------------------------

def build_setup_message(model: str, params: LiveSessionParams) -> dict[str, Any]:
    """First client message of a session."""
    setup: dict[str, Any] = {
        "model": model if model.startswith("models/") else f"models/{model}",
        "generationConfig": {
            "responseModalities": [params.response_modality],
            "speechConfig": {
                "voiceConfig": {
                    "prebuiltVoiceConfig": {"voiceName": params.voice},
                },
            },
        },
    }
    if params.system_instruction:
        setup["systemInstruction"] = {"parts": [{"text": params.system_instruction}]}
    if params.transcribe_input:
        setup["inputAudioTranscription"] = {}
    return {"setup": setup}


def build_audio_message(blob: PcmBlob) -> dict[str, Any]:
    return {"realtimeInput": {"audio": {"mimeType": blob.mime_type, "data": blob.data}}}


def parse_server_message(message: dict[str, Any]) -> list[ChannelEvent]:
    """
    Translate one decoded server message into zero or more events.

    Unknown message kinds produce no events.
    """
    out: list[ChannelEvent] = []

    if "setupComplete" in message:
        out.append(ev.opened())

    content = message.get("serverContent")
    if not isinstance(content, dict):
        return out

    transcription = content.get("inputTranscription")
    if isinstance(transcription, dict):
        text = transcription.get("text")
        if text:
            out.append(ev.transcript(text))

    model_turn = content.get("modelTurn")
    if isinstance(model_turn, dict):
        for part in model_turn.get("parts") or []:
            inline = part.get("inlineData") if isinstance(part, dict) else None
            if isinstance(inline, dict) and inline.get("data") is not None:
                out.append(ev.audio(inline["data"], inline.get("mimeType")))

    if content.get("turnComplete"):
        out.append(ev.turn_complete())

    return out


# ---------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------

class GeminiLiveChannel(LiveChannel):
    """One Gemini Live websocket session."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        endpoint: str,
        session_id: str | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._endpoint = endpoint
        self._session_id = session_id

        self._ws: ClientConnection | None = None
        self._closed = False

    def _build_url(self) -> str:
        qs = urllib.parse.urlencode({"key": self._api_key or ""})
        return f"{self._endpoint}?{qs}"

    # ------------------------------------------------------------------
    # LiveChannel contract
    # ------------------------------------------------------------------

    async def open(self, params: LiveSessionParams) -> None:
        if not self._api_key:
            raise AuthMissing("live channel requires an API key")
        if self._closed:
            raise ChannelError("channel already closed")

        try:
            self._ws = await connect(
                self._build_url(),
                max_size=_MAX_MESSAGE_BYTES,
            )
            await self._ws.send(json.dumps(build_setup_message(self._model, params)))
        except (OSError, WebSocketException) as e:
            await self._abandon()
            raise ChannelError(f"live connect failed: {e!r}") from e

        if self._closed:
            # close() ran while the handshake was in flight
            await self._abandon()
            raise ChannelError("channel closed during open")

        log_event({
            "event_type": "LIVE_CHANNEL_CONNECTED",
            "session_id": self._session_id,
            "model": self._model,
            "language": params.language,
            "voice": params.voice,
        })

    async def send_audio(self, blob: PcmBlob) -> None:
        ws = self._ws
        if ws is None or self._closed:
            raise ChannelError("live channel not open")
        try:
            await ws.send(json.dumps(build_audio_message(blob)))
        except (OSError, WebSocketException) as e:
            raise ChannelError(f"live send failed: {e!r}") from e

    async def events(self) -> AsyncIterator[ChannelEvent]:
        ws = self._ws
        if ws is None:
            yield ev.failed("channel not open")
            return

        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except ValueError:
                    log_event({
                        "event_type": "LIVE_MESSAGE_UNPARSEABLE",
                        "session_id": self._session_id,
                        "size": len(raw),
                    })
                    continue
                if not isinstance(message, dict):
                    continue
                for event in parse_server_message(message):
                    yield event
        except ConnectionClosedOK as e:
            yield ev.closed(_close_reason(e))
            return
        except ConnectionClosed as e:
            yield ev.failed(f"connection closed: {_close_reason(e) or e!r}")
            return
        except (OSError, WebSocketException) as e:
            yield ev.failed(f"receive failed: {e!r}")
            return

        # Iteration ends normally only on a clean close.
        yield ev.closed(ws.close_reason or None)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        await self._abandon()

    async def _abandon(self) -> None:
        self._closed = True
        ws = self._ws
        if ws is None:
            return
        try:
            await ws.close()
        except (OSError, WebSocketException) as e:
            log_event({
                "event_type": "LIVE_CHANNEL_CLOSE_FAILED",
                "session_id": self._session_id,
                "error": repr(e),
            })


def _close_reason(exc: ConnectionClosed) -> str | None:
    frame = exc.rcvd or exc.sent
    if frame is None:
        return None
    return frame.reason or None
