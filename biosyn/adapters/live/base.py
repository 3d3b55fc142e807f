"""
Live channel contract.

This module defines the *interface only*. No session state, no audio
scheduling, no transcript accumulation lives here.

Key invariants:
- The channel reports facts as ChannelEvents; it never changes session
  state itself.
- events() yields in arrival order and ends after exactly one terminal
  event (ChannelClosed or ChannelFailed).
- close() is idempotent and safe to call before open().
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator

from biosyn.audio.frames import PcmBlob
from biosyn.constants import LIVE_DEFAULT_VOICE, LIVE_RESPONSE_MODALITY
from biosyn.session.events import ChannelEvent


@dataclass(frozen=True)
class LiveSessionParams:
    """Parameters negotiated when a live channel opens."""
    language: str
    voice: str = LIVE_DEFAULT_VOICE
    system_instruction: str | None = None
    response_modality: str = LIVE_RESPONSE_MODALITY
    transcribe_input: bool = True


class LiveChannel(ABC):
    """
    Abstract bidirectional audio channel to a live speech model.

    Implementations are responsible for:
    - Connecting and negotiating LiveSessionParams in open()
    - Transmitting encoded microphone frames via send_audio()
    - Translating remote messages into ChannelEvents

    Non-responsibilities:
    - No retries (a failed live channel ends the session)
    - No playback or capture
    """

    @abstractmethod
    async def open(self, params: LiveSessionParams) -> None:
        """
        Connect and send session setup.

        Raises:
            ChannelError if the connection cannot be established.
        """
        raise NotImplementedError

    @abstractmethod
    async def send_audio(self, blob: PcmBlob) -> None:
        """
        Send one encoded capture frame.

        Raises:
            ChannelError if the channel is not open or the send fails.
        """
        raise NotImplementedError

    @abstractmethod
    def events(self) -> AsyncIterator[ChannelEvent]:
        """Inbound events in arrival order, ending with a terminal event."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. Idempotent; safe before open()."""
        raise NotImplementedError
