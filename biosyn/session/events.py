"""
Inbound live-channel events.

Rules:
- Events describe facts reported by the remote channel.
- Events carry data only (no behavior).
- Each concrete event type maps to exactly one session handler.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ChannelEventType(str, Enum):
    """Canonical event types emitted by a LiveChannel."""

    OPENED = "OPENED"
    TRANSCRIPT = "TRANSCRIPT"
    AUDIO = "AUDIO"
    TURN_COMPLETE = "TURN_COMPLETE"
    CLOSED = "CLOSED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class ChannelEvent:
    """Base type for channel events."""
    event_type: ChannelEventType


@dataclass(frozen=True)
class ChannelOpened(ChannelEvent):
    """Remote acknowledged session setup (handshake complete)."""


@dataclass(frozen=True)
class TranscriptFragment(ChannelEvent):
    """Incremental transcription of the user's own speech."""
    text: str


@dataclass(frozen=True)
class AudioFragment(ChannelEvent):
    """One base64 PCM fragment of synthesized speech."""
    data: str
    mime_type: str | None = None


@dataclass(frozen=True)
class TurnComplete(ChannelEvent):
    """Remote finished its current response turn."""


@dataclass(frozen=True)
class ChannelClosed(ChannelEvent):
    """Remote closed the channel cleanly."""
    reason: str | None = None


@dataclass(frozen=True)
class ChannelFailed(ChannelEvent):
    """Unrecoverable transport failure."""
    reason: str


def opened() -> ChannelOpened:
    return ChannelOpened(event_type=ChannelEventType.OPENED)


def transcript(text: str) -> TranscriptFragment:
    return TranscriptFragment(event_type=ChannelEventType.TRANSCRIPT, text=text)


def audio(data: str, mime_type: str | None = None) -> AudioFragment:
    return AudioFragment(event_type=ChannelEventType.AUDIO, data=data, mime_type=mime_type)


def turn_complete() -> TurnComplete:
    return TurnComplete(event_type=ChannelEventType.TURN_COMPLETE)


def closed(reason: str | None = None) -> ChannelClosed:
    return ChannelClosed(event_type=ChannelEventType.CLOSED, reason=reason)


def failed(reason: str) -> ChannelFailed:
    return ChannelFailed(event_type=ChannelEventType.FAILED, reason=reason)
